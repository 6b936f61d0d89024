"""First-boot sequence of a node built from the image.

The installer script rendered by :mod:`kubeseed.installer` runs exactly once
on every node, unattended. This module models the same sequence as an
ordered list of named steps so a node's behaviour can be inspected (and
tested) from the build host, without booting anything::

    profile = BootProfile.from_template_values(Distribution.K3S, values)
    plan = plan_boot(profile, static_hostname="node-2")
    for action in plan.actions:
        print(action.step, action.commands)

Planning fails fast: a condition that makes the script exit raises
:class:`~kubeseed.errors.BootError` and no later step is planned. Like the
script, the plan is not idempotent; running it twice repeats every side
effect.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import BootError
from .models import Distribution, NodeType

PLACEHOLDER_HOSTNAME = "localhost.localdomain"
MANIFESTS_UNIT = "kubernetes-resources-install.service"
SYSTEMD_UNIT_DIR = "/etc/systemd/system"


class BootStep(Enum):
    """Steps of the first-boot sequence, in execution order."""
    DISCOVER_HOSTNAME = 1
    RESOLVE_ROLE = 2
    STAGE_IMAGES = 3
    SELECT_CONFIG = 4
    INSTALL_MANIFESTS_UNIT = 5
    APPEND_VIP_HOST = 6
    PLACE_CONFIG = 7
    INSTALL_RUNTIME = 8


@dataclass(frozen=True)
class RuntimeLayout:
    """System paths a distribution expects on the node."""
    service: str
    images_dir: str
    config_dir: str
    manifests_dir: str
    kubectl: str
    kubeconfig: str

    @property
    def config_file(self) -> str:
        return os.path.join(self.config_dir, "config.yaml")

    @property
    def registries_file(self) -> str:
        return os.path.join(self.config_dir, "registries.yaml")


K3S_BIN_DIR = "/opt/bin"
RKE2_TAR_PREFIX = "/opt/rke2"

RUNTIME_LAYOUTS = {
    Distribution.K3S: RuntimeLayout(
        service="k3s.service",
        images_dir="/var/lib/rancher/k3s/agent/images/",
        config_dir="/etc/rancher/k3s/",
        manifests_dir="/opt/k3s-manifests",
        kubectl=f"{K3S_BIN_DIR}/kubectl",
        kubeconfig="/etc/rancher/k3s/k3s.yaml",
    ),
    Distribution.RKE2: RuntimeLayout(
        service="rke2-server.service",
        images_dir="/var/lib/rancher/rke2/agent/images/",
        config_dir="/etc/rancher/rke2/",
        manifests_dir="/opt/rke2-manifests",
        kubectl="/var/lib/rancher/rke2/bin/kubectl",
        kubeconfig="/etc/rancher/rke2/rke2.yaml",
    ),
}


@dataclass(frozen=True)
class BootProfile:
    """Everything baked into the script at render time.

    ``roles`` maps hostnames to roles and is empty for single node clusters,
    whose only node is always the initialising server.
    """
    distribution: Distribution
    install_script: str
    images_path: str
    config_file_path: str
    registry_mirrors: str
    roles: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    initialiser: str = ""
    config_file: str = "server.yaml"
    initialiser_config_file: str = ""
    manifests_path: str = ""
    api_vip: str = ""
    api_host: str = ""
    binary_path: str = ""
    install_path: str = ""

    @property
    def single_node(self) -> bool:
        return not self.roles

    @property
    def layout(self) -> RuntimeLayout:
        return RUNTIME_LAYOUTS[self.distribution]

    @classmethod
    def from_template_values(cls, distribution: Distribution, values: Mapping[str, Any]) -> 'BootProfile':
        """Build a profile from the values an installer template was rendered with."""
        roles: Dict[str, str] = {}
        for node in values.get('nodes') or []:
            role = node.type.value if isinstance(node.type, NodeType) else str(node.type)
            roles[node.hostname] = role

        return cls(
            distribution=distribution,
            install_script=values['installScript'],
            images_path=values['imagesPath'],
            config_file_path=values['configFilePath'],
            registry_mirrors=values['registryMirrors'],
            roles=MappingProxyType(roles),
            initialiser=values.get('initialiser', ""),
            config_file=values.get('configFile', "server.yaml"),
            initialiser_config_file=values.get('initialiserConfigFile', ""),
            manifests_path=values.get('manifestsPath', ""),
            api_vip=values.get('apiVIP', ""),
            api_host=values.get('apiHost', ""),
            binary_path=values.get('binaryPath', ""),
            install_path=values.get('installPath', ""),
        )


@dataclass(frozen=True)
class BootAction:
    step: BootStep
    description: str
    commands: Tuple[str, ...] = ()


@dataclass
class BootPlan:
    """Planned first-boot sequence for one node."""
    hostname: str
    role: str
    config_file: str
    initialiser: bool
    actions: List[BootAction] = field(default_factory=list)

    @property
    def steps(self) -> List[BootStep]:
        return [a.step for a in self.actions]

    def has_step(self, step: BootStep) -> bool:
        return step in self.steps


def _trim_newlines(value: Optional[str]) -> str:
    # Command substitution in the script drops trailing newlines only.
    return (value or "").rstrip("\n")


def resolve_hostname(static_hostname: Optional[str], kernel_hostname: Optional[str] = None) -> str:
    """Return the node hostname, preferring the static one.

    Raises:
        BootError: If neither source yields a usable hostname
    """
    hostname = _trim_newlines(static_hostname)
    if not hostname:
        hostname = _trim_newlines(kernel_hostname)

    if not hostname or hostname == PLACEHOLDER_HOSTNAME:
        raise BootError(
            "Could not identify whether the node is a server or agent due to missing hostname"
        )
    return hostname


def resolve_role(hostname: str, roles: Mapping[str, str]) -> str:
    """Look *hostname* up in the role table baked into the script.

    Raises:
        BootError: If the hostname was not declared at build time
    """
    try:
        return roles[hostname]
    except KeyError:
        raise BootError(
            f"Could not identify whether the node '{hostname}' is a server or agent"
        ) from None


def select_config_file(profile: BootProfile, hostname: str, role: str) -> Tuple[str, bool]:
    """Return the config file to install and whether the node initialises the cluster."""
    if profile.single_node:
        return os.path.join(profile.config_file_path, profile.config_file), True

    if hostname == profile.initialiser:
        return os.path.join(profile.config_file_path, profile.initialiser_config_file), True

    return os.path.join(profile.config_file_path, f"{role}.yaml"), False


def plan_boot(
    profile: BootProfile,
    static_hostname: Optional[str] = None,
    kernel_hostname: Optional[str] = None,
) -> BootPlan:
    """Plan the first-boot sequence of a node.

    Args:
        profile: Values baked into the script
        static_hostname: Content of ``/etc/hostname``
        kernel_hostname: Content of ``/proc/sys/kernel/hostname``

    Returns:
        BootPlan: Ordered actions the script performs on this node

    Raises:
        BootError: If the node cannot determine its role
    """
    layout = profile.layout
    actions: List[BootAction] = []

    if profile.single_node:
        hostname = _trim_newlines(static_hostname) or _trim_newlines(kernel_hostname)
        role = NodeType.SERVER.value
    else:
        hostname = resolve_hostname(static_hostname, kernel_hostname)
        actions.append(BootAction(BootStep.DISCOVER_HOSTNAME, f"hostname is {hostname}"))

        role = resolve_role(hostname, profile.roles)
        actions.append(BootAction(BootStep.RESOLVE_ROLE, f"node is a {role}"))

    actions.append(BootAction(
        BootStep.STAGE_IMAGES,
        "copy container images onto the data volume",
        (
            "mount /var",
            f"mkdir -p {layout.images_dir}",
            f"cp {profile.images_path}/* {layout.images_dir}",
            "umount /var",
        ),
    ))

    config_file, initialiser = select_config_file(profile, hostname, role)
    actions.append(BootAction(BootStep.SELECT_CONFIG, f"use {config_file}"))

    if initialiser and profile.manifests_path:
        unit_path = os.path.join(SYSTEMD_UNIT_DIR, MANIFESTS_UNIT)
        actions.append(BootAction(
            BootStep.INSTALL_MANIFESTS_UNIT,
            "apply manifests once the API server is up",
            (
                f"mkdir -p {layout.manifests_dir}",
                f"cp {profile.manifests_path}/* {layout.manifests_dir}/",
                f"write {unit_path}",
                f"systemctl enable {MANIFESTS_UNIT}",
            ),
        ))

    if profile.api_vip and profile.api_host:
        actions.append(BootAction(
            BootStep.APPEND_VIP_HOST,
            "resolve the API host to the virtual IP",
            (f'echo "{profile.api_vip} {profile.api_host}" >> /etc/hosts',),
        ))

    actions.append(BootAction(
        BootStep.PLACE_CONFIG,
        "install runtime configuration",
        (
            f"mkdir -p {layout.config_dir}",
            f"cp {config_file} {layout.config_file}",
            f"[ -f {profile.registry_mirrors} ] && cp {profile.registry_mirrors} {layout.registries_file}",
        ),
    ))

    actions.append(BootAction(
        BootStep.INSTALL_RUNTIME,
        f"install {profile.distribution.value}",
        _install_commands(profile, role),
    ))

    return BootPlan(
        hostname=hostname,
        role=role,
        config_file=config_file,
        initialiser=initialiser,
        actions=actions,
    )


def _install_commands(profile: BootProfile, role: str) -> Tuple[str, ...]:
    if profile.distribution == Distribution.RKE2:
        commands = [
            f"export INSTALL_RKE2_TAR_PREFIX={RKE2_TAR_PREFIX}",
            f"export INSTALL_RKE2_ARTIFACT_PATH={profile.install_path}",
        ]
        if not profile.single_node:
            commands.append(f"export INSTALL_RKE2_TYPE={role}")
    else:
        commands = []
        if not profile.single_node:
            commands.append(f"export INSTALL_K3S_EXEC={role}")
        commands += [
            "export INSTALL_K3S_SKIP_DOWNLOAD=true",
            "export INSTALL_K3S_SKIP_START=true",
            f"export INSTALL_K3S_BIN_DIR={K3S_BIN_DIR}",
            f"mkdir -p {K3S_BIN_DIR}",
            f"cp {profile.binary_path} {K3S_BIN_DIR}/k3s",
            f"chmod +x {K3S_BIN_DIR}/k3s",
        ]

    commands.append(f"sh {profile.install_script}")
    return tuple(commands)
