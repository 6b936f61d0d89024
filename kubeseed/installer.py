"""Build-time configuration of the Kubernetes component.

``configure_kubernetes`` is the entry point: it classifies the cluster,
stores the per-role configs, stages the distribution artefacts, composes
the manifests and renders the single first-boot installer script shared
by every node built from the image.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import artefacts
from .artefacts import K8S_DIR, ArtefactDownloader
from .cluster import (
    AGENT_CONFIG_FILE,
    SERVER_CONFIG_FILE,
    Cluster,
    find_initialiser,
    new_cluster,
    servers_count,
)
from .downloader import K3S_INSTALL_SCRIPT, RKE2_INSTALL_SCRIPT
from .errors import ConfigurationError, KubeseedError, StagingError
from .logging import audit, audit_component_failed, audit_component_skipped, audit_component_successful
from .manifests import configure_manifests, local_kubernetes_manifests_path
from .models import BuildContext, Distribution
from .registry import REGISTRY_MIRRORS_FILE, Registry, store_registry_mirrors
from .templates import render_to_path
from .utils import EXECUTABLE_PERMS, prepend_artefact_path, write_yaml_file

logger = logging.getLogger("kubeseed.installer")

K8S_COMPONENT_NAME = "kubernetes"

INIT_SERVER_CONFIG_FILE = "init_server.yaml"
K8S_INSTALL_SCRIPT = "20-k8s-install.sh"

HELM_DIR = "helm"
HELM_VALUES_DIR = "values"
HELM_CERTS_DIR = "certs"

# (distribution, single node) -> installer template
INSTALLER_TEMPLATES = {
    (Distribution.K3S, True): "k3s-single-node-installer.sh.j2",
    (Distribution.K3S, False): "k3s-multi-node-installer.sh.j2",
    (Distribution.RKE2, True): "rke2-single-node-installer.sh.j2",
    (Distribution.RKE2, False): "rke2-multi-node-installer.sh.j2",
}


def select_installer_template(distribution: Distribution, node_count: int) -> str:
    """Pick the installer template for a distribution and cluster size."""
    return INSTALLER_TEMPLATES[(distribution, node_count < 2)]


def configure_kubernetes(
    ctx: BuildContext,
    downloader: ArtefactDownloader,
    registry: Optional[Registry] = None,
) -> List[str]:
    """Configure the Kubernetes component for an image build.

    Args:
        ctx: Build context
        downloader: Provider of distribution artefacts
        registry: Provider of raw manifests and Helm charts

    Returns:
        list: Names of the scripts to run at first boot (empty when skipped)

    Raises:
        KubeseedError: If any stage fails; the message names the stage
    """
    kubernetes = ctx.definition.kubernetes

    if not kubernetes.version:
        audit_component_skipped(K8S_COMPONENT_NAME)
        return []

    try:
        distribution = kubernetes.distribution
    except ConfigurationError:
        audit_component_failed(K8S_COMPONENT_NAME)
        raise

    # Downloads make this the slowest component; let the user know it started.
    audit("Configuring Kubernetes component...")

    if servers_count(kubernetes.nodes) == 2:
        audit("WARNING: Kubernetes clusters consisting of two server nodes cannot form a highly available architecture")
        logger.warning("Kubernetes cluster of two server nodes has been requested")

    config_path = ctx.image_config_dir / K8S_DIR / artefacts.K8S_CONFIG_DIR

    try:
        cluster = new_cluster(kubernetes, config_path)
    except KubeseedError as e:
        audit_component_failed(K8S_COMPONENT_NAME)
        raise ConfigurationError(f"initialising cluster config: {e}") from e

    try:
        artefacts_path = artefacts.kubernetes_config_dir(ctx)
        artefacts_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        audit_component_failed(K8S_COMPONENT_NAME)
        raise StagingError(f"creating kubernetes artefacts path: {e}") from e

    try:
        store_kubernetes_cluster_config(cluster, artefacts_path)
    except OSError as e:
        audit_component_failed(K8S_COMPONENT_NAME)
        raise StagingError(f"storing cluster config: {e}") from e

    try:
        if distribution == Distribution.RKE2:
            script = configure_rke2(ctx, cluster, downloader, registry)
        else:
            script = configure_k3s(ctx, cluster, downloader, registry)
    except KubeseedError as e:
        audit_component_failed(K8S_COMPONENT_NAME)
        raise type(e)(f"configuring kubernetes components: {e}") from e

    audit_component_successful(K8S_COMPONENT_NAME)
    return [script]


def _common_template_values(
    ctx: BuildContext, install_script: str, images_path: str, manifests_path: str
) -> Dict[str, Any]:
    network = ctx.definition.kubernetes.network
    return {
        'installScript': install_script,
        'apiVIP': network.api_vip,
        'apiHost': network.api_host,
        'imagesPath': images_path,
        'manifestsPath': manifests_path,
        'configFilePath': prepend_artefact_path(os.path.join(K8S_DIR, artefacts.K8S_CONFIG_DIR)),
        'registryMirrors': prepend_artefact_path(os.path.join(K8S_DIR, REGISTRY_MIRRORS_FILE)),
    }


def _add_topology_values(values: Dict[str, Any], ctx: BuildContext, cluster: Cluster) -> None:
    kubernetes = ctx.definition.kubernetes
    if kubernetes.single_node:
        values['configFile'] = SERVER_CONFIG_FILE
        return

    values['nodes'] = list(kubernetes.nodes)
    values['initialiser'] = cluster.initialiser_name
    values['initialiserConfigFile'] = INIT_SERVER_CONFIG_FILE


def configure_k3s(
    ctx: BuildContext,
    cluster: Cluster,
    downloader: ArtefactDownloader,
    registry: Optional[Registry] = None,
) -> str:
    """Stage k3s artefacts and render its installer script."""
    logger.info("Configuring K3s cluster")
    kubernetes = ctx.definition.kubernetes

    install_script = _stage(
        "downloading k3s install script",
        artefacts.download_install_script, ctx, downloader, Distribution.K3S,
    )
    binary_path, images_path = _stage(
        "downloading k3s artefacts",
        artefacts.download_k3s_artefacts, ctx, downloader,
    )
    manifests_path = _stage(
        "configuring kubernetes manifests",
        configure_manifests, ctx, registry,
    )
    _store_registry_mirrors(ctx)

    values = _common_template_values(ctx, install_script, images_path, manifests_path)
    values['binaryPath'] = binary_path
    _add_topology_values(values, ctx, cluster)

    if kubernetes.single_node:
        if not kubernetes.network.api_vip:
            logger.info("Virtual IP address for k3s cluster is not provided and will not be configured")
        else:
            audit("WARNING: A Virtual IP address for the k3s cluster has been provided. "
                  "An external IP address for the Ingress Controller (Traefik) must be manually configured.")
            logger.warning("Virtual IP address for k3s cluster is requested and will invalidate Traefik configuration")
    else:
        audit("WARNING: An external IP address for the Ingress Controller (Traefik) must be manually configured in multi-node clusters.")
        logger.warning("Virtual IP address for k3s cluster is necessary for multi node clusters and will invalidate Traefik configuration")

    template = select_installer_template(Distribution.K3S, len(kubernetes.nodes))
    return store_kubernetes_installer(ctx, template, values)


def configure_rke2(
    ctx: BuildContext,
    cluster: Cluster,
    downloader: ArtefactDownloader,
    registry: Optional[Registry] = None,
) -> str:
    """Stage RKE2 artefacts and render its installer script."""
    logger.info("Configuring RKE2 cluster")
    kubernetes = ctx.definition.kubernetes

    install_script = _stage(
        "downloading RKE2 install script",
        artefacts.download_install_script, ctx, downloader, Distribution.RKE2,
    )
    install_path, images_path = _stage(
        "downloading RKE2 artefacts",
        artefacts.download_rke2_artefacts, ctx, downloader, cluster,
    )
    manifests_path = _stage(
        "configuring kubernetes manifests",
        configure_manifests, ctx, registry,
    )
    _store_registry_mirrors(ctx)

    values = _common_template_values(ctx, install_script, images_path, manifests_path)
    values['installPath'] = install_path
    _add_topology_values(values, ctx, cluster)

    if kubernetes.single_node and not kubernetes.network.api_vip:
        logger.info("Virtual IP address for RKE2 cluster is not provided and will not be configured")

    template = select_installer_template(Distribution.RKE2, len(kubernetes.nodes))
    return store_kubernetes_installer(ctx, template, values)


def _stage(description: str, func, *args):
    try:
        return func(*args)
    except KubeseedError as e:
        raise type(e)(f"{description}: {e}") from e


def _store_registry_mirrors(ctx: BuildContext) -> None:
    mirrors = ctx.definition.kubernetes.registry_mirrors
    path = artefacts.kubernetes_artefacts_path(ctx) / REGISTRY_MIRRORS_FILE
    try:
        store_registry_mirrors(mirrors, path)
    except OSError as e:
        raise StagingError(f"storing registry mirrors: {e}") from e


def store_kubernetes_installer(ctx: BuildContext, template_name: str, values: Dict[str, Any]) -> str:
    """Render *template_name* into the combustion dir as an executable script.

    Returns:
        str: File name of the script
    """
    try:
        ctx.combustion_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StagingError(f"creating combustion dir: {e}") from e

    render_to_path(template_name, ctx.combustion_dir / K8S_INSTALL_SCRIPT, values, mode=EXECUTABLE_PERMS)
    logger.debug(f"Rendered {template_name} as {K8S_INSTALL_SCRIPT}")
    return K8S_INSTALL_SCRIPT


def preview_template_values(ctx: BuildContext) -> Dict[str, Any]:
    """Predict the installer template values without downloading anything.

    Artefact names follow the upstream release naming for the image's
    architecture; the manifests directory is assumed to be populated when
    any contributor to it is configured.
    """
    kubernetes = ctx.definition.kubernetes
    distribution = kubernetes.distribution

    if distribution == Distribution.RKE2:
        script = RKE2_INSTALL_SCRIPT
    else:
        script = K3S_INSTALL_SCRIPT
    install_script = prepend_artefact_path(os.path.join(K8S_DIR, script))

    install_path = os.path.join(K8S_DIR, artefacts.K8S_INSTALL_DIR)
    images_path = prepend_artefact_path(os.path.join(K8S_DIR, artefacts.K8S_IMAGES_DIR))

    local_manifests = kubernetes_manifests_path(ctx)
    has_manifests = bool(
        kubernetes.network.api_vip
        or kubernetes.helm_charts
        or kubernetes.manifest_urls
        or (local_manifests.is_dir() and any(p.is_file() for p in local_manifests.iterdir()))
    )
    manifests_path = prepend_artefact_path(local_kubernetes_manifests_path()) if has_manifests else ""

    values = _common_template_values(ctx, install_script, images_path, manifests_path)
    if distribution == Distribution.RKE2:
        values['installPath'] = prepend_artefact_path(install_path)
    else:
        binary = "k3s" if ctx.definition.arch == "x86_64" else "k3s-arm64"
        values['binaryPath'] = prepend_artefact_path(os.path.join(install_path, binary))

    if kubernetes.single_node:
        values['configFile'] = SERVER_CONFIG_FILE
    else:
        values['nodes'] = list(kubernetes.nodes)
        values['initialiser'] = find_initialiser(kubernetes.nodes)
        values['initialiserConfigFile'] = INIT_SERVER_CONFIG_FILE

    return values


def store_kubernetes_cluster_config(cluster: Cluster, dest_path: Path) -> None:
    """Persist the per-role configs computed for *cluster*."""
    write_yaml_file(dest_path / SERVER_CONFIG_FILE, cluster.server_config)

    if cluster.initialiser_config is not None:
        write_yaml_file(dest_path / INIT_SERVER_CONFIG_FILE, cluster.initialiser_config)

    if cluster.agent_config is not None:
        write_yaml_file(dest_path / AGENT_CONFIG_FILE, cluster.agent_config)


def kubernetes_config_path(ctx: BuildContext) -> Path:
    """User-supplied server config within the image configuration dir."""
    return ctx.image_config_dir / K8S_DIR / artefacts.K8S_CONFIG_DIR / SERVER_CONFIG_FILE


def kubernetes_manifests_path(ctx: BuildContext) -> Path:
    return ctx.image_config_dir / local_kubernetes_manifests_path()


def helm_values_path(ctx: BuildContext) -> Path:
    return ctx.image_config_dir / K8S_DIR / HELM_DIR / HELM_VALUES_DIR


def helm_certs_path(ctx: BuildContext) -> Path:
    return ctx.image_config_dir / K8S_DIR / HELM_DIR / HELM_CERTS_DIR
