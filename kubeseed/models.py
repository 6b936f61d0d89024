"""Data models for kubeseed image definitions and builds."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError


class Distribution(str, Enum):
    """Supported Kubernetes distributions."""
    K3S = 'k3s'
    RKE2 = 'rke2'

    @classmethod
    def from_version(cls, version: str) -> 'Distribution':
        """Detect the distribution encoded in a version string.

        Args:
            version: Version such as ``v1.30.3+k3s1`` or ``v1.30.3+rke2r1``

        Returns:
            Distribution: The matching distribution

        Raises:
            ConfigurationError: If the version names no known distribution
        """
        if cls.RKE2.value in version:
            return cls.RKE2
        if cls.K3S.value in version:
            return cls.K3S
        raise ConfigurationError(f"cannot configure kubernetes version: {version}")


class NodeType(str, Enum):
    """Roles a node can be declared with."""
    SERVER = 'server'
    AGENT = 'agent'


SUPPORTED_ARCHITECTURES = ('x86_64', 'aarch64')


@dataclass(frozen=True)
class Node:
    """A machine declared in the cluster definition."""
    hostname: str
    type: NodeType
    initialiser: bool = False


@dataclass(frozen=True)
class Network:
    """Cluster-wide network settings."""
    api_vip: str = ''
    api_host: str = ''


@dataclass(frozen=True)
class HelmRepository:
    """A Helm repository charts can be pulled from."""
    name: str
    url: str


@dataclass(frozen=True)
class HelmChartDefinition:
    """A Helm chart to be installed by the cluster's helm controller."""
    name: str
    repository_name: str
    version: str
    target_namespace: str = ''
    create_namespace: bool = False
    install_namespace: str = 'kube-system'
    values_file: str = ''


@dataclass(frozen=True)
class KubernetesDefinition:
    """The Kubernetes section of an image definition."""
    version: str = ''
    nodes: Tuple[Node, ...] = ()
    network: Network = field(default_factory=Network)
    manifest_urls: Tuple[str, ...] = ()
    helm_charts: Tuple[HelmChartDefinition, ...] = ()
    helm_repositories: Tuple[HelmRepository, ...] = ()
    registry_mirrors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def distribution(self) -> Distribution:
        return Distribution.from_version(self.version)

    @property
    def single_node(self) -> bool:
        return len(self.nodes) < 2

    def helm_repository(self, name: str) -> Optional[HelmRepository]:
        return next((r for r in self.helm_repositories if r.name == name), None)


@dataclass(frozen=True)
class ImageDefinition:
    """The parts of an image definition kubeseed acts upon."""
    arch: str = 'x86_64'
    kubernetes: KubernetesDefinition = field(default_factory=KubernetesDefinition)


@dataclass
class BuildContext:
    """Paths and inputs for a single image build.

    ``image_config_dir`` holds user-provided inputs (configs, manifests, helm
    values). ``build_dir`` is the per-build working directory; everything
    written by kubeseed ends up below it.
    """
    image_config_dir: Path
    build_dir: Path
    definition: ImageDefinition

    @property
    def artefacts_dir(self) -> Path:
        return self.build_dir / 'artefacts'

    @property
    def combustion_dir(self) -> Path:
        return self.build_dir / 'combustion'
