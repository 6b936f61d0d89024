"""
kubeseed - Kubernetes bootstrapping for fleets built from a single OS image.

At image build time kubeseed classifies the declared cluster topology,
stages the k3s or RKE2 artefacts and renders one installer script. At
first boot every node runs that same script, which works out from the
node's hostname whether it is a server, an agent or the server that
initialises the cluster.
"""

from .boot import BootPlan, BootProfile, BootStep, plan_boot
from .cluster import Cluster, new_cluster, servers_count
from .definition import load_definition
from .errors import (
    ArtefactLayoutError,
    BootError,
    ConfigurationError,
    DownloadError,
    KubeseedError,
    ManifestError,
    StagingError,
    TemplateRenderError,
)
from .installer import configure_kubernetes
from .models import BuildContext, Distribution, ImageDefinition, KubernetesDefinition, Network, Node, NodeType

__all__ = [
    'BootPlan',
    'BootProfile',
    'BootStep',
    'plan_boot',
    'Cluster',
    'new_cluster',
    'servers_count',
    'load_definition',
    'configure_kubernetes',
    'BuildContext',
    'Distribution',
    'ImageDefinition',
    'KubernetesDefinition',
    'Network',
    'Node',
    'NodeType',
    'KubeseedError',
    'ConfigurationError',
    'StagingError',
    'ArtefactLayoutError',
    'DownloadError',
    'ManifestError',
    'TemplateRenderError',
    'BootError',
]

__version__ = "0.1.0"
