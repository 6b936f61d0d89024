"""Manifests and Helm charts provided alongside the image definition.

The manifest composer only needs two things from this module: a directory
of raw manifests to copy verbatim, and a list of ``HelmChart`` resources
for the distribution's built-in helm controller.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union
from urllib.parse import urlparse

from .config import get_config
from .downloader import download_file
from .errors import ManifestError
from .models import BuildContext, HelmChartDefinition
from .utils import write_yaml_file

logger = logging.getLogger("kubeseed.registry")

HELM_CHART_API_VERSION = "helm.cattle.io/v1"
HELM_CHART_KIND = "HelmChart"

REGISTRY_MIRRORS_FILE = "registries.yaml"


class Registry(Protocol):
    """What the manifest composer consumes from a registry provider."""

    def manifests_path(self) -> str:
        ...

    def helm_charts(self) -> List['HelmChart']:
        ...


@dataclass
class HelmChartMetadata:
    name: str
    namespace: str = "kube-system"
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class HelmChart:
    """A ``helm.cattle.io/v1`` HelmChart custom resource."""
    metadata: HelmChartMetadata
    spec: Dict[str, Any]
    api_version: str = HELM_CHART_API_VERSION
    kind: str = HELM_CHART_KIND

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            'name': self.metadata.name,
            'namespace': self.metadata.namespace,
        }
        if self.metadata.annotations:
            metadata['annotations'] = dict(self.metadata.annotations)

        return {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'metadata': metadata,
            'spec': dict(self.spec),
        }


def new_helm_chart(chart: HelmChartDefinition, repository_url: str, values: str = "") -> HelmChart:
    """Build the HelmChart resource for a chart definition."""
    spec: Dict[str, Any] = {
        'repo': repository_url,
        'chart': chart.name,
        'version': chart.version,
    }
    if chart.target_namespace:
        spec['targetNamespace'] = chart.target_namespace
    if chart.create_namespace:
        spec['createNamespace'] = True
    if values:
        spec['valuesContent'] = values

    return HelmChart(
        metadata=HelmChartMetadata(name=chart.name, namespace=chart.install_namespace),
        spec=spec,
    )


class LocalRegistry:
    """Registry provider backed by the image configuration directory.

    Raw manifests come from ``<image config>/kubernetes/manifests`` plus any
    manifest URLs listed in the definition, which are downloaded into the
    build directory. Helm charts come from the definition's ``helm`` section.
    """

    def __init__(self, ctx: BuildContext, timeout: Optional[int] = None):
        self.ctx = ctx
        self.timeout = timeout if timeout is not None else get_config().download.timeout
        self._manifests_path: Optional[str] = None

    @property
    def local_manifests_dir(self) -> Path:
        return self.ctx.image_config_dir / "kubernetes" / "manifests"

    @property
    def helm_values_dir(self) -> Path:
        return self.ctx.image_config_dir / "kubernetes" / "helm" / "values"

    def manifests_path(self) -> str:
        """Return a directory holding all raw manifests, or ``""`` if there are none."""
        if self._manifests_path is None:
            self._manifests_path = self._collect_manifests()
        return self._manifests_path

    def _collect_manifests(self) -> str:
        local_files = []
        if self.local_manifests_dir.is_dir():
            local_files = [p for p in self.local_manifests_dir.iterdir() if p.is_file()]

        urls = self.ctx.definition.kubernetes.manifest_urls
        if not urls:
            return str(self.local_manifests_dir) if local_files else ""

        staging = self.ctx.build_dir / "downloaded-manifests"
        staging.mkdir(parents=True, exist_ok=True)

        for source in local_files:
            (staging / source.name).write_bytes(source.read_bytes())

        for index, url in enumerate(urls):
            name = os.path.basename(urlparse(url).path) or f"manifest-{index}.yaml"
            logger.info(f"Downloading manifest {url}")
            download_file(url, staging / f"dl-{index}-{name}", timeout=self.timeout)

        return str(staging)

    def helm_charts(self) -> List[HelmChart]:
        """Build one HelmChart resource per chart in the definition.

        Raises:
            ManifestError: If a chart's repository or values file is missing
        """
        k8s = self.ctx.definition.kubernetes
        charts = []
        for chart in k8s.helm_charts:
            repository = k8s.helm_repository(chart.repository_name)
            if repository is None:
                raise ManifestError(
                    f"helm chart '{chart.name}' references unknown repository '{chart.repository_name}'"
                )

            values = ""
            if chart.values_file:
                values_path = self.helm_values_dir / chart.values_file
                try:
                    values = values_path.read_text(encoding='utf-8')
                except OSError as e:
                    raise ManifestError(f"reading helm values file {values_path}: {e}") from e

            charts.append(new_helm_chart(chart, repository.url, values))
        return charts


def store_registry_mirrors(mirrors: Dict[str, List[str]], path: Union[str, Path]) -> bool:
    """Write a ``registries.yaml`` for the declared mirrors.

    Returns:
        bool: Whether a file was written
    """
    if not mirrors:
        return False

    data = {
        'mirrors': {
            registry: {'endpoint': list(endpoints)}
            for registry, endpoints in mirrors.items()
        }
    }
    write_yaml_file(path, data)
    logger.debug(f"Stored registry mirrors for {', '.join(mirrors)} at {path}")
    return True
