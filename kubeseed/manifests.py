"""Composition of the manifests applied once the cluster is up.

Three sources may contribute files to ``kubernetes/manifests``: the
virtual IP manifest, raw manifests exposed by the registry provider, and
one HelmChart resource per configured chart. The directory is only
created when at least one of them has something to write.
"""
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from .artefacts import K8S_DIR, K8S_MANIFESTS_DIR
from .errors import KubeseedError, ManifestError
from .models import BuildContext, Distribution, KubernetesDefinition
from .registry import Registry
from .templates import render
from .utils import copy_files, prepend_artefact_path, write_file

logger = logging.getLogger("kubeseed.manifests")

VIP_MANIFEST_TEMPLATE = "k8s-vip.yaml.j2"
VIP_MANIFEST_FILE = "k8s-vip.yaml"


def local_kubernetes_manifests_path() -> str:
    return os.path.join(K8S_DIR, K8S_MANIFESTS_DIR)


def kubernetes_vip_manifest(kubernetes: KubernetesDefinition) -> str:
    """Render the manifest exposing the API server on the virtual IP."""
    return render(VIP_MANIFEST_TEMPLATE, {
        'apiAddress': kubernetes.network.api_vip,
        'rke2': kubernetes.distribution == Distribution.RKE2,
    })


def configure_manifests(ctx: BuildContext, registry: Optional[Registry]) -> str:
    """Populate the manifests directory.

    Args:
        ctx: Build context
        registry: Provider of raw manifests and Helm charts, if any

    Returns:
        str: Boot-time path of the manifests directory, or ``""`` when nothing was produced

    Raises:
        ManifestError: If any contributor fails
    """
    populated = False
    manifests_path = local_kubernetes_manifests_path()
    destination = ctx.artefacts_dir / manifests_path
    kubernetes = ctx.definition.kubernetes

    if kubernetes.network.api_vip:
        _make_manifests_dir(destination)
        try:
            manifest = kubernetes_vip_manifest(kubernetes)
            write_file(destination / VIP_MANIFEST_FILE, manifest)
        except KubeseedError as e:
            raise ManifestError(f"parsing VIP manifest: {e}") from e
        except OSError as e:
            raise ManifestError(f"storing VIP manifest: {e}") from e

        logger.debug(f"Stored VIP manifest for {kubernetes.network.api_vip}")
        populated = True

    if registry is not None:
        try:
            source = registry.manifests_path()
        except (KubeseedError, OSError) as e:
            raise ManifestError(f"collecting manifests: {e}") from e

        if source:
            try:
                copied = copy_files(source, destination)
            except OSError as e:
                raise ManifestError(f"copying manifests to combustion dir: {e}") from e
            logger.debug(f"Copied {copied} manifest(s) from {source}")
            if copied:
                populated = True

        try:
            charts = registry.helm_charts()
        except (KubeseedError, OSError) as e:
            raise ManifestError(f"getting helm charts: {e}") from e

        if charts:
            _make_manifests_dir(destination)
            for chart in charts:
                data = yaml.safe_dump(chart.to_dict(), default_flow_style=False, sort_keys=False)
                try:
                    write_file(destination / f"{chart.metadata.name}.yaml", data)
                except OSError as e:
                    raise ManifestError(f"storing helm chart: {e}") from e
            logger.debug(f"Stored {len(charts)} helm chart manifest(s)")
            populated = True

    if not populated:
        return ""

    return prepend_artefact_path(manifests_path)


def _make_manifests_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ManifestError(f"creating manifests destination dir: {e}") from e
