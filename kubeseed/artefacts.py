"""Artefact staging for Kubernetes distributions.

Lays out, under the build's artefacts directory::

    kubernetes/
        <install script>
        config/     server.yaml, init_server.yaml, agent.yaml
        install/    k3s binary, or the RKE2 install tree
        images/     airgap image archives
        manifests/  optional, see kubeseed.manifests

Paths returned to callers are expressed relative to ``$ARTEFACTS_DIR`` so
they can be embedded into the first-boot script as-is.
"""
import logging
import os
from pathlib import Path
from typing import Protocol, Tuple, Union

from .cluster import Cluster
from .errors import ArtefactLayoutError, ConfigurationError, KubeseedError, StagingError
from .models import BuildContext, Distribution
from .utils import prepend_artefact_path

logger = logging.getLogger("kubeseed.artefacts")

K8S_DIR = "kubernetes"
K8S_CONFIG_DIR = "config"
K8S_INSTALL_DIR = "install"
K8S_IMAGES_DIR = "images"
K8S_MANIFESTS_DIR = "manifests"


class ArtefactDownloader(Protocol):
    """Download interface consumed by the stager."""

    def download_install_script(self, distribution: Distribution, dest_path: Union[str, Path]) -> str:
        ...

    def download_k3s_artefacts(
        self,
        arch: str,
        version: str,
        install_path: Union[str, Path],
        images_path: Union[str, Path],
    ) -> None:
        ...

    def download_rke2_artefacts(
        self,
        arch: str,
        version: str,
        cni: str,
        multus_enabled: bool,
        install_path: Union[str, Path],
        images_path: Union[str, Path],
    ) -> None:
        ...


def kubernetes_artefacts_path(ctx: BuildContext) -> Path:
    return ctx.artefacts_dir / K8S_DIR


def kubernetes_config_dir(ctx: BuildContext) -> Path:
    """Directory the per-role configs are stored in."""
    return kubernetes_artefacts_path(ctx) / K8S_CONFIG_DIR


def _make_dir(path: Path, what: str) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StagingError(f"creating kubernetes {what} dir: {e}") from e


def download_install_script(
    ctx: BuildContext, downloader: ArtefactDownloader, distribution: Distribution
) -> str:
    """Store the generic installer and return its boot-time path.

    Raises:
        StagingError: If the script cannot be downloaded
    """
    path = kubernetes_artefacts_path(ctx)
    _make_dir(path, "artefacts")

    try:
        script = downloader.download_install_script(distribution, path)
    except (KubeseedError, OSError) as e:
        raise StagingError(f"downloading install script: {e}") from e

    return prepend_artefact_path(os.path.join(K8S_DIR, script))


def _prepare_install_and_images(ctx: BuildContext) -> Tuple[str, Path, str, Path]:
    images_path = os.path.join(K8S_DIR, K8S_IMAGES_DIR)
    images_destination = ctx.artefacts_dir / images_path
    _make_dir(images_destination, "images")

    install_path = os.path.join(K8S_DIR, K8S_INSTALL_DIR)
    install_destination = ctx.artefacts_dir / install_path
    _make_dir(install_destination, "install")

    return install_path, install_destination, images_path, images_destination


def locate_single_binary(install_destination: Union[str, Path]) -> str:
    """Return the name of the only file in *install_destination*.

    k3s ships a single binary whose release asset name depends on the CPU
    architecture (``k3s`` on x86_64, ``k3s-arm64`` on aarch64). Only one
    architecture is staged per build, so anything other than exactly one
    regular file means the download went wrong.

    Raises:
        ArtefactLayoutError: If the directory holds anything else
    """
    install_destination = Path(install_destination)
    try:
        entries = sorted(install_destination.iterdir())
    except OSError as e:
        raise StagingError(f"reading k3s install path: {e}") from e

    if len(entries) != 1 or entries[0].is_dir():
        names = [e.name for e in entries]
        raise ArtefactLayoutError(f"k3s install path contains unexpected entries: {names}")

    return entries[0].name


def download_k3s_artefacts(ctx: BuildContext, downloader: ArtefactDownloader) -> Tuple[str, str]:
    """Stage the k3s binary and images.

    Returns:
        tuple: (binary_path, images_path) as seen at boot time

    Raises:
        StagingError: If staging fails or the install dir has an unexpected shape
    """
    install_path, install_destination, images_path, images_destination = _prepare_install_and_images(ctx)

    try:
        downloader.download_k3s_artefacts(
            ctx.definition.arch,
            ctx.definition.kubernetes.version,
            install_destination,
            images_destination,
        )
    except (KubeseedError, OSError) as e:
        raise StagingError(f"downloading artefacts: {e}") from e

    binary = locate_single_binary(install_destination)
    binary_path = os.path.join(install_path, binary)
    logger.debug(f"Staged k3s binary at {binary_path}")

    return prepend_artefact_path(binary_path), prepend_artefact_path(images_path)


def download_rke2_artefacts(
    ctx: BuildContext, downloader: ArtefactDownloader, cluster: Cluster
) -> Tuple[str, str]:
    """Stage the RKE2 install tree and the images for the configured CNI.

    Returns:
        tuple: (install_path, images_path) as seen at boot time

    Raises:
        ConfigurationError: If the CNI cannot be determined
        StagingError: If staging fails
    """
    try:
        cni, multus_enabled = cluster.extract_cni()
    except ConfigurationError as e:
        raise ConfigurationError(f"extracting CNI from cluster config: {e}") from e

    install_path, install_destination, images_path, images_destination = _prepare_install_and_images(ctx)

    try:
        downloader.download_rke2_artefacts(
            ctx.definition.arch,
            ctx.definition.kubernetes.version,
            cni,
            multus_enabled,
            install_destination,
            images_destination,
        )
    except (KubeseedError, OSError) as e:
        raise StagingError(f"downloading artefacts: {e}") from e

    logger.debug(f"Staged RKE2 artefacts for CNI {cni} (multus: {multus_enabled})")
    return prepend_artefact_path(install_path), prepend_artefact_path(images_path)
