"""HTTP downloads of Kubernetes distribution artefacts.

Implements the download side of artefact staging: install scripts, the k3s
binary, RKE2 install tarballs and the airgap image archives, all fetched
from the upstream release locations configured in :mod:`kubeseed.config`.
"""
import logging
import os
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote

import requests

from .config import DownloadConfig, get_config
from .errors import ConfigurationError, DownloadError
from .models import Distribution
from .utils import EXECUTABLE_PERMS

logger = logging.getLogger("kubeseed.downloader")

CHUNK_SIZE = 1024 * 1024

K3S_INSTALL_SCRIPT = "k3s_installer.sh"
RKE2_INSTALL_SCRIPT = "rke2_installer.sh"

_ARCH_ALIASES = {
    'x86_64': 'amd64',
    'aarch64': 'arm64',
}


def download_file(url: str, destination: Union[str, Path], timeout: int = 300) -> Path:
    """Stream *url* into *destination*.

    Args:
        url: Location to fetch
        destination: File to write
        timeout: Request timeout in seconds

    Returns:
        Path: The written file

    Raises:
        DownloadError: On any HTTP or filesystem failure
    """
    destination = Path(destination)
    logger.debug(f"Downloading {url} to {destination}")
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(destination, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
    except requests.RequestException as e:
        raise DownloadError(f"downloading {url}: {e}") from e
    except OSError as e:
        raise DownloadError(f"writing {destination}: {e}") from e

    return destination


def _release_arch(arch: str) -> str:
    try:
        return _ARCH_ALIASES[arch]
    except KeyError:
        raise ConfigurationError(f"unsupported architecture: {arch}") from None


class HTTPArtefactDownloader:
    """Fetch distribution artefacts from their upstream release pages."""

    def __init__(self, config: Optional[DownloadConfig] = None):
        self.config = config or get_config().download

    def download_install_script(self, distribution: Distribution, dest_path: Union[str, Path]) -> str:
        """Download the generic installer for *distribution* into *dest_path*.

        Returns:
            str: File name of the stored script
        """
        if distribution == Distribution.RKE2:
            url, name = self.config.rke2_script_url, RKE2_INSTALL_SCRIPT
        else:
            url, name = self.config.k3s_script_url, K3S_INSTALL_SCRIPT

        path = download_file(url, Path(dest_path) / name, timeout=self.config.timeout)
        os.chmod(path, EXECUTABLE_PERMS)
        return name

    def download_k3s_artefacts(
        self,
        arch: str,
        version: str,
        install_path: Union[str, Path],
        images_path: Union[str, Path],
    ) -> None:
        """Download the k3s binary and its airgap images."""
        release_arch = _release_arch(arch)
        binary = "k3s" if release_arch == "amd64" else f"k3s-{release_arch}"
        images = f"k3s-airgap-images-{release_arch}.tar.zst"

        base = self._release_base(self.config.k3s_release_url, version)
        download_file(f"{base}/{binary}", Path(install_path) / binary, timeout=self.config.timeout)
        download_file(f"{base}/{images}", Path(images_path) / images, timeout=self.config.timeout)

    def download_rke2_artefacts(
        self,
        arch: str,
        version: str,
        cni: str,
        multus_enabled: bool,
        install_path: Union[str, Path],
        images_path: Union[str, Path],
    ) -> None:
        """Download the RKE2 install tarball, its checksums and the images for *cni*."""
        release_arch = _release_arch(arch)
        base = self._release_base(self.config.rke2_release_url, version)

        install_assets = [
            f"rke2.linux-{release_arch}.tar.gz",
            f"sha256sum-{release_arch}.txt",
        ]
        image_assets: List[str] = [
            f"rke2-images-core.linux-{release_arch}.tar.zst",
            f"rke2-images-{cni}.linux-{release_arch}.tar.zst",
        ]
        if multus_enabled:
            image_assets.append(f"rke2-images-multus.linux-{release_arch}.tar.zst")

        for asset in install_assets:
            download_file(f"{base}/{asset}", Path(install_path) / asset, timeout=self.config.timeout)
        for asset in image_assets:
            download_file(f"{base}/{asset}", Path(images_path) / asset, timeout=self.config.timeout)

    @staticmethod
    def _release_base(release_url: str, version: str) -> str:
        # Release tags carry a '+' which must be escaped in URLs.
        return f"{release_url.rstrip('/')}/{quote(version, safe='')}"
