"""Fake collaborators and builders shared by the kubeseed tests."""
from pathlib import Path
from typing import List, Tuple

from kubeseed.models import (
    BuildContext,
    ImageDefinition,
    KubernetesDefinition,
    Network,
    Node,
    NodeType,
)
from kubeseed.registry import HelmChart, HelmChartMetadata


class FakeDownloader:
    """Writes placeholder artefacts instead of downloading them."""

    def __init__(self, k3s_binaries: Tuple[str, ...] = ("k3s",), fail: bool = False):
        self.k3s_binaries = k3s_binaries
        self.fail = fail
        self.rke2_calls: List[tuple] = []

    def download_install_script(self, distribution, dest_path):
        name = f"{distribution.value}_installer.sh"
        (Path(dest_path) / name).write_text("#!/bin/sh\n")
        return name

    def download_k3s_artefacts(self, arch, version, install_path, images_path):
        if self.fail:
            raise OSError("connection reset")
        for binary in self.k3s_binaries:
            (Path(install_path) / binary).write_text("binary")
        (Path(images_path) / "k3s-airgap-images-amd64.tar.zst").write_text("images")

    def download_rke2_artefacts(self, arch, version, cni, multus_enabled, install_path, images_path):
        self.rke2_calls.append((arch, version, cni, multus_enabled))
        (Path(install_path) / "rke2.linux-amd64.tar.gz").write_text("tarball")
        (Path(install_path) / "sha256sum-amd64.txt").write_text("sums")
        (Path(images_path) / "rke2-images-core.linux-amd64.tar.zst").write_text("images")


class FakeRegistry:
    def __init__(self, manifests_path: str = "", charts=None):
        self._manifests_path = manifests_path
        self._charts = charts or []

    def manifests_path(self) -> str:
        return self._manifests_path

    def helm_charts(self):
        return list(self._charts)


def make_chart(name: str) -> HelmChart:
    return HelmChart(
        metadata=HelmChartMetadata(name=name),
        spec={'repo': 'https://charts.example.com', 'chart': name, 'version': '1.0.0'},
    )


def three_node_cluster() -> Tuple[Node, ...]:
    return (
        Node("node-1", NodeType.SERVER),
        Node("node-2", NodeType.AGENT),
        Node("node-3", NodeType.AGENT),
    )


def make_context(
    tmp_path: Path,
    version: str = "v1.30.3+k3s1",
    nodes: Tuple[Node, ...] = (),
    api_vip: str = "",
    api_host: str = "",
) -> BuildContext:
    definition = ImageDefinition(
        arch="x86_64",
        kubernetes=KubernetesDefinition(
            version=version,
            nodes=nodes,
            network=Network(api_vip=api_vip, api_host=api_host),
        ),
    )
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    return BuildContext(image_config_dir=config_dir, build_dir=tmp_path / "build", definition=definition)
