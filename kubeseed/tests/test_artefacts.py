import pytest

from kubeseed import artefacts
from kubeseed.cluster import Cluster
from kubeseed.errors import ArtefactLayoutError, ConfigurationError, StagingError
from kubeseed.models import Distribution

from .helpers import FakeDownloader, make_context


def test_install_script_path_is_relative_to_artefacts(tmp_path):
    ctx = make_context(tmp_path)
    path = artefacts.download_install_script(ctx, FakeDownloader(), Distribution.K3S)

    assert path == "$ARTEFACTS_DIR/kubernetes/k3s_installer.sh"
    assert (ctx.artefacts_dir / "kubernetes" / "k3s_installer.sh").exists()


def test_k3s_single_binary(tmp_path):
    ctx = make_context(tmp_path)
    binary_path, images_path = artefacts.download_k3s_artefacts(ctx, FakeDownloader())

    assert binary_path == "$ARTEFACTS_DIR/kubernetes/install/k3s"
    assert images_path == "$ARTEFACTS_DIR/kubernetes/images"
    assert (ctx.artefacts_dir / "kubernetes" / "images").is_dir()


def test_k3s_arm_binary_name_is_discovered(tmp_path):
    ctx = make_context(tmp_path)
    binary_path, _ = artefacts.download_k3s_artefacts(ctx, FakeDownloader(k3s_binaries=("k3s-arm64",)))

    assert binary_path.endswith("/install/k3s-arm64")


@pytest.mark.parametrize("binaries", [(), ("k3s", "k3s-arm64")])
def test_k3s_unexpected_install_entries(tmp_path, binaries):
    ctx = make_context(tmp_path)
    with pytest.raises(ArtefactLayoutError, match="unexpected entries"):
        artefacts.download_k3s_artefacts(ctx, FakeDownloader(k3s_binaries=binaries))


def test_k3s_install_dir_with_directory_entry(tmp_path):
    install_dir = tmp_path / "install"
    (install_dir / "nested").mkdir(parents=True)

    with pytest.raises(ArtefactLayoutError):
        artefacts.locate_single_binary(install_dir)


def test_download_failure_is_wrapped(tmp_path):
    ctx = make_context(tmp_path)
    with pytest.raises(StagingError, match="downloading artefacts: connection reset"):
        artefacts.download_k3s_artefacts(ctx, FakeDownloader(fail=True))


def test_rke2_passes_cni_to_downloader(tmp_path):
    ctx = make_context(tmp_path, version="v1.30.3+rke2r1")
    downloader = FakeDownloader()
    cluster = Cluster(server_config={"cni": ["multus", "calico"]})

    install_path, images_path = artefacts.download_rke2_artefacts(ctx, downloader, cluster)

    assert install_path == "$ARTEFACTS_DIR/kubernetes/install"
    assert images_path == "$ARTEFACTS_DIR/kubernetes/images"
    assert downloader.rke2_calls == [("x86_64", "v1.30.3+rke2r1", "calico", True)]


def test_rke2_without_cni_fails_before_download(tmp_path):
    ctx = make_context(tmp_path, version="v1.30.3+rke2r1")
    downloader = FakeDownloader()

    with pytest.raises(ConfigurationError, match="extracting CNI"):
        artefacts.download_rke2_artefacts(ctx, downloader, Cluster(server_config={}))

    assert downloader.rke2_calls == []
    assert not (ctx.artefacts_dir / "kubernetes" / "install").exists()
