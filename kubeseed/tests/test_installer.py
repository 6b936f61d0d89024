import logging
import os
import stat

import pytest
import yaml

from kubeseed import installer
from kubeseed.errors import ConfigurationError, StagingError, TemplateRenderError
from kubeseed.models import Distribution, Node, NodeType
from kubeseed.templates import render

from .helpers import FakeDownloader, FakeRegistry, make_context, three_node_cluster


def _base_values(**overrides):
    values = {
        'installScript': "$ARTEFACTS_DIR/kubernetes/k3s_installer.sh",
        'apiVIP': "",
        'apiHost': "",
        'binaryPath': "$ARTEFACTS_DIR/kubernetes/install/k3s",
        'installPath': "$ARTEFACTS_DIR/kubernetes/install",
        'imagesPath': "$ARTEFACTS_DIR/kubernetes/images",
        'manifestsPath': "",
        'configFilePath': "$ARTEFACTS_DIR/kubernetes/config",
        'registryMirrors': "$ARTEFACTS_DIR/kubernetes/registries.yaml",
        'configFile': "server.yaml",
        'nodes': list(three_node_cluster()),
        'initialiser': "node-1",
        'initialiserConfigFile': "init_server.yaml",
    }
    values.update(overrides)
    return values


@pytest.mark.parametrize("distribution, count, expected", [
    (Distribution.K3S, 0, "k3s-single-node-installer.sh.j2"),
    (Distribution.K3S, 1, "k3s-single-node-installer.sh.j2"),
    (Distribution.K3S, 2, "k3s-multi-node-installer.sh.j2"),
    (Distribution.RKE2, 1, "rke2-single-node-installer.sh.j2"),
    (Distribution.RKE2, 3, "rke2-multi-node-installer.sh.j2"),
])
def test_select_installer_template(distribution, count, expected):
    assert installer.select_installer_template(distribution, count) == expected


@pytest.mark.parametrize("template", sorted(set(installer.INSTALLER_TEMPLATES.values())))
def test_rendering_is_idempotent(template):
    values = _base_values(apiVIP="10.0.0.5", apiHost="api.example.com", manifestsPath="$ARTEFACTS_DIR/kubernetes/manifests")
    assert render(template, values) == render(template, values)


@pytest.mark.parametrize("template", sorted(set(installer.INSTALLER_TEMPLATES.values())))
def test_no_hosts_entry_without_vip(template):
    script = render(template, _base_values())
    assert "/etc/hosts" not in script


@pytest.mark.parametrize("template", sorted(set(installer.INSTALLER_TEMPLATES.values())))
def test_hosts_entry_requires_vip_and_host(template):
    assert "/etc/hosts" not in render(template, _base_values(apiVIP="10.0.0.5"))
    assert "/etc/hosts" not in render(template, _base_values(apiHost="api.example.com"))

    script = render(template, _base_values(apiVIP="10.0.0.5", apiHost="api.example.com"))
    assert 'echo "10.0.0.5 api.example.com" >> /etc/hosts' in script


@pytest.mark.parametrize("template", sorted(set(installer.INSTALLER_TEMPLATES.values())))
def test_scripts_fail_fast(template):
    script = render(template, _base_values())
    assert script.startswith("#!/bin/bash\nset -euo pipefail\n")


def test_manifests_unit_only_rendered_with_manifests():
    without = render("k3s-multi-node-installer.sh.j2", _base_values())
    with_manifests = render(
        "k3s-multi-node-installer.sh.j2",
        _base_values(manifestsPath="$ARTEFACTS_DIR/kubernetes/manifests"),
    )

    assert "kubernetes-resources-install.service" not in without
    assert "cp $ARTEFACTS_DIR/kubernetes/manifests/* /opt/k3s-manifests/" in with_manifests
    assert "WantedBy=multi-user.target" in with_manifests
    assert "systemctl enable kubernetes-resources-install.service" in with_manifests


def test_multi_node_script_embeds_role_table():
    script = render("rke2-multi-node-installer.sh.j2", _base_values())

    assert "hosts[node-1]=server\nhosts[node-2]=agent\nhosts[node-3]=agent\n" in script
    assert 'if [ "$HOSTNAME" = "node-1" ]; then' in script
    assert "CONFIGFILE=$ARTEFACTS_DIR/kubernetes/config/init_server.yaml" in script
    assert 'export INSTALL_RKE2_TYPE=$NODETYPE' in script
    assert "localhost.localdomain" in script


def test_missing_required_value_fails():
    values = _base_values()
    del values['imagesPath']
    with pytest.raises(TemplateRenderError, match="imagesPath"):
        render("k3s-single-node-installer.sh.j2", values)


def test_configure_kubernetes_skipped_without_version(tmp_path):
    ctx = make_context(tmp_path, version="")
    assert installer.configure_kubernetes(ctx, FakeDownloader()) == []
    assert not ctx.build_dir.exists()


def test_configure_kubernetes_unknown_distribution(tmp_path):
    ctx = make_context(tmp_path, version="v1.30.3")
    with pytest.raises(ConfigurationError, match="cannot configure kubernetes version"):
        installer.configure_kubernetes(ctx, FakeDownloader())


def test_configure_k3s_single_node(tmp_path):
    ctx = make_context(tmp_path)

    scripts = installer.configure_kubernetes(ctx, FakeDownloader(), FakeRegistry())

    assert scripts == ["20-k8s-install.sh"]
    script_path = ctx.combustion_dir / "20-k8s-install.sh"
    assert os.stat(script_path).st_mode & stat.S_IXUSR

    script = script_path.read_text()
    assert "CONFIGFILE=$ARTEFACTS_DIR/kubernetes/config/server.yaml" in script
    assert "cp $ARTEFACTS_DIR/kubernetes/install/k3s $INSTALL_K3S_BIN_DIR/k3s" in script
    assert "sh $ARTEFACTS_DIR/kubernetes/k3s_installer.sh" in script
    assert "kubernetes-resources-install" not in script
    assert "hosts[" not in script

    config_dir = ctx.artefacts_dir / "kubernetes" / "config"
    assert sorted(p.name for p in config_dir.iterdir()) == ["server.yaml"]
    assert not (ctx.artefacts_dir / "kubernetes" / "manifests").exists()


def test_configure_rke2_multi_node(tmp_path):
    ctx = make_context(
        tmp_path,
        version="v1.30.3+rke2r1",
        nodes=three_node_cluster(),
        api_vip="10.0.0.5",
        api_host="api.example.com",
    )

    installer.configure_kubernetes(ctx, FakeDownloader(), FakeRegistry())

    config_dir = ctx.artefacts_dir / "kubernetes" / "config"
    assert sorted(p.name for p in config_dir.iterdir()) == ["agent.yaml", "init_server.yaml", "server.yaml"]
    agent = yaml.safe_load((config_dir / "agent.yaml").read_text())
    assert agent["server"] == "https://10.0.0.5:9345"

    script = (ctx.combustion_dir / "20-k8s-install.sh").read_text()
    assert "export INSTALL_RKE2_ARTIFACT_PATH=$ARTEFACTS_DIR/kubernetes/install" in script
    assert "cp $ARTEFACTS_DIR/kubernetes/manifests/* /opt/rke2-manifests/" in script
    assert 'echo "10.0.0.5 api.example.com" >> /etc/hosts' in script


def test_registry_mirrors_are_stored(tmp_path):
    ctx = make_context(tmp_path)
    ctx.definition.kubernetes.registry_mirrors["docker.io"] = ["https://mirror.example.com"]

    installer.configure_kubernetes(ctx, FakeDownloader())

    mirrors = yaml.safe_load((ctx.artefacts_dir / "kubernetes" / "registries.yaml").read_text())
    assert mirrors == {"mirrors": {"docker.io": {"endpoint": ["https://mirror.example.com"]}}}


def test_staging_failure_is_wrapped(tmp_path):
    ctx = make_context(tmp_path)

    with pytest.raises(StagingError, match="configuring kubernetes components: downloading k3s artefacts"):
        installer.configure_kubernetes(ctx, FakeDownloader(k3s_binaries=()))

    assert not (ctx.combustion_dir / "20-k8s-install.sh").exists()


def test_two_servers_warning(tmp_path, caplog):
    nodes = (Node("s1", NodeType.SERVER), Node("s2", NodeType.SERVER))
    ctx = make_context(tmp_path, nodes=nodes, api_vip="10.0.0.5")

    with caplog.at_level(logging.WARNING, logger="kubeseed.installer"):
        installer.configure_kubernetes(ctx, FakeDownloader())

    assert "two server nodes" in caplog.text


def test_single_node_k3s_vip_warning(tmp_path, caplog):
    ctx = make_context(tmp_path, api_vip="10.0.0.5")

    with caplog.at_level(logging.WARNING, logger="kubeseed.installer"):
        scripts = installer.configure_kubernetes(ctx, FakeDownloader())

    assert scripts == ["20-k8s-install.sh"]
    assert "invalidate Traefik configuration" in caplog.text


def test_preview_matches_build(tmp_path):
    ctx = make_context(tmp_path, nodes=three_node_cluster(), api_vip="10.0.0.5")
    preview = installer.preview_template_values(ctx)

    assert preview['binaryPath'] == "$ARTEFACTS_DIR/kubernetes/install/k3s"
    assert preview['installScript'] == "$ARTEFACTS_DIR/kubernetes/k3s_installer.sh"
    assert preview['manifestsPath'] == "$ARTEFACTS_DIR/kubernetes/manifests"
    assert preview['initialiser'] == "node-1"


def test_image_config_paths(tmp_path):
    ctx = make_context(tmp_path)
    config_dir = tmp_path / "config"

    assert installer.kubernetes_config_path(ctx) == config_dir / "kubernetes" / "config" / "server.yaml"
    assert installer.kubernetes_manifests_path(ctx) == config_dir / "kubernetes" / "manifests"
    assert installer.helm_values_path(ctx) == config_dir / "kubernetes" / "helm" / "values"
    assert installer.helm_certs_path(ctx) == config_dir / "kubernetes" / "helm" / "certs"
