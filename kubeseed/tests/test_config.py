import pytest
import yaml
from pydantic import ValidationError

from kubeseed.config import Settings, get_config, set_config


def test_defaults(tmp_path):
    settings = Settings.load(tmp_path / "missing.yaml")

    assert settings.logging.level == "INFO"
    assert settings.logging.file is None
    assert settings.download.timeout == 300
    assert settings.download.k3s_script_url == "https://get.k3s.io"


def test_load_from_file(tmp_path):
    path = tmp_path / "kubeseed.yaml"
    path.write_text(yaml.safe_dump({
        "logging": {"level": "debug", "file": str(tmp_path / "kubeseed.log")},
        "download": {"timeout": 30},
    }))

    settings = Settings.load(path)

    assert settings.logging.level == "DEBUG"
    assert settings.download.timeout == 30


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "kubeseed.yaml"
    path.write_text(yaml.safe_dump({"logging": {"level": "ERROR"}}))
    monkeypatch.setenv("KUBESEED_LOGGING__LEVEL", "warning")

    settings = Settings.load(path)

    assert settings.logging.level == "WARNING"


def test_invalid_log_level(tmp_path):
    path = tmp_path / "kubeseed.yaml"
    path.write_text(yaml.safe_dump({"logging": {"level": "LOUD"}}))

    with pytest.raises(ValidationError):
        Settings.load(path)


def test_unreadable_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "kubeseed.yaml"
    path.write_text("logging: [unclosed\n")

    assert Settings.load(path).logging.level == "INFO"


def test_global_settings_are_cached(tmp_path):
    first = get_config(tmp_path / "missing.yaml")
    assert get_config() is first

    custom = Settings()
    set_config(custom)
    assert get_config() is custom
