"""kubeseed settings management.

Settings are loaded from multiple sources with the following precedence:
1. Environment variables (``KUBESEED_`` prefix, ``__`` for nested values)
2. Configuration files
3. Default values
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("kubeseed.config")

# Load environment variables from .env file if it exists
load_dotenv()

DEFAULT_CONFIG_PATHS = [
    Path("/etc/kubeseed/config.yaml"),
    Path("~/.config/kubeseed/config.yaml").expanduser(),
    Path("kubeseed.yaml").absolute(),
]


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (if None, logs to stderr)"
    )
    max_size_mb: int = Field(
        default=100,
        description="Maximum log file size in MB before rotation"
    )
    backup_count: int = Field(
        default=5,
        description="Number of backup log files to keep"
    )

    @field_validator('level')
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"invalid log level: {v}")
        return level


class DownloadConfig(BaseModel):
    """Upstream locations and limits for artefact downloads."""
    timeout: int = Field(
        default=300,
        description="Timeout in seconds for a single HTTP request"
    )
    k3s_script_url: str = Field(
        default="https://get.k3s.io",
        description="Location of the k3s install script"
    )
    rke2_script_url: str = Field(
        default="https://get.rke2.io",
        description="Location of the RKE2 install script"
    )
    k3s_release_url: str = Field(
        default="https://github.com/k3s-io/k3s/releases/download",
        description="Base URL of k3s release assets"
    )
    rke2_release_url: str = Field(
        default="https://github.com/rancher/rke2/releases/download",
        description="Base URL of RKE2 release assets"
    )


class Settings(BaseSettings):
    """kubeseed settings."""
    model_config = SettingsConfigDict(
        env_prefix="KUBESEED_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values read from a settings file.
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> 'Settings':
        """Load settings from file and environment variables."""
        config_data: Dict[str, Any] = {}

        candidates: List[Path] = (
            [Path(config_path)] if config_path else list(DEFAULT_CONFIG_PATHS)
        )
        for path in candidates:
            path = path.expanduser().absolute()
            if path.exists():
                config_data = cls._load_config_file(path)
                logger.debug(f"Loaded settings from {path}")
                break

        return cls(**config_data)

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load settings from a YAML file."""
        try:
            with open(path, 'r') as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}


# Global settings instance
_config: Optional[Settings] = None


def get_config(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """Get or create the global settings instance."""
    global _config
    if _config is None:
        _config = Settings.load(config_path)
    return _config


def set_config(config: Optional[Settings]) -> None:
    """Set (or reset with ``None``) the global settings instance."""
    global _config
    _config = config
