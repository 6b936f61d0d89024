"""Logging configuration for the kubeseed package.

Two channels are used: regular module loggers (``kubeseed.<module>``) for
diagnostics, and the ``kubeseed.audit`` logger for the short, user-facing
progress messages printed during a build.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
AUDIT_LOGGER = "kubeseed.audit"


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5,
    debug: bool = False,
) -> None:
    """Configure the ``kubeseed`` logger hierarchy.

    Args:
        level: Level name for diagnostic loggers
        log_file: Optional path of a rotating log file
        max_size_mb: Maximum log file size in MB before rotation
        backup_count: Number of rotated files to keep
        debug: Force DEBUG level regardless of *level*
    """
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger("kubeseed")
    root.setLevel(log_level)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    if log_file:
        path = Path(log_file).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)
        root.debug(f"Logging to file: {path}")

    # Audit messages are meant for the operator and always go to stdout as-is.
    audit_logger = logging.getLogger(AUDIT_LOGGER)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False
    if not audit_logger.handlers:
        audit_handler = logging.StreamHandler(sys.stdout)
        audit_handler.setFormatter(logging.Formatter('%(message)s'))
        audit_logger.addHandler(audit_handler)


def audit(message: str) -> None:
    """Emit a user-facing progress message."""
    logging.getLogger(AUDIT_LOGGER).info(message)


def audit_component_skipped(component: str) -> None:
    audit(f"Skipping {component} component, configuration is not provided")


def audit_component_failed(component: str) -> None:
    audit(f"Failed to configure {component} component")


def audit_component_successful(component: str) -> None:
    audit(f"Successfully configured {component} component")
