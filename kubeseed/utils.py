"""Filesystem helpers shared by the build stages."""

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Union

import yaml

logger = logging.getLogger("kubeseed.utils")

EXECUTABLE_PERMS = 0o755
NON_EXECUTABLE_PERMS = 0o644

# Variable exported by the first-boot runner; points at the staged artefacts.
ARTEFACTS_DIR_VARIABLE = "$ARTEFACTS_DIR"


def prepend_artefact_path(path: Union[str, Path]) -> str:
    """Return *path* relative to the artefacts directory as seen at boot time."""
    return os.path.join(ARTEFACTS_DIR_VARIABLE, str(path))


def write_yaml_file(path: Union[str, Path], data: Dict[str, Any], mode: int = NON_EXECUTABLE_PERMS) -> None:
    """Write a YAML file with the given data.

    Args:
        path: Path to the YAML file
        data: Data to write as YAML
        mode: File permissions (default: 0o644)

    Raises:
        OSError: If the file cannot be written
    """
    try:
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.chmod(path, mode)
    except OSError as e:
        logger.error(f"Failed to write YAML file {path}: {e}")
        raise


def read_yaml_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML file and return its contents as a dictionary.

    Args:
        path: Path to the YAML file

    Returns:
        dict: The parsed YAML data

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the file is not valid YAML
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(f"YAML file not found: {path}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in {path}: {e}")
        raise


def write_file(path: Union[str, Path], content: str, mode: int = NON_EXECUTABLE_PERMS) -> None:
    """Write text content to *path* and apply *mode*."""
    path = Path(path)
    path.write_text(content, encoding='utf-8')
    os.chmod(path, mode)


def copy_files(source: Union[str, Path], destination: Union[str, Path]) -> int:
    """Copy the regular files found directly under *source* into *destination*.

    The destination directory is only created once a file is found, so an
    empty *source* leaves it untouched. Subdirectories of *source* are not
    descended into.

    Args:
        source: Directory to copy from
        destination: Directory to copy into

    Returns:
        int: Number of files copied
    """
    source = Path(source)
    destination = Path(destination)

    copied = 0
    for entry in sorted(source.iterdir()):
        if not entry.is_file():
            continue
        if not copied:
            destination.mkdir(parents=True, exist_ok=True)
        shutil.copy2(entry, destination / entry.name)
        copied += 1

    logger.debug(f"Copied {copied} file(s) from {source} to {destination}")
    return copied
