"""Jinja2 rendering of the installer script and manifest templates.

Templates live in the package's ``templates`` directory. Rendering is strict:
any variable referenced by a template but missing from the context is an
error rather than an empty string.
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Union

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

from .errors import TemplateRenderError
from .utils import EXECUTABLE_PERMS, write_file

logger = logging.getLogger("kubeseed.templates")


def get_template_path() -> str:
    """Get the absolute path to the templates directory."""
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates')


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(get_template_path()),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


def render(template_name: str, values: Mapping[str, Any]) -> str:
    """Render a packaged template.

    Args:
        template_name: File name of the template, e.g. ``k3s-single-node-installer.sh.j2``
        values: Template context

    Returns:
        str: The rendered text

    Raises:
        TemplateRenderError: If the template is missing, invalid, or lacks a variable
    """
    try:
        template = _environment().get_template(template_name)
        return template.render(**values)
    except TemplateNotFound as e:
        raise TemplateRenderError(f"template not found: {e}") from e
    except TemplateSyntaxError as e:
        raise TemplateRenderError(f"parsing '{template_name}' template: {e}") from e
    except UndefinedError as e:
        raise TemplateRenderError(
            f"missing required variable in '{template_name}' template: {e}"
        ) from e


def render_to_path(
    template_name: str,
    destination: Union[str, Path],
    values: Mapping[str, Any],
    mode: int = EXECUTABLE_PERMS,
) -> Path:
    """Render a template and write the result to *destination* with *mode*."""
    data = render(template_name, values)
    destination = Path(destination)
    try:
        write_file(destination, data, mode=mode)
    except OSError as e:
        raise TemplateRenderError(f"writing rendered '{template_name}' to {destination}: {e}") from e

    logger.debug(f"Rendered {template_name} to {destination}")
    return destination
