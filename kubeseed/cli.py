import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from .boot import BootProfile, plan_boot
from .config import get_config
from .definition import load_definition
from .downloader import HTTPArtefactDownloader
from .errors import KubeseedError
from .installer import configure_kubernetes, preview_template_values
from .logging import configure_logging
from .models import BuildContext
from .registry import LocalRegistry

logger = logging.getLogger("kubeseed.cli")

app = typer.Typer(help="Prepare Kubernetes clusters bootstrapped from a single OS image.")

debug_mode = False


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a kubeseed settings file"),
):
    """kubeseed - first-boot Kubernetes installers for OS images."""
    global debug_mode
    debug_mode = debug
    settings = get_config(config)
    configure_logging(
        level=settings.logging.level,
        log_file=settings.logging.file,
        max_size_mb=settings.logging.max_size_mb,
        backup_count=settings.logging.backup_count,
        debug=debug,
    )
    logger.debug("Debug mode enabled")


@app.command("build")
def build_cmd(
    definition: Path = typer.Option(..., "--definition", help="Image definition file"),
    config_dir: Path = typer.Option(..., "--config-dir", help="Image configuration directory"),
    build_dir: Path = typer.Option(..., "--build-dir", help="Directory for build outputs"),
):
    """Stage artefacts and render the first-boot Kubernetes installer."""
    try:
        image_definition = load_definition(definition)
        ctx = BuildContext(image_config_dir=config_dir, build_dir=build_dir, definition=image_definition)
        scripts = configure_kubernetes(
            ctx,
            HTTPArtefactDownloader(get_config().download),
            LocalRegistry(ctx, timeout=get_config().download.timeout),
        )
    except KubeseedError as e:
        _fail(e)

    if not scripts:
        typer.echo("No Kubernetes version configured; nothing to do.")
        return

    for script in scripts:
        typer.echo(str(ctx.combustion_dir / script))


@app.command("validate")
def validate_cmd(
    definition: Path = typer.Option(..., "--definition", help="Image definition file"),
):
    """Validate an image definition without building anything."""
    try:
        image_definition = load_definition(definition)
    except KubeseedError as e:
        _fail(e)

    kubernetes = image_definition.kubernetes
    typer.echo(f"✅ Definition is valid: {definition}")
    if kubernetes.version:
        typer.echo(
            f"   {kubernetes.distribution.value} {kubernetes.version}, "
            f"{len(kubernetes.nodes) or 1} node(s)"
        )


@app.command("boot-plan")
def boot_plan_cmd(
    definition: Path = typer.Option(..., "--definition", help="Image definition file"),
    hostname: str = typer.Option("", "--hostname", help="Static hostname of the node"),
    kernel_hostname: str = typer.Option("", "--kernel-hostname", help="Kernel-reported hostname of the node"),
    config_dir: Path = typer.Option(Path("."), "--config-dir", help="Image configuration directory"),
):
    """Show what the first-boot installer would do on a node."""
    try:
        image_definition = load_definition(definition)
        if not image_definition.kubernetes.version:
            _fail(KubeseedError("no Kubernetes version configured"))

        ctx = BuildContext(image_config_dir=config_dir, build_dir=Path("."), definition=image_definition)
        values = preview_template_values(ctx)
        profile = BootProfile.from_template_values(image_definition.kubernetes.distribution, values)
        plan = plan_boot(profile, hostname, kernel_hostname)
    except KubeseedError as e:
        _fail(e)

    typer.echo(f"Node: {plan.hostname or '<any>'} ({plan.role})")
    typer.echo(f"Config: {plan.config_file}")
    for number, action in enumerate(plan.actions, 1):
        typer.echo(f"{number}. {action.step.name}: {action.description}")
        for command in action.commands:
            typer.echo(f"     {command}")


def _fail(error: Exception) -> None:
    if debug_mode:
        logger.exception(f"❌ {error}")
    else:
        logger.error(f"❌ {error}")
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=1)


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        logging.error(f"Error: {e}")
        sys.exit(1)
