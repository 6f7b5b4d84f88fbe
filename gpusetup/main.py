"""
gpusetup — CLI entrypoint.

Usage:
    gpusetup                      # installer menu
    gpusetup --dry-run install
    gpusetup uninstall
    gpusetup status --json
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from gpusetup import __version__
from gpusetup.core.config.loader import load_config
from gpusetup.core.errors import ConfigError
from gpusetup.core.observability.logging_config import setup_logging
from gpusetup.ui.cli.menu import open_session


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="gpusetup")
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Answer yes to every confirmation.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings and errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to gpusetup.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    dry_run: bool,
    assume_yes: bool,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Install and remove CUDA, cuDNN and the TensorFlow C API for PixInsight."""
    ctx.ensure_object(dict)

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "WARNING"
    else:
        level = os.environ.get("GPUSETUP_LOG_LEVEL", "INFO")

    setup_logging(
        level=level,
        log_file=os.environ.get("GPUSETUP_LOG_FILE"),
        log_file_level=os.environ.get("GPUSETUP_LOG_FILE_LEVEL"),
    )

    try:
        config = load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)

    ctx.obj["config"] = config
    ctx.obj["dry_run"] = dry_run
    ctx.obj["assume_yes"] = assume_yes

    if ctx.invoked_subcommand is None:
        ctx.invoke(install)


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show what is installed (read-only)."""
    session = open_session(ctx, privileged=False)
    result = session.status()

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    click.secho("\n📋 GPU stack", fg="cyan", bold=True)
    state_color = {"present": "green", "partial": "yellow", "absent": "white"}
    for name, info in result["components"].items():
        click.echo(f"   {name:<11} {info['version']:<10} ", nl=False)
        click.secho(info["state"], fg=state_color.get(info["state"], "white"))
        if info["packages"]:
            click.echo(f"               packages: {', '.join(info['packages'])}")

    driver = result["driver"]
    click.echo()
    click.secho("   Driver:", fg="white", bold=True)
    click.echo(f"     {driver['version'] or 'not found'} (required >= {driver['required']}) — ", nl=False)
    click.secho(driver["status"], fg="green" if driver["status"] == "compatible" else "yellow")
    if driver["nouveau"]:
        click.secho("     nouveau module loaded", fg="red")
    for gpu in result["gpus"]:
        click.echo(f"     • {gpu}")

    app = result["app"]
    click.echo()
    click.secho(f"   {session.config.app.name}:", fg="white", bold=True)
    click.echo(f"     installed: {'yes' if app['installed'] else 'no'}")
    if app["bundled_tensorflow"]:
        click.secho(f"     bundled TensorFlow: {', '.join(app['bundled_tensorflow'])}", fg="yellow")

    profile = result["profile"]
    click.echo()
    click.echo(f"   CUDA libdir: {result['cuda_libdir']}")
    block = {True: "present", False: "absent", None: "malformed"}[profile["block"]]
    click.echo(f"   Profile block ({profile['path']}): {block}")
    click.echo()


# ── Register sub-groups ─────────────────────────────────────────

from gpusetup.ui.cli.install import install  # noqa: E402
from gpusetup.ui.cli.uninstall import uninstall  # noqa: E402

cli.add_command(install)
cli.add_command(uninstall)


if __name__ == "__main__":
    cli()
