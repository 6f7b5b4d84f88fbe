"""
CLI command for the installer menu.

Thin wrapper over ``gpusetup.core.services.installer``.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from gpusetup.ui.cli.menu import MenuItem, open_session, report_dry_run, run_menu


@click.command()
@click.option(
    "--cudnn-archive",
    type=click.Path(dir_okay=False),
    default=None,
    help="cuDNN .tar.xz archive (default: ask when installing cuDNN).",
)
@click.pass_context
def install(ctx: click.Context, cudnn_archive: str | None) -> None:
    """Interactive installer menu (CUDA, cuDNN, TensorFlow C API)."""
    session = open_session(ctx)
    config = session.config
    installer = session.installer
    checks = session.checks
    archive = Path(cudnn_archive).expanduser() if cudnn_archive else None

    items = [
        MenuItem("1", f"Check system (GPU, prerequisites, driver, {config.app.name})",
                 checks.run_preflight),
        MenuItem("2", f"Install {config.cuda.display}", installer.install_cuda),
        MenuItem("3", f"Install {config.cudnn.display}",
                 lambda: installer.install_cudnn(archive)),
        MenuItem("4", f"Install {config.tensorflow.display}", installer.install_tensorflow),
        MenuItem("5", "Normalize cuDNN symlinks", installer.normalize_cudnn_symlinks),
        MenuItem("6", f"Move {config.app.name} bundled TensorFlow aside",
                 installer.isolate_app_tensorflow),
        MenuItem("7", "Install all", installer.install_all),
        MenuItem("8", "Verify installation", checks.verify_all),
        MenuItem("9", "Quit"),
    ]
    code = run_menu(f"{config.app.name} GPU setup — installer", items)
    report_dry_run(session)
    if code:
        sys.exit(code)
