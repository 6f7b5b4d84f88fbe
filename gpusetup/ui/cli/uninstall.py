"""
CLI command for the uninstaller menu.

Thin wrapper over ``gpusetup.core.services.uninstaller``.
"""

from __future__ import annotations

import sys

import click

from gpusetup.ui.cli.menu import MenuItem, open_session, report_dry_run, run_menu


@click.command()
@click.pass_context
def uninstall(ctx: click.Context) -> None:
    """Interactive uninstaller menu."""
    session = open_session(ctx)
    config = session.config
    uninstaller = session.uninstaller

    items = [
        MenuItem("1", f"Uninstall {config.tensorflow.display}", uninstaller.uninstall_tensorflow),
        MenuItem("2", f"Uninstall {config.cudnn.display}", uninstaller.uninstall_cudnn),
        MenuItem("3", f"Uninstall {config.cuda.display}", uninstaller.uninstall_cuda),
        MenuItem("4", "Uninstall all (TensorFlow, cuDNN, CUDA)", uninstaller.uninstall_all),
        MenuItem("5", f"Restore {config.app.name} bundled TensorFlow",
                 uninstaller.restore_app_tensorflow),
        MenuItem("6", "Remove GPU environment block from shell profile",
                 uninstaller.remove_profile_block),
        MenuItem("7", "Quit"),
    ]
    code = run_menu(f"{config.app.name} GPU setup — uninstaller", items)
    report_dry_run(session)
    if code:
        sys.exit(code)
