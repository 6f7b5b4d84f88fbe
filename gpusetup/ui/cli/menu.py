"""
Shared menu loop and session helpers for the interactive commands.

The loop never dies because an action failed: ``SetupError`` is logged
as an error, anything unexpected is logged with its traceback, and the
menu is shown again.  Ctrl-C (or end of input) leaves with exit code 130.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import click

from gpusetup.core.errors import MissingDependencyError, SetupError
from gpusetup.core.models.result import ActionResult
from gpusetup.core.services.session import Session, build_session, check_required_commands

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130

_STATUS_STYLE = {
    "ok": ("✓", "green"),
    "skipped": ("–", "yellow"),
    "failed": ("✗", "red"),
}


@dataclass
class MenuItem:
    """One numbered menu entry; a None handler quits."""

    key: str
    label: str
    handler: Callable[[], Any] | None = None


# ── Session ─────────────────────────────────────────────────────


def ensure_root(dry_run: bool) -> None:
    """Re-run the current command through sudo unless already root.

    Dry-run never needs root.  Exits with status 1 if sudo cannot be
    executed.
    """
    if dry_run or os.geteuid() == 0:
        return
    logger.info("Root privileges required; re-running with sudo")
    argv = ["sudo", "-E", sys.executable, "-m", "gpusetup.main", *sys.argv[1:]]
    try:
        os.execvp("sudo", argv)
    except OSError as e:
        click.secho(f"❌ Could not re-run with sudo: {e}", fg="red", err=True)
        sys.exit(1)


def open_session(ctx: click.Context, *, privileged: bool = True) -> Session:
    """Build the session for a command, checking tools and privileges."""
    obj = ctx.obj
    factory = obj.get("session_factory", build_session)
    session = factory(
        obj["config"],
        dry_run=obj["dry_run"],
        assume_yes=obj["assume_yes"],
    )
    if privileged:
        try:
            check_required_commands(session.runner, session.packages)
        except MissingDependencyError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(2)
        ensure_root(session.dry_run)
    if session.dry_run:
        click.secho("DRY-RUN: no changes will be made.", fg="cyan", err=True)
    return session


# ── Output ──────────────────────────────────────────────────────


def report(outcome: Any) -> None:
    """Print the outcome of a menu action."""
    if outcome is None:
        return
    if isinstance(outcome, ActionResult):
        _report_result(outcome)
    elif isinstance(outcome, list):
        for item in outcome:
            report(item)
    elif isinstance(outcome, dict):
        for name, passed in outcome.items():
            fg = "green" if passed else "red"
            click.secho(f"   {'✓' if passed else '✗'} {name}", fg=fg)


def _report_result(result: ActionResult) -> None:
    icon, fg = _STATUS_STYLE[result.status]
    line = f"   {icon} {result.component} {result.action}: {result.status}"
    if result.failed:
        line += f" at {result.failed_stage} stage: {result.error}"
    elif result.message:
        line += f" ({result.message})"
    click.secho(line, fg=fg)


def report_dry_run(session: Session) -> None:
    actions = session.gate.actions
    if not session.dry_run:
        return
    click.echo()
    click.secho(f"Dry-run: {len(actions)} action(s) would have been executed", bold=True)
    for action in actions:
        click.echo(f"   • {action}")


# ── Loop ────────────────────────────────────────────────────────


def _render(title: str, items: list[MenuItem]) -> None:
    click.echo()
    click.secho(title, fg="cyan", bold=True)
    for item in items:
        click.echo(f"  {item.key}) {item.label}")


def run_menu(
    title: str,
    items: list[MenuItem],
    *,
    prompt: Callable[..., str] = click.prompt,
) -> int:
    """Show the menu until the operator quits.

    Returns:
        Exit code: 0 on quit, 130 when interrupted.
    """
    by_key = {item.key: item for item in items}
    try:
        while True:
            _render(title, items)
            choice = prompt("Choose an option", default="", show_default=False).strip().lower()
            item = by_key.get(choice)
            if item is None:
                if choice == "q":
                    return 0
                click.secho(f"Invalid choice: {choice!r}", fg="red")
                continue
            if item.handler is None:
                logger.info("Exiting.")
                return 0
            try:
                report(item.handler())
            except SetupError as e:
                logger.error("%s", e)
            except Exception:
                logger.exception("Unexpected error during '%s'", item.label)
    except (KeyboardInterrupt, click.Abort):
        click.echo()
        logger.warning("Interrupted.")
        return EXIT_INTERRUPTED
