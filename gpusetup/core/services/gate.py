"""
Confirmation/execution gate — the single choke point for mutations.

Every action that changes the host goes through ``ExecutionGate.execute``.
In dry-run mode the underlying call never runs; a ``GateRecord`` is kept
and ``[DRY-RUN] would execute: ...`` is logged instead.

Confirmation is a pluggable strategy with a single method,
``decide(prompt) -> bool``, so tests (and ``--yes``) never need a
terminal.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

import click

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConfirmStrategy(Protocol):
    """Decides whether a confirmation prompt is accepted."""

    def decide(self, prompt: str) -> bool: ...


class InteractiveConfirm:
    """Ask on the terminal; empty input declines."""

    _YES = {"y", "yes"}
    _NO = {"n", "no", ""}

    def __init__(self, prompt_func: Callable[..., str] | None = None):
        self._prompt = prompt_func or click.prompt

    def decide(self, prompt: str) -> bool:
        while True:
            answer = self._prompt(
                f"{prompt} [y/N]",
                default="",
                show_default=False,
                prompt_suffix=": ",
            )
            answer = (answer or "").strip().lower()
            if answer in self._YES:
                return True
            if answer in self._NO:
                return False
            click.echo("Please enter y or N.")


class AlwaysAllow:
    """Non-interactive override (``--yes``)."""

    def decide(self, prompt: str) -> bool:
        logger.info("%s [auto-yes]", prompt)
        return True


class AlwaysDeny:
    def decide(self, prompt: str) -> bool:
        logger.info("%s [auto-no]", prompt)
        return False


@dataclass
class GateRecord:
    """One action that was simulated instead of executed."""

    action: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class ExecutionGate:
    """Confirmation prompts plus the dry-run switch."""

    def __init__(self, confirm: ConfirmStrategy | None = None, *, dry_run: bool = False):
        self.strategy: ConfirmStrategy = confirm or InteractiveConfirm()
        self.dry_run = dry_run
        self.records: list[GateRecord] = []
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        """Ask the strategy; every prompt is remembered."""
        self.prompts.append(prompt)
        return bool(self.strategy.decide(prompt))

    def execute(self, action: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T | None:
        """Run ``func(*args, **kwargs)`` unless in dry-run mode.

        Returns:
            ``func``'s return value, or None in dry-run mode.
        """
        if self.dry_run:
            self.records.append(GateRecord(action=action))
            logger.info("[DRY-RUN] would execute: %s", action)
            return None
        logger.info("Running: %s", action)
        return func(*args, **kwargs)

    def run_command(self, action: str, runner, cmd: list[str], **kwargs: Any) -> dict[str, Any]:
        """Gate an external command; dry-run reports success."""
        result = self.execute(action, runner.run, cmd, **kwargs)
        if result is None:
            return {"ok": True, "dry_run": True, "stdout": ""}
        return result

    @property
    def actions(self) -> list[str]:
        """Descriptions of the simulated actions, in order."""
        return [r.action for r in self.records]
