"""
Error taxonomy — every failure the setup actions can report.

Services raise these; action boundaries convert them into
``ActionResult`` failures, and the CLI maps the fatal ones to exit codes.
"""

from __future__ import annotations


class SetupError(Exception):
    """Base class for all gpusetup errors."""


class MissingDependencyError(SetupError):
    """A required external command is not on PATH (fatal at startup)."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(
            "Required command(s) not found: " + ", ".join(self.missing)
        )


class PreconditionError(SetupError):
    """The host is not ready for an install (no GPU, no usable driver, ...)."""


class StageError(SetupError):
    """An install/uninstall stage failed.

    ``stage`` is one of: precondition, download, extract, place, link, remove.
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


class ProfileError(SetupError):
    """The shell profile contains a malformed managed block."""


class ConfigError(SetupError):
    """Raised when gpusetup configuration is invalid or unreadable."""
