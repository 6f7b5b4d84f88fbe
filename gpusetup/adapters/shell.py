"""
Command runner — the SINGLE PLACE where ``subprocess.run`` is called.

All external commands (package manager, ldconfig, tar, wget, the CUDA
runfile, nvidia-smi, lspci) go through ``CommandRunner.run``.  Failures
are returned, never raised::

    {"ok": True, "stdout": "...", "elapsed_ms": N}
    {"ok": False, "error": "...", "stderr": "...", ...}

Successful output is returned whole, since the package database and
linker cache queries parse all of it.  Failure results keep only the
tail of stdout and stderr.

Every call carries a timeout so a hung tool cannot block the menu
forever.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from typing import Any

logger = logging.getLogger(__name__)

# Output kept in failure results (trailing characters)
_OUTPUT_TAIL = 4000


class CommandRunner:
    """Run external commands with a timeout and capture their output."""

    def __init__(self, default_timeout: int = 300):
        self.default_timeout = default_timeout

    def which(self, name: str) -> str | None:
        """Return the absolute path of ``name`` on PATH, or None."""
        return shutil.which(name)

    def run(
        self,
        cmd: list[str],
        *,
        timeout: int | None = None,
        cwd: str | None = None,
        env_overrides: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Run ``cmd`` and capture stdout/stderr.

        Args:
            cmd: Command list for ``subprocess.run()``.
            timeout: Seconds before ``TimeoutExpired`` (default: runner's).
            cwd: Working directory for the command.
            env_overrides: Extra environment variables.

        Returns:
            ``{"ok": True, "stdout": "...", "elapsed_ms": N}`` on success,
            ``{"ok": False, "error": "...", ...}`` on failure.
        """
        timeout = timeout or self.default_timeout

        env = os.environ.copy()
        if env_overrides:
            env.update(env_overrides)

        logger.debug("Executing: %s (cwd=%s, timeout=%ss)", " ".join(cmd), cwd, timeout)
        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            return {"ok": False, "error": f"Command timed out ({timeout}s): {cmd[0]}"}
        except FileNotFoundError:
            return {"ok": False, "error": f"Command not found: {cmd[0]}"}
        except OSError as e:
            logger.debug("Subprocess error: %s", cmd, exc_info=True)
            return {"ok": False, "error": f"{cmd[0]}: {e}"}

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode == 0:
            return {"ok": True, "stdout": result.stdout or "", "elapsed_ms": elapsed_ms}

        stdout = result.stdout[-_OUTPUT_TAIL:] if result.stdout else ""
        stderr = result.stderr[-_OUTPUT_TAIL:] if result.stderr else ""
        return {
            "ok": False,
            "error": f"{cmd[0]} failed (exit {result.returncode})",
            "returncode": result.returncode,
            "stderr": stderr,
            "stdout": stdout,
            "elapsed_ms": elapsed_ms,
        }


def missing_commands(runner: CommandRunner, names: list[str]) -> list[str]:
    """Names from ``names`` that are not on PATH."""
    return [name for name in names if runner.which(name) is None]
