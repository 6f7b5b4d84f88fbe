"""
Mock adapters — test doubles for the external collaborators.

Used by the test-suite (and usable for demos) to simulate the command
runner, package manager and downloader without touching the network or
the package database.  Each mock records every call it receives.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from gpusetup.adapters.packages import PackageManager
from gpusetup.adapters.shell import CommandRunner


class MockRunner(CommandRunner):
    """Command runner that never spawns a process.

    Responses are matched by command prefix (``"ldconfig -p"`` matches
    ``["ldconfig", "-p"]``); the longest matching prefix wins.  An
    optional effect callable runs before the response is returned, so a
    test can simulate what ``tar`` would have extracted.
    """

    def __init__(self, available: set[str] | None = None):
        super().__init__()
        self._available = available
        self._responses: dict[str, dict[str, Any]] = {}
        self._effects: dict[str, Callable[[list[str]], None]] = {}
        self._call_log: list[list[str]] = []

    @property
    def call_log(self) -> list[list[str]]:
        """Every command this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls_to(self, program: str) -> list[list[str]]:
        """Calls whose first element is ``program``."""
        return [c for c in self._call_log if c and c[0] == program]

    def which(self, name: str) -> str | None:
        if self._available is None or name in self._available:
            return f"/usr/bin/{name}"
        return None

    def set_response(self, prefix: str, result: dict[str, Any]) -> None:
        """Set the result returned for commands starting with ``prefix``."""
        self._responses[prefix] = result

    def set_output(self, prefix: str, stdout: str) -> None:
        """Shortcut for a successful response with ``stdout``."""
        self._responses[prefix] = {"ok": True, "stdout": stdout}

    def set_failure(self, prefix: str, error: str = "Mock failure") -> None:
        """Configure commands starting with ``prefix`` to fail."""
        self._responses[prefix] = {"ok": False, "error": error, "stderr": error}

    def set_effect(self, prefix: str, effect: Callable[[list[str]], None]) -> None:
        """Run ``effect(cmd)`` whenever a command starting with ``prefix`` runs."""
        self._effects[prefix] = effect

    def run(self, cmd: list[str], **kwargs: Any) -> dict[str, Any]:
        self._call_log.append(list(cmd))
        joined = " ".join(cmd)

        effect = self._match(self._effects, joined)
        if effect is not None:
            effect(list(cmd))

        response = self._match(self._responses, joined)
        if response is not None:
            return dict(response)
        return {"ok": True, "stdout": "", "elapsed_ms": 0}

    @staticmethod
    def _match(table: dict[str, Any], joined: str) -> Any:
        best = None
        best_len = -1
        for prefix, value in table.items():
            if (joined == prefix or joined.startswith(prefix + " ")) and len(prefix) > best_len:
                best, best_len = value, len(prefix)
        return best

    def reset(self) -> None:
        """Clear call log, responses and effects."""
        self._call_log.clear()
        self._responses.clear()
        self._effects.clear()


class MockPackageManager(PackageManager):
    """In-memory package database."""

    name = "mock"
    binary = "mock-pm"

    def __init__(self, installed: list[str] | None = None, fail: bool = False):
        super().__init__(MockRunner())
        self.installed: set[str] = set(installed or [])
        self.fail = fail
        self.call_log: list[tuple[str, list[str]]] = []

    def installed_packages(self) -> list[str]:
        return sorted(self.installed)

    def _result(self) -> dict[str, Any]:
        if self.fail:
            return {"ok": False, "error": "Mock package manager failure"}
        return {"ok": True, "stdout": ""}

    def install(self, packages: list[str]) -> dict[str, Any]:
        self.call_log.append(("install", list(packages)))
        result = self._result()
        if result["ok"]:
            self.installed.update(packages)
        return result

    def remove(self, packages: list[str]) -> dict[str, Any]:
        self.call_log.append(("remove", list(packages)))
        result = self._result()
        if result["ok"]:
            self.installed.difference_update(packages)
        return result

    def update(self) -> dict[str, Any]:
        self.call_log.append(("update", []))
        return self._result()

    def autoremove(self) -> dict[str, Any]:
        self.call_log.append(("autoremove", []))
        return self._result()

    def autoclean(self) -> dict[str, Any]:
        self.call_log.append(("autoclean", []))
        return self._result()


class MockDownloader:
    """Downloader that writes fixed content instead of fetching."""

    def __init__(self, content: bytes = b"mock artifact", fail: bool = False):
        self.content = content
        self.fail = fail
        self.call_log: list[tuple[str, Path]] = []

    @property
    def call_count(self) -> int:
        return len(self.call_log)

    def fetch(self, url: str, dest: Path) -> dict[str, Any]:
        self.call_log.append((url, dest))
        if self.fail:
            return {"ok": False, "error": f"Download failed: {url}"}
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.content)
        return {"ok": True, "path": str(dest), "size_bytes": len(self.content)}
