"""
Package manager adapters — query and mutate the host package database.

The reconciliation logic only talks to the narrow ``PackageManager``
interface:

    is_installed(pkg)          exact-name query
    installed_matching(globs)  names of installed packages matching globs
    install(pkgs) / update()
    purge(globs) / autoremove() / autoclean()

Read-only queries never raise: a missing checker binary or a timeout is
logged and reported as "not installed".
"""

from __future__ import annotations

import fnmatch
import logging
from abc import ABC, abstractmethod
from typing import Any

from gpusetup.adapters.shell import CommandRunner

logger = logging.getLogger(__name__)


class PackageManager(ABC):
    """Abstract package manager."""

    name: str = ""
    binary: str = ""

    def __init__(self, runner: CommandRunner, timeout: int = 600):
        self.runner = runner
        self.timeout = timeout

    @abstractmethod
    def installed_packages(self) -> list[str]:
        """Names of every installed package."""

    @abstractmethod
    def install(self, packages: list[str]) -> dict[str, Any]:
        """Install exact package names."""

    @abstractmethod
    def remove(self, packages: list[str]) -> dict[str, Any]:
        """Purge exact package names."""

    def update(self) -> dict[str, Any]:
        return {"ok": True}

    def autoremove(self) -> dict[str, Any]:
        return {"ok": True}

    def autoclean(self) -> dict[str, Any]:
        return {"ok": True}

    def is_installed(self, package: str) -> bool:
        return package in self.installed_packages()

    def installed_matching(self, patterns: list[str]) -> list[str]:
        """Installed package names matching any of the glob ``patterns``."""
        if not patterns:
            return []
        return sorted(
            pkg for pkg in self.installed_packages()
            if any(fnmatch.fnmatchcase(pkg, pat) for pat in patterns)
        )

    def purge(self, patterns: list[str]) -> dict[str, Any]:
        """Purge every installed package matching ``patterns``.

        Globs are resolved against the package database first, so a
        pattern with no installed match is not an error.
        """
        names = self.installed_matching(patterns)
        if not names:
            return {"ok": True, "removed": [], "message": "No matching packages installed"}
        result = self.remove(names)
        if result["ok"]:
            result["removed"] = names
        return result

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class AptPackageManager(PackageManager):
    """Debian/Ubuntu: dpkg-query for reads, apt-get for writes."""

    name = "apt"
    binary = "apt-get"

    _ENV = {"DEBIAN_FRONTEND": "noninteractive"}

    def installed_packages(self) -> list[str]:
        result = self.runner.run(
            ["dpkg-query", "-W", "-f=${Package} ${Status}\n"],
            timeout=30,
        )
        if not result["ok"]:
            logger.warning("dpkg-query failed: %s", result.get("error", "unknown"))
            return []
        names: list[str] = []
        for line in result["stdout"].splitlines():
            parts = line.split(" ", 1)
            if len(parts) == 2 and "install ok installed" in parts[1]:
                names.append(parts[0].split(":", 1)[0])
        return names

    def is_installed(self, package: str) -> bool:
        result = self.runner.run(
            ["dpkg-query", "-W", "-f=${Status}", package],
            timeout=10,
        )
        return result["ok"] and "install ok installed" in result["stdout"]

    def update(self) -> dict[str, Any]:
        return self.runner.run(
            ["apt-get", "update"], timeout=self.timeout, env_overrides=self._ENV,
        )

    def install(self, packages: list[str]) -> dict[str, Any]:
        return self.runner.run(
            ["apt-get", "install", "-y", *packages],
            timeout=self.timeout, env_overrides=self._ENV,
        )

    def remove(self, packages: list[str]) -> dict[str, Any]:
        return self.runner.run(
            ["apt-get", "purge", "-y", *packages],
            timeout=self.timeout, env_overrides=self._ENV,
        )

    def autoremove(self) -> dict[str, Any]:
        return self.runner.run(
            ["apt-get", "autoremove", "-y"],
            timeout=self.timeout, env_overrides=self._ENV,
        )

    def autoclean(self) -> dict[str, Any]:
        return self.runner.run(
            ["apt-get", "autoclean", "-y"],
            timeout=self.timeout, env_overrides=self._ENV,
        )


class DnfPackageManager(PackageManager):
    """Fedora/RHEL: rpm for reads, dnf for writes."""

    name = "dnf"
    binary = "dnf"

    def installed_packages(self) -> list[str]:
        result = self.runner.run(["rpm", "-qa", "--qf", "%{NAME}\n"], timeout=30)
        if not result["ok"]:
            logger.warning("rpm query failed: %s", result.get("error", "unknown"))
            return []
        return [line.strip() for line in result["stdout"].splitlines() if line.strip()]

    def is_installed(self, package: str) -> bool:
        return self.runner.run(["rpm", "-q", package], timeout=10)["ok"]

    def install(self, packages: list[str]) -> dict[str, Any]:
        return self.runner.run(["dnf", "install", "-y", *packages], timeout=self.timeout)

    def remove(self, packages: list[str]) -> dict[str, Any]:
        return self.runner.run(["dnf", "remove", "-y", *packages], timeout=self.timeout)

    def autoremove(self) -> dict[str, Any]:
        return self.runner.run(["dnf", "autoremove", "-y"], timeout=self.timeout)


def detect_package_manager(runner: CommandRunner, timeout: int = 600) -> PackageManager | None:
    """Pick the package manager available on this host (apt first)."""
    for cls in (AptPackageManager, DnfPackageManager):
        if runner.which(cls.binary):
            return cls(runner, timeout=timeout)
    return None
