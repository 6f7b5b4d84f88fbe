"""
Session — wires adapters, gate and actions together for one run.

Entry points build exactly one session:

    - CLI:    main.py   → build_session(config, dry_run=..., assume_yes=...)
    - Tests:  conftest  → build_session(sandbox_config, runner=MockRunner(), ...)

Every collaborator can be injected; anything not given is created from
the real adapters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gpusetup.adapters.download import Downloader
from gpusetup.adapters.packages import PackageManager, detect_package_manager
from gpusetup.adapters.shell import CommandRunner, missing_commands
from gpusetup.core.errors import MissingDependencyError, ProfileError
from gpusetup.core.models.component import SetupConfig
from gpusetup.core.services.checks import HostChecks
from gpusetup.core.services.gate import (
    AlwaysAllow,
    ConfirmStrategy,
    ExecutionGate,
    InteractiveConfirm,
)
from gpusetup.core.services.installer import AskPath, Installer
from gpusetup.core.services.paths import PathResolver
from gpusetup.core.services.probe import StateProber
from gpusetup.core.services.profile import ProfileEditor
from gpusetup.core.services.uninstaller import Uninstaller

logger = logging.getLogger(__name__)

# Tools every run needs on PATH (the package manager is checked separately)
REQUIRED_COMMANDS = ["wget", "tar", "ldconfig"]


def check_required_commands(
    runner: CommandRunner,
    packages: PackageManager | None,
    names: list[str] | None = None,
) -> None:
    """Raise MissingDependencyError listing every missing tool."""
    missing = missing_commands(runner, names if names is not None else REQUIRED_COMMANDS)
    if packages is None:
        missing.insert(0, "apt-get or dnf")
    if missing:
        raise MissingDependencyError(missing)


@dataclass
class Session:
    """Everything one CLI invocation works with."""

    config: SetupConfig
    gate: ExecutionGate
    runner: CommandRunner
    packages: PackageManager | None
    prober: StateProber
    checks: HostChecks
    installer: Installer
    uninstaller: Uninstaller

    @property
    def dry_run(self) -> bool:
        return self.gate.dry_run

    def status(self) -> dict:
        """Read-only snapshot of every component, the driver and the profile."""
        paths = PathResolver(self.config)
        components = {}
        for descriptor in self.config.components:
            components[descriptor.name] = {
                "version": descriptor.version,
                "state": self.prober.component_state(descriptor).value,
                "detected": self.prober.is_detected(descriptor),
                "packages": self.prober.installed_packages(descriptor),
            }

        editor = ProfileEditor(paths.profile_path(), self.config.profile_marker, self.gate)
        try:
            profile_block = editor.has_block()
        except (ProfileError, OSError) as e:
            logger.warning("%s", e)
            profile_block = None

        return {
            "components": components,
            "driver": {
                "version": self.prober.driver_version(),
                "required": self.config.required_driver_version,
                "status": self.prober.is_driver_compatible().value,
                "nouveau": self.prober.is_nouveau_loaded(),
            },
            "gpus": self.prober.nvidia_gpus(),
            "app": {
                "installed": self.prober.is_app_installed(),
                "bundled_tensorflow": [p.name for p in self.prober.bundled_app_libraries()],
            },
            "cuda_root": str(paths.cuda_root()),
            "cuda_libdir": str(paths.cuda_libdir()),
            "profile": {"path": str(paths.profile_path()), "block": profile_block},
        }


def build_session(
    config: SetupConfig,
    *,
    dry_run: bool = False,
    assume_yes: bool = False,
    runner: CommandRunner | None = None,
    packages: PackageManager | None = None,
    downloader: Downloader | None = None,
    confirm: ConfirmStrategy | None = None,
    ask_path: AskPath | None = None,
) -> Session:
    """Create the gate, adapters and actions for one run."""
    runner = runner or CommandRunner(default_timeout=config.timeouts.command)
    if packages is None:
        packages = detect_package_manager(runner, timeout=config.timeouts.command)
    downloader = downloader or Downloader(
        runner,
        timeout=config.timeouts.download,
        read_timeout=config.timeouts.network_read,
    )
    if confirm is None:
        confirm = AlwaysAllow() if assume_yes else InteractiveConfirm()

    gate = ExecutionGate(confirm, dry_run=dry_run)
    prober = StateProber(config, runner, packages)
    checks = HostChecks(config, prober, gate, runner, packages)
    installer = Installer(
        config, gate,
        runner=runner, packages=packages, downloader=downloader,
        prober=prober, checks=checks, ask_path=ask_path,
    )
    uninstaller = Uninstaller(config, gate, runner=runner, packages=packages, prober=prober)

    logger.debug(
        "Session ready (dry_run=%s, package manager=%s)",
        dry_run, packages.name if packages else None,
    )
    return Session(
        config=config,
        gate=gate,
        runner=runner,
        packages=packages,
        prober=prober,
        checks=checks,
        installer=installer,
        uninstaller=uninstaller,
    )
