"""
State prober — read-only questions about the host.

Every answer is computed fresh from the filesystem, the package database,
the dynamic-linker cache or the driver tools.  Nothing is cached and
nothing is mutated.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from gpusetup.adapters.packages import PackageManager
from gpusetup.adapters.shell import CommandRunner
from gpusetup.core.models.component import ComponentDescriptor, SetupConfig
from gpusetup.core.models.state import DriverStatus, InstallState
from gpusetup.core.services.paths import PathResolver

logger = logging.getLogger(__name__)

_GPU_KERNEL_MODULES = {"nvidia", "nvidia_drm", "nvidia_modeset", "nvidia_uvm", "nouveau"}


def parse_version(text: str) -> tuple[int, ...] | None:
    """``"550.54.14"`` → ``(550, 54, 14)``; None if there is no number."""
    m = re.match(r"\s*(\d+(?:\.\d+)*)", text)
    if not m:
        return None
    return tuple(int(p) for p in m.group(1).split("."))


class StateProber:
    """Read-only probes for components, libraries, driver and GPU."""

    def __init__(
        self,
        config: SetupConfig,
        runner: CommandRunner,
        packages: PackageManager | None = None,
        *,
        proc_modules: Path = Path("/proc/modules"),
    ):
        self.config = config
        self.paths = PathResolver(config)
        self.runner = runner
        self.packages = packages
        self.proc_modules = proc_modules

    # ── Components ──────────────────────────────────────────────

    def component_state(self, descriptor: ComponentDescriptor) -> InstallState:
        """Classify a component from its marker patterns."""
        if not descriptor.markers:
            return InstallState.ABSENT
        hits = sum(
            1 for marker in descriptor.markers
            if self.paths.expand([marker], descriptor)
        )
        if hits == 0:
            return InstallState.ABSENT
        if hits == len(descriptor.markers):
            return InstallState.PRESENT
        return InstallState.PARTIAL

    def is_component_installed(self, descriptor: ComponentDescriptor) -> bool:
        return self.component_state(descriptor) is InstallState.PRESENT

    def installed_packages(self, descriptor: ComponentDescriptor) -> list[str]:
        """Installed packages matching the descriptor's package globs."""
        if self.packages is None or not descriptor.packages:
            return []
        return self.packages.installed_matching(descriptor.packages)

    def is_detected(self, descriptor: ComponentDescriptor) -> bool:
        """Any trace of the component: files, linker cache or packages."""
        if self.component_state(descriptor) is not InstallState.ABSENT:
            return True
        if self.paths.expand(descriptor.remove_paths, descriptor):
            return True
        if any(self.is_library_registered(name) for name in descriptor.linker_names):
            return True
        return bool(self.installed_packages(descriptor))

    # ── Linker cache ────────────────────────────────────────────

    def is_library_registered(self, name: str) -> bool:
        """True if ``ldconfig -p`` lists a library whose name starts with ``name``."""
        result = self.runner.run(["ldconfig", "-p"], timeout=self.config.timeouts.probe)
        if not result["ok"]:
            logger.debug("ldconfig -p failed: %s", result.get("error"))
            return False
        for line in result["stdout"].splitlines():
            entry = line.strip().split(" ", 1)[0]
            if entry.startswith(name):
                return True
        return False

    # ── Driver / GPU ────────────────────────────────────────────

    def driver_version(self) -> str | None:
        """Installed NVIDIA driver version, or None when undeterminable."""
        if self.runner.which("nvidia-smi") is None:
            return None
        result = self.runner.run(
            ["nvidia-smi", "--query-gpu=driver_version", "--format=csv,noheader"],
            timeout=self.config.timeouts.probe,
        )
        if not result["ok"]:
            return None
        lines = [ln.strip() for ln in result["stdout"].splitlines() if ln.strip()]
        return lines[0] if lines else None

    def is_driver_compatible(self, required_version: str | None = None) -> DriverStatus:
        """Compare the installed driver against ``required_version``.

        ``UNDETERMINED`` when nvidia-smi is unavailable or its output
        cannot be parsed; callers must treat that as a failure.
        """
        required = parse_version(required_version or self.config.required_driver_version)
        installed_raw = self.driver_version()
        installed = parse_version(installed_raw) if installed_raw else None
        if required is None or installed is None:
            return DriverStatus.UNDETERMINED
        width = max(len(required), len(installed))
        padded_installed = installed + (0,) * (width - len(installed))
        padded_required = required + (0,) * (width - len(required))
        if padded_installed >= padded_required:
            return DriverStatus.COMPATIBLE
        return DriverStatus.INCOMPATIBLE

    def nvidia_gpus(self) -> list[str]:
        """lspci lines describing NVIDIA devices."""
        result = self.runner.run(["lspci"], timeout=self.config.timeouts.probe)
        if not result["ok"]:
            return []
        return [
            line.strip() for line in result["stdout"].splitlines()
            if "nvidia" in line.lower()
        ]

    def has_nvidia_gpu(self) -> bool:
        return bool(self.nvidia_gpus())

    def loaded_kernel_modules(self) -> list[str]:
        """GPU-related kernel modules currently loaded."""
        try:
            with open(self.proc_modules, encoding="utf-8") as f:
                loaded = {line.split()[0] for line in f if line.strip()}
        except OSError:
            return []
        return sorted(_GPU_KERNEL_MODULES & loaded)

    def is_nouveau_loaded(self) -> bool:
        return "nouveau" in self.loaded_kernel_modules()

    # ── Application ─────────────────────────────────────────────

    def is_app_installed(self) -> bool:
        """The application launcher or binary is present and executable."""
        app = self.config.app
        for candidate in (app.launcher, app.binary):
            if candidate and os.access(candidate, os.X_OK) and Path(candidate).is_file():
                return True
        return False

    def bundled_app_libraries(self) -> list[Path]:
        lib_dir = self.paths.app_lib_dir()
        if not lib_dir.is_dir():
            return []
        return sorted(p for p in lib_dir.glob(self.config.app.bundled_libs))

    def is_conflicting_bundle_present(self) -> bool:
        """Advisory: the application ships its own copy of a managed library."""
        bundled = self.bundled_app_libraries()
        if bundled:
            logger.warning(
                "%s ships its own TensorFlow libraries which may conflict with "
                "the system TensorFlow C API: %s",
                self.config.app.name, ", ".join(p.name for p in bundled),
            )
            return True
        return False
