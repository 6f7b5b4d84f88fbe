"""
Host checks — GPU, driver, prerequisites, and post-install verification.

Precondition checks raise ``PreconditionError`` when an install cannot
go ahead.  A driver older than recommended is only a warning: the
operator is asked whether to proceed.  Verification helpers return a
boolean and log what they found.
"""

from __future__ import annotations

import logging
from pathlib import Path

from gpusetup.adapters.packages import PackageManager
from gpusetup.adapters.shell import CommandRunner
from gpusetup.core.errors import PreconditionError
from gpusetup.core.models.component import SetupConfig
from gpusetup.core.models.state import DriverStatus, InstallState
from gpusetup.core.services.gate import ExecutionGate
from gpusetup.core.services.paths import PathResolver
from gpusetup.core.services.probe import StateProber

logger = logging.getLogger(__name__)


class HostChecks:
    """Checks shared by the installer menu and ``install all``."""

    def __init__(
        self,
        config: SetupConfig,
        prober: StateProber,
        gate: ExecutionGate,
        runner: CommandRunner,
        packages: PackageManager | None,
    ):
        self.config = config
        self.prober = prober
        self.gate = gate
        self.runner = runner
        self.packages = packages
        self.paths = PathResolver(config)

    # ── Preconditions ───────────────────────────────────────────

    def check_nvidia_gpu(self) -> list[str]:
        """Raise unless lspci reports an NVIDIA device."""
        logger.info("Checking for NVIDIA GPU...")
        gpus = self.prober.nvidia_gpus()
        if not gpus:
            raise PreconditionError("No NVIDIA GPU detected.")
        for line in gpus:
            logger.info("NVIDIA GPU detected: %s", line)
        return gpus

    def check_nvidia_driver(self) -> DriverStatus:
        """Raise if the driver is unusable; confirm if it is older than required."""
        logger.info("Checking NVIDIA driver...")
        required = self.config.required_driver_version
        if self.prober.is_nouveau_loaded():
            raise PreconditionError("Nouveau driver active; blacklist it and install the NVIDIA driver.")

        status = self.prober.is_driver_compatible(required)
        if status is DriverStatus.UNDETERMINED:
            raise PreconditionError(
                f"Cannot determine the NVIDIA driver version (is nvidia-smi installed?); "
                f"install driver >= {required}"
            )
        installed = self.prober.driver_version()
        if status is DriverStatus.INCOMPATIBLE:
            logger.warning("Installed driver %s; recommended >= %s", installed, required)
            if not self.gate.confirm(f"Continue with driver {installed}?"):
                raise PreconditionError(f"Driver {installed} rejected by user")
        else:
            logger.info("Compatible driver %s", installed)
        return status

    def check_prerequisites(self) -> list[str]:
        """Offer to install missing prerequisite packages.

        Returns:
            Packages that are still missing afterwards.
        """
        logger.info("Checking prerequisites...")
        if self.packages is None:
            logger.warning("No supported package manager; skipping prerequisite check")
            return list(self.config.prerequisites)

        missing = [p for p in self.config.prerequisites if not self.packages.is_installed(p)]
        if not missing:
            logger.info("All prerequisites present")
            return []

        logger.warning("Missing: %s", " ".join(missing))
        if not self.gate.confirm("Install missing packages?"):
            logger.warning("Skipping prerequisite installation.")
            return missing

        result = self.gate.execute(f"{self.packages.name} update", self.packages.update)
        if result is not None and not result["ok"]:
            raise PreconditionError(f"Package index update failed: {result.get('error')}")
        result = self.gate.execute(
            f"{self.packages.name} install {' '.join(missing)}",
            self.packages.install, missing,
        )
        if result is not None and not result["ok"]:
            raise PreconditionError(f"Package install failed: {result.get('error')}")
        logger.info("Prerequisite packages installed.")
        return []

    def verify_app(self) -> bool:
        """Report the application install and any conflicting bundled libs."""
        logger.info("Verifying %s installation...", self.config.app.name)
        if not Path(self.config.app.root).is_dir():
            logger.error("%s directory not found at %s", self.config.app.name, self.config.app.root)
            return False
        if not self.prober.is_app_installed():
            logger.error(
                "%s executable missing or not executable at %s",
                self.config.app.name, self.config.app.binary,
            )
            return False
        logger.info("%s install found", self.config.app.name)
        if not self.prober.is_conflicting_bundle_present():
            logger.info("No conflicting %s TensorFlow libraries detected", self.config.app.name)
        return True

    def run_preflight(self) -> None:
        """GPU, prerequisites, driver and application, in that order."""
        self.check_nvidia_gpu()
        self.check_prerequisites()
        self.check_nvidia_driver()
        self.verify_app()

    # ── Verification ────────────────────────────────────────────

    def verify_cuda(self) -> bool:
        logger.info("Verifying CUDA installation...")
        root = self.paths.cuda_root()
        nvcc = root / "bin" / "nvcc"
        if not nvcc.is_file():
            logger.error("CUDA not properly installed or nvcc missing at %s", nvcc)
            return False
        result = self.runner.run([str(nvcc), "--version"], timeout=self.config.timeouts.probe)
        release = next(
            (ln.strip() for ln in result.get("stdout", "").splitlines() if "release" in ln),
            "",
        )
        logger.info("CUDA found: %s", release or "(nvcc present)")
        return True

    def verify_cudnn(self) -> bool:
        logger.info("Verifying cuDNN installation...")
        header = self.paths.cuda_root() / "include" / "cudnn.h"
        libdir = self.paths.cuda_libdir()
        state = self.prober.component_state(self.config.cudnn)
        if state is InstallState.PRESENT:
            logger.info("cuDNN header and library present (header: %s, libdir: %s)", header, libdir)
            return True
        logger.error("cuDNN header or library missing (expected header: %s, libdir: %s)", header, libdir)
        return False

    def verify_tensorflow(self) -> bool:
        logger.info("Verifying TensorFlow C API installation...")
        libs = sorted(Path(self.config.lib_dir).glob("libtensorflow.so.*"))
        if not libs:
            logger.error("TensorFlow C API libraries not found in %s", self.config.lib_dir)
            return False
        logger.info("TensorFlow C API libraries found:")
        for lib in libs:
            logger.info("  %s", lib)
        if not self.prober.is_component_installed(self.config.tensorflow):
            logger.warning(
                "Expected version %s not found; installed libraries may be a different release",
                self.config.tensorflow.version,
            )
        return True

    def verify_all(self) -> dict[str, bool]:
        return {
            "cuda": self.verify_cuda(),
            "cudnn": self.verify_cudnn(),
            "tensorflow": self.verify_tensorflow(),
            "app": self.verify_app(),
        }
