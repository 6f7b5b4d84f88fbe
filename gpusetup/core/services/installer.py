"""
Installer actions — CUDA, cuDNN and the TensorFlow C API.

Each component walks the same stages:

    absent → downloading → extracting → placing_files → linking → configured

A failure stops the action where it is and returns an ``ActionResult``
classified by stage (download / extract / place / link); everything
completed before it stays in place.  A component that is already present
is skipped before anything is downloaded, so re-running an action is
safe.  Files are copied (never moved) out of the staging area, which is
left for the operator to clean up.
"""

from __future__ import annotations

import logging
import os
import shutil
import time
from collections.abc import Callable
from pathlib import Path

import click

from gpusetup.adapters.download import Downloader, verify_checksum
from gpusetup.adapters.packages import PackageManager
from gpusetup.adapters.shell import CommandRunner
from gpusetup.core.errors import PreconditionError, ProfileError, StageError
from gpusetup.core.models.component import ComponentDescriptor, SetupConfig
from gpusetup.core.models.result import ActionResult, _now_iso
from gpusetup.core.models.state import InstallState
from gpusetup.core.services.checks import HostChecks
from gpusetup.core.services.gate import ExecutionGate
from gpusetup.core.services.paths import PathResolver
from gpusetup.core.services.placement import (
    atomic_write_text,
    copy_matching,
    move_all,
    timestamp,
)
from gpusetup.core.services.probe import StateProber
from gpusetup.core.services.profile import ProfileEditor, render_env_block
from gpusetup.core.services.symlinks import normalize_symlinks

logger = logging.getLogger(__name__)

AskPath = Callable[[str, str], str]


def _prompt_path(prompt: str, default: str) -> str:
    return click.prompt(prompt, default=default, show_default=True)


class Installer:
    """Install actions for every managed component."""

    def __init__(
        self,
        config: SetupConfig,
        gate: ExecutionGate,
        *,
        runner: CommandRunner,
        packages: PackageManager | None,
        downloader: Downloader,
        prober: StateProber | None = None,
        checks: HostChecks | None = None,
        ask_path: AskPath | None = None,
    ):
        self.config = config
        self.gate = gate
        self.runner = runner
        self.packages = packages
        self.downloader = downloader
        self.paths = PathResolver(config)
        self.prober = prober or StateProber(config, runner, packages)
        self.checks = checks or HostChecks(config, self.prober, gate, runner, packages)
        self.ask_path = ask_path or _prompt_path
        self._stage = "absent"

    # ── Public actions ──────────────────────────────────────────

    def install_cuda(self) -> ActionResult:
        return self._run(self.config.cuda, "install", self._install_cuda)

    def install_cudnn(self, archive: Path | None = None) -> ActionResult:
        return self._run(self.config.cudnn, "install", lambda: self._install_cudnn(archive))

    def install_tensorflow(self) -> ActionResult:
        return self._run(self.config.tensorflow, "install", self._install_tensorflow)

    def install_all(self) -> list[ActionResult]:
        """Preflight checks, then CUDA → cuDNN → TensorFlow; stops at a failure."""
        try:
            self.checks.run_preflight()
        except PreconditionError as e:
            logger.error("%s", e)
            return [ActionResult.failure("all", "install", str(e), failed_stage="precondition")]

        results: list[ActionResult] = []
        for action in (self.install_cuda, self.install_cudnn, self.install_tensorflow):
            result = action()
            results.append(result)
            if result.failed:
                logger.error("Stopping: %s install failed", result.component)
                break
        return results

    def normalize_cudnn_symlinks(self) -> ActionResult:
        """Linker config + symlink repair + cache refresh, on their own."""
        descriptor = self.config.cudnn

        def body() -> ActionResult:
            libdir = self.paths.cuda_libdir()
            if not libdir.is_dir():
                raise StageError("link", f"CUDA library directory not found: {libdir}")
            self._ensure_linker_config()
            report = normalize_symlinks(libdir, self.gate, pattern="libcudnn*.so.*")
            self._refresh_linker_cache()
            return ActionResult.success(
                descriptor.name, "normalize",
                "cuDNN symlink normalization complete.",
                stage="linking", metadata=report.to_dict(),
            )

        return self._run(descriptor, "normalize", body)

    def isolate_app_tensorflow(self) -> ActionResult:
        """Move the application's bundled TensorFlow libraries aside."""
        app = self.config.app
        bundled = self.prober.bundled_app_libraries()
        if not bundled:
            logger.info("No bundled TensorFlow libraries in %s", self.paths.app_lib_dir())
            return ActionResult.skip("app", "isolate", "No bundled TensorFlow libraries")
        names = ", ".join(p.name for p in bundled)
        if not self.gate.confirm(f"Move {app.name} TensorFlow libs ({names}) to {app.backup_dir}?"):
            logger.warning("%s TensorFlow isolation aborted by user.", app.name)
            return ActionResult.skip("app", "isolate", "Declined by user")

        backup = self.paths.app_backup_dir()
        self.gate.execute(f"mv {names} {backup}/", move_all, bundled, backup)
        logger.info("%s TensorFlow libraries moved to %s", app.name, backup)
        return ActionResult.success("app", "isolate", f"Moved {len(bundled)} libraries to {backup}")

    # ── Component bodies ────────────────────────────────────────

    def _install_cuda(self) -> ActionResult:
        descriptor = self.config.cuda
        skipped = self._skip_or_confirm(descriptor)
        if skipped:
            return skipped
        root = self.paths.cuda_root()

        self._stage = "downloading"
        runfile = self._download(descriptor)

        self._stage = "extracting"
        self.gate.execute(f"chmod +x {runfile}", os.chmod, runfile, 0o755)

        self._stage = "placing_files"
        logger.info("Running CUDA installer silently (toolkit only, no driver)")
        cmd = [str(runfile), *descriptor.installer_args, f"--toolkitpath={root}"]
        result = self.gate.run_command(
            " ".join(cmd), self.runner, cmd, timeout=self.config.timeouts.installer,
        )
        if not result["ok"]:
            raise StageError("place", f"CUDA installer failed: {result.get('error')}")
        if not self.gate.dry_run and not root.is_dir():
            raise StageError("place", f"CUDA installer finished but {root} is missing")

        self._stage = "linking"
        self._ensure_linker_config()
        self._refresh_linker_cache()

        self._configure_profile()
        return ActionResult.success(descriptor.name, "install", "CUDA install complete")

    def _install_cudnn(self, archive: Path | None) -> ActionResult:
        descriptor = self.config.cudnn
        if self.prober.component_state(descriptor) is not InstallState.PRESENT:
            if not self.prober.is_component_installed(self.config.cuda):
                msg = f"CUDA {self.config.cuda.version} must be installed before cuDNN"
                if not self.gate.dry_run:
                    raise PreconditionError(msg)
                logger.warning("%s (continuing dry-run)", msg)
        skipped = self._skip_or_confirm(descriptor)
        if skipped:
            return skipped

        self._stage = "downloading"
        if archive is None:
            default = str(self.paths.artifact_path(descriptor))
            archive = Path(self.ask_path("Path to cuDNN .tar.xz", default)).expanduser()
        if not archive.is_file():
            if not self.gate.dry_run:
                raise StageError("download", f"cuDNN archive not found at: {archive}")
            logger.warning("cuDNN archive not found at: %s (continuing dry-run)", archive)
        self._verify_artifact(descriptor, archive)

        self._stage = "extracting"
        staging = self.paths.staging_dir(descriptor)
        self._extract(archive, staging)
        source = self._layout_root(staging, ["include/cudnn.h"])

        self._stage = "placing_files"
        root = self.paths.cuda_root()
        libdir = self.paths.cuda_libdir()
        lib_src = source / "lib" if (source / "lib").is_dir() else source / "lib64"
        self._place(descriptor, source / "include", root / "include", descriptor.headers)
        self._place(descriptor, lib_src, libdir, descriptor.libraries)

        self._stage = "linking"
        self._ensure_linker_config()
        normalize_symlinks(libdir, self.gate, pattern="libcudnn*.so.*")
        self._refresh_linker_cache()

        self._configure_profile()
        return ActionResult.success(descriptor.name, "install", "cuDNN install complete")

    def _install_tensorflow(self) -> ActionResult:
        descriptor = self.config.tensorflow
        skipped = self._skip_or_confirm(descriptor)
        if skipped:
            return skipped

        self._stage = "downloading"
        tarball = self._download(descriptor)

        self._stage = "extracting"
        staging = self.paths.staging_dir(descriptor)
        self._extract(tarball, staging)
        source = self._layout_root(staging, ["include", "lib"])

        self._stage = "placing_files"
        logger.info("Copying TensorFlow headers and libraries to %s", self.config.cuda_base)
        self._place(descriptor, source / "include", Path(self.config.include_dir), descriptor.headers)
        self._place(descriptor, source / "lib", Path(self.config.lib_dir), descriptor.libraries)

        self._stage = "linking"
        self._refresh_linker_cache()

        self._configure_profile()
        return ActionResult.success(descriptor.name, "install", "TensorFlow C API install complete")

    # ── Stages ──────────────────────────────────────────────────

    def _run(
        self,
        descriptor: ComponentDescriptor,
        action: str,
        body: Callable[[], ActionResult],
    ) -> ActionResult:
        """Run an action body, converting stage errors into results."""
        self._stage = "absent"
        started_at = _now_iso()
        start = time.monotonic()
        logger.info("=== %s %s START ===", descriptor.display, action.upper())
        try:
            result = body()
        except StageError as e:
            logger.error("%s", e)
            result = ActionResult.failure(
                descriptor.name, action, str(e),
                failed_stage=e.stage, stage=self._stage,
            )
        except PreconditionError as e:
            logger.error("%s", e)
            result = ActionResult.failure(
                descriptor.name, action, str(e),
                failed_stage="precondition", stage=self._stage,
            )
        else:
            if result.status == "ok" and not result.stage:
                result.stage = "configured"
            if result.status == "ok":
                logger.info("=== %s %s COMPLETE ===", descriptor.display, action.upper())

        result.started_at = started_at
        result.ended_at = _now_iso()
        result.duration_ms = int((time.monotonic() - start) * 1000)
        if self.gate.dry_run:
            result.metadata.setdefault("dry_run", True)
        return result

    def _skip_or_confirm(self, descriptor: ComponentDescriptor) -> ActionResult | None:
        """Skip-if-present, then ask; returns a skip result or None to proceed."""
        state = self.prober.component_state(descriptor)
        if state is InstallState.PRESENT:
            logger.info("%s is already installed", descriptor.display)
            return ActionResult.skip(descriptor.name, "install", "Already installed", stage="configured")
        if state is InstallState.PARTIAL:
            logger.warning("%s is partially present; reinstalling", descriptor.display)
        if not self.gate.confirm(f"Install {descriptor.display}?"):
            logger.warning("%s install aborted by user.", descriptor.display)
            return ActionResult.skip(descriptor.name, "install", "Declined by user")
        return None

    def _download(self, descriptor: ComponentDescriptor) -> Path:
        dest = self.paths.artifact_path(descriptor)
        logger.info("Downloading %s: %s", descriptor.label, dest.name)
        result = self.gate.execute(
            f"download {descriptor.url} -> {dest}",
            self.downloader.fetch, descriptor.url, dest,
        )
        if self.gate.dry_run:
            return dest
        if not result or not result["ok"]:
            error = result.get("error") if result else "no result"
            raise StageError("download", f"Failed to download {dest.name}: {error}")
        if not dest.is_file():
            raise StageError("download", f"Artifact missing after download: {dest}")
        self._verify_artifact(descriptor, dest)
        return dest

    def _verify_artifact(self, descriptor: ComponentDescriptor, path: Path) -> None:
        if self.gate.dry_run and not path.is_file():
            return
        if not descriptor.checksum:
            logger.warning(
                "No checksum configured for %s; %s is not verified",
                descriptor.display, path.name,
            )
            return
        if not verify_checksum(path, descriptor.checksum):
            raise StageError("download", f"Checksum mismatch for {path}")
        logger.info("Checksum verified for %s", path.name)

    def _extract(self, archive: Path, staging: Path) -> None:
        logger.info("Extracting %s into %s", archive.name, staging)
        try:
            self.gate.execute(f"mkdir -p {staging}", staging.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise StageError("extract", f"Cannot create {staging}: {e}") from e
        cmd = ["tar", "-xf", str(archive), "-C", str(staging)]
        result = self.gate.run_command(" ".join(cmd), self.runner, cmd)
        if not result["ok"]:
            raise StageError("extract", f"Failed to extract {archive.name}: {result.get('error')}")

    def _layout_root(self, staging: Path, required: list[str]) -> Path:
        """Directory under ``staging`` that contains every ``required`` entry."""
        if self.gate.dry_run and not staging.is_dir():
            return staging
        candidates = [staging, *sorted(p for p in staging.rglob("*") if p.is_dir())]
        for candidate in candidates:
            if all((candidate / rel).exists() for rel in required):
                return candidate
        raise StageError(
            "extract",
            f"Unexpected archive layout in {staging}: missing {', '.join(required)}",
        )

    def _place(
        self,
        descriptor: ComponentDescriptor,
        src: Path,
        dst: Path,
        patterns: list[str],
    ) -> None:
        backup_dir = dst / f"backup-{descriptor.name}-{timestamp()}"
        try:
            placed = self.gate.execute(
                f"cp -a {src}/{{{','.join(patterns)}}} {dst}/",
                copy_matching, src, dst, patterns, backup_dir=backup_dir,
            )
        except OSError as e:
            raise StageError("place", f"Failed to copy {src} to {dst}: {e}") from e
        if placed is not None:
            logger.info("Placed %d file(s) in %s", len(placed), dst)

    def _ensure_linker_config(self) -> None:
        """Point the versioned ld.so.conf.d entry at the detected libdir."""
        conf = self.paths.linker_config()
        libdir = str(self.paths.cuda_libdir())
        logger.info("Ensuring dynamic linker config for CUDA points to: %s", libdir)
        try:
            if conf.is_file():
                lines = [ln.strip() for ln in conf.read_text(encoding="utf-8").splitlines()]
                if libdir in lines:
                    logger.info("%s already contains the correct path.", conf)
                    return
                backup = conf.with_name(f"{conf.name}.{timestamp()}.bak")
                logger.warning("Existing %s does not match detected libdir; backing up to %s", conf, backup)
                self.gate.execute(f"cp -a {conf} {backup}", shutil.copy2, conf, backup)
            self.gate.execute(
                f"write {libdir} to {conf}",
                atomic_write_text, conf, libdir + "\n",
            )
        except OSError as e:
            raise StageError("link", f"Failed to write {conf}: {e}") from e

    def _refresh_linker_cache(self) -> None:
        result = self.gate.run_command("ldconfig", self.runner, ["ldconfig"])
        if not result["ok"]:
            logger.warning(
                "ldconfig failed (%s); libraries will not be found until the cache is refreshed",
                result.get("error"),
            )

    def _configure_profile(self) -> None:
        editor = ProfileEditor(self.paths.profile_path(), self.config.profile_marker, self.gate)
        block = render_env_block(
            self.paths.cuda_root(), self.paths.cuda_libdir(), self.config.feature_flag,
        )
        try:
            editor.ensure_block(block)
        except (ProfileError, OSError) as e:
            raise StageError("link", f"Cannot update {editor.path}: {e}") from e
        self._stage = "configured"
