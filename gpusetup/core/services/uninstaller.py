"""
Uninstaller actions — remove what the installer placed.

    configured → confirming → removing_files → removing_package_entries
               → deconfiguring_linker → done

A component with no trace on the host (files, package database or
linker cache) is reported and left alone: no prompt, no mutation.
Otherwise the operator is asked once per component and every removal
goes through the execution gate.  Removal steps keep going after an
individual failure so a half-removed component can be cleaned up by
running the action again.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from gpusetup.adapters.packages import PackageManager
from gpusetup.adapters.shell import CommandRunner
from gpusetup.core.errors import ProfileError
from gpusetup.core.models.component import ComponentDescriptor, SetupConfig
from gpusetup.core.models.result import ActionResult, _now_iso
from gpusetup.core.services.gate import ExecutionGate
from gpusetup.core.services.paths import PathResolver
from gpusetup.core.services.placement import move_all, remove_path
from gpusetup.core.services.probe import StateProber
from gpusetup.core.services.profile import ProfileEditor

logger = logging.getLogger(__name__)


class Uninstaller:
    """Uninstall actions for every managed component."""

    def __init__(
        self,
        config: SetupConfig,
        gate: ExecutionGate,
        *,
        runner: CommandRunner,
        packages: PackageManager | None,
        prober: StateProber | None = None,
    ):
        self.config = config
        self.gate = gate
        self.runner = runner
        self.packages = packages
        self.paths = PathResolver(config)
        self.prober = prober or StateProber(config, runner, packages)

    # ── Public actions ──────────────────────────────────────────

    def uninstall_tensorflow(self) -> ActionResult:
        return self._run(self.config.tensorflow, self._remove_tensorflow)

    def uninstall_cudnn(self) -> ActionResult:
        return self._run(self.config.cudnn, self._remove_cudnn)

    def uninstall_cuda(self) -> ActionResult:
        return self._run(self.config.cuda, self._remove_cuda)

    def uninstall_all(self) -> list[ActionResult]:
        """TensorFlow → cuDNN → CUDA (reverse install order)."""
        return [
            self.uninstall_tensorflow(),
            self.uninstall_cudnn(),
            self.uninstall_cuda(),
        ]

    def restore_app_tensorflow(self) -> ActionResult:
        """Move backed-up bundled TensorFlow libraries back into place."""
        app = self.config.app
        backup = self.paths.app_backup_dir()
        saved = sorted(backup.glob(app.bundled_libs)) if backup.is_dir() else []
        if not saved:
            logger.info("No %s TensorFlow backup found at %s", app.name, backup)
            return ActionResult.skip("app", "restore", "No backup to restore")
        if not self.gate.confirm(f"Restore {app.name} TensorFlow libs from {backup}?"):
            logger.warning("%s TensorFlow restore aborted by user.", app.name)
            return ActionResult.skip("app", "restore", "Declined by user")

        lib_dir = self.paths.app_lib_dir()
        self.gate.execute(f"mv {backup}/{app.bundled_libs} {lib_dir}/", move_all, saved, lib_dir)
        logger.info("Restored %s TensorFlow libraries to %s", app.name, lib_dir)
        return ActionResult.success("app", "restore", f"Restored {len(saved)} libraries")

    def remove_profile_block(self) -> ActionResult:
        editor = self._profile_editor()
        try:
            if not editor.has_block():
                logger.info("No GPU environment block in %s", editor.path)
                return ActionResult.skip("profile", "remove", "No block present")
            if not self.gate.confirm(f"Remove the GPU environment block from {editor.path}?"):
                return ActionResult.skip("profile", "remove", "Declined by user")
            editor.remove_block()
        except (ProfileError, OSError) as e:
            logger.error("%s", e)
            return ActionResult.failure("profile", "remove", str(e), failed_stage="link")
        logger.info("GPU environment block removed from %s", editor.path)
        return ActionResult.success("profile", "remove", f"Block removed from {editor.path}")

    # ── Component bodies ────────────────────────────────────────

    def _remove_tensorflow(self, errors: list[str]) -> None:
        descriptor = self.config.tensorflow
        self._remove_files(descriptor, errors)
        self._refresh_linker_cache()

    def _remove_cudnn(self, errors: list[str]) -> None:
        descriptor = self.config.cudnn
        self._remove_files(descriptor, errors)
        self._purge_packages(descriptor, errors, clean=False)
        self._remove_linker_configs(descriptor.linker_configs, descriptor, errors)
        self._refresh_linker_cache()

    def _remove_cuda(self, errors: list[str]) -> None:
        descriptor = self.config.cuda
        root = self.paths.cuda_root()

        uninstaller = root / "bin" / "cuda-uninstaller"
        if uninstaller.is_file():
            logger.info("Running bundled CUDA uninstaller")
            cmd = [str(uninstaller), "--silent"]
            result = self.gate.run_command(
                " ".join(cmd), self.runner, cmd, timeout=self.config.timeouts.installer,
            )
            if not result["ok"]:
                logger.warning("cuda-uninstaller failed: %s", result.get("error"))

        self._purge_packages(descriptor, errors, clean=True)
        self._remove_files(descriptor, errors)
        self._remove_cuda_alias(root, errors)

        editor = self._profile_editor()
        try:
            editor.remove_block()
        except (ProfileError, OSError) as e:
            logger.error("%s", e)
            errors.append(str(e))

        configs = [str(self.paths.linker_config()), *descriptor.linker_configs]
        self._remove_linker_configs(configs, descriptor, errors)
        self._refresh_linker_cache()

    # ── Steps ───────────────────────────────────────────────────

    def _run(
        self,
        descriptor: ComponentDescriptor,
        body: Callable[[list[str]], None],
    ) -> ActionResult:
        started_at = _now_iso()
        start = time.monotonic()
        logger.info("=== %s UNINSTALL START ===", descriptor.display)

        if not self.prober.is_detected(descriptor):
            logger.info("%s not detected; nothing to remove", descriptor.display)
            result = ActionResult.skip(descriptor.name, "uninstall", "Not installed", stage="done")
        elif not self.gate.confirm(f"Uninstall {descriptor.display}?"):
            logger.warning("%s uninstall aborted by user.", descriptor.display)
            result = ActionResult.skip(descriptor.name, "uninstall", "Declined by user", stage="confirming")
        else:
            errors: list[str] = []
            body(errors)
            if errors:
                result = ActionResult.failure(
                    descriptor.name, "uninstall", "; ".join(errors),
                    failed_stage="remove", stage="removing_files",
                )
            else:
                logger.info("=== %s UNINSTALL COMPLETE ===", descriptor.display)
                result = ActionResult.success(
                    descriptor.name, "uninstall", f"{descriptor.display} removed", stage="done",
                )

        result.started_at = started_at
        result.ended_at = _now_iso()
        result.duration_ms = int((time.monotonic() - start) * 1000)
        if self.gate.dry_run:
            result.metadata.setdefault("dry_run", True)
        return result

    def _remove_files(self, descriptor: ComponentDescriptor, errors: list[str]) -> None:
        targets = self.paths.expand(descriptor.remove_paths, descriptor)
        if not targets:
            logger.info("No %s files found", descriptor.display)
            return
        for path in targets:
            try:
                self.gate.execute(f"rm -rf {path}", remove_path, path)
            except OSError as e:
                logger.error("Failed to remove %s: %s", path, e)
                errors.append(f"{path}: {e}")

    def _purge_packages(self, descriptor: ComponentDescriptor, errors: list[str], *, clean: bool) -> None:
        if self.packages is None:
            logger.warning("No supported package manager; skipping %s package purge", descriptor.display)
            return
        installed = self.prober.installed_packages(descriptor)
        if not installed:
            logger.info("No %s packages installed", descriptor.display)
            return
        logger.info("Purging packages: %s", " ".join(installed))
        result = self.gate.execute(
            f"{self.packages.name} purge {' '.join(installed)}",
            self.packages.purge, descriptor.packages,
        )
        if result is not None and not result["ok"]:
            logger.error("Package purge failed: %s", result.get("error"))
            errors.append(f"purge: {result.get('error')}")
            return

        self.gate.execute(f"{self.packages.name} autoremove", self.packages.autoremove)
        if clean:
            self.gate.execute(f"{self.packages.name} autoclean", self.packages.autoclean)

    def _remove_cuda_alias(self, root: Path, errors: list[str]) -> None:
        """Remove ``<cuda_base>/cuda`` only if it is a symlink into ``root``."""
        alias = self.paths.cuda_alias()
        if not alias.is_symlink():
            return
        target = Path(os.readlink(alias))
        if not target.is_absolute():
            target = alias.parent / target
        if os.path.normpath(target) != os.path.normpath(root):
            logger.info("Leaving %s (points to %s, not %s)", alias, target, root)
            return
        try:
            self.gate.execute(f"rm {alias}", remove_path, alias)
        except OSError as e:
            errors.append(f"{alias}: {e}")

    def _remove_linker_configs(
        self,
        patterns: list[str],
        descriptor: ComponentDescriptor,
        errors: list[str],
    ) -> None:
        for conf in self.paths.expand(patterns, descriptor):
            try:
                self.gate.execute(f"rm {conf}", remove_path, conf)
            except OSError as e:
                logger.error("Failed to remove %s: %s", conf, e)
                errors.append(f"{conf}: {e}")

    def _refresh_linker_cache(self) -> None:
        result = self.gate.run_command("ldconfig", self.runner, ["ldconfig"])
        if not result["ok"]:
            logger.warning("ldconfig failed: %s", result.get("error"))

    def _profile_editor(self) -> ProfileEditor:
        return ProfileEditor(self.paths.profile_path(), self.config.profile_marker, self.gate)
