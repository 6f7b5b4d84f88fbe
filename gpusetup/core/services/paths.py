"""
Path resolver — canonical filesystem locations for the GPU stack.

Nothing here raises for a missing path: absence is a normal answer, and
the library-directory probe falls back to the preferred layout so that
later steps can create it.
"""

from __future__ import annotations

import glob
from pathlib import Path

from gpusetup.core.models.component import (
    ComponentDescriptor,
    SetupConfig,
    short_version,
)

# CUDA library directory layouts, most specific first
LIBDIR_CANDIDATES = ("targets/x86_64-linux/lib", "lib64", "lib")


class PathResolver:
    """Compute paths from a SetupConfig."""

    def __init__(self, config: SetupConfig):
        self.config = config

    # ── CUDA ────────────────────────────────────────────────────

    def cuda_root(self, version: str | None = None) -> Path:
        """``<cuda_base>/cuda-<major.minor>``."""
        v = short_version(version or self.config.cuda.version)
        return Path(self.config.cuda_base) / f"cuda-{v}"

    def cuda_libdir(self, version: str | None = None) -> Path:
        """First existing library directory under the CUDA root.

        Falls back to the first candidate when none exists yet.
        """
        root = self.cuda_root(version)
        for candidate in LIBDIR_CANDIDATES:
            path = root / candidate
            if path.is_dir():
                return path
        return root / LIBDIR_CANDIDATES[0]

    def cuda_alias(self) -> Path:
        """The unversioned ``<cuda_base>/cuda`` symlink the runfile creates."""
        return Path(self.config.cuda_base) / "cuda"

    def linker_config(self) -> Path:
        """Versioned ld.so.conf.d entry, e.g. ``cuda-11-8.conf``."""
        v = short_version(self.config.cuda.version).replace(".", "-")
        return Path(self.config.ldso_conf_dir) / f"cuda-{v}.conf"

    # ── User ────────────────────────────────────────────────────

    def profile_path(self) -> Path:
        return Path(self.config.user_home) / self.config.profile_file

    def download_dir(self) -> Path:
        return Path(self.config.user_home) / self.config.download_dir

    def artifact_path(self, descriptor: ComponentDescriptor) -> Path:
        return self.download_dir() / descriptor.artifact

    def staging_dir(self, descriptor: ComponentDescriptor) -> Path:
        """Extraction area next to the downloaded artifact."""
        stem = descriptor.artifact
        for suffix in (".tar.gz", ".tar.xz", ".tgz", ".run"):
            if stem.endswith(suffix):
                stem = stem[: -len(suffix)]
                break
        return self.download_dir() / f"{stem or descriptor.name}-staging"

    # ── Application ─────────────────────────────────────────────

    def app_lib_dir(self) -> Path:
        return Path(self.config.app.lib_dir)

    def app_backup_dir(self) -> Path:
        return self.app_lib_dir() / self.config.app.backup_dir

    # ── Patterns ────────────────────────────────────────────────

    def placeholders(self, descriptor: ComponentDescriptor | None = None) -> dict[str, str]:
        values = {
            "cuda_base": self.config.cuda_base,
            "cuda_root": str(self.cuda_root()),
            "libdir": str(self.cuda_libdir()),
            "include": self.config.include_dir,
            "lib": self.config.lib_dir,
            "ldso_conf_dir": self.config.ldso_conf_dir,
        }
        if descriptor is not None:
            values["version"] = descriptor.version
            values["short_version"] = short_version(descriptor.version)
        return values

    def render(self, pattern: str, descriptor: ComponentDescriptor | None = None) -> str:
        """Substitute ``{var}`` placeholders in a path pattern."""
        result = pattern
        for key, value in self.placeholders(descriptor).items():
            result = result.replace(f"{{{key}}}", value)
        return result

    def expand(
        self,
        patterns: list[str],
        descriptor: ComponentDescriptor | None = None,
    ) -> list[Path]:
        """Render and glob ``patterns``; existing paths only, deduplicated.

        Dangling symlinks count as existing.
        """
        seen: set[str] = set()
        paths: list[Path] = []
        for pattern in patterns:
            rendered = self.render(pattern, descriptor)
            for match in sorted(glob.glob(rendered)):
                if match not in seen:
                    seen.add(match)
                    paths.append(Path(match))
        return paths
