"""
Symlink normalizer — repair versioned shared-library alias chains.

A manual archive extraction can leave ``libcudnn_ops_infer.so.8`` as a
regular file, a stale link, or missing, which makes ``ldconfig`` warn and
the loader pick the wrong object.  For every fully-versioned library
``<stem>.so.<major>.<minor>[.<patch>]`` in a directory this ensures:

    <stem>.so.<major>  →  <stem>.so.<major>.<minor>...   (newest wins)
    <stem>.so          →  <stem>.so.<major>              (only if missing)

A regular file sitting where an alias belongs is moved into a
timestamped ``backup-so-*`` subdirectory first.  Correct links are left
alone, so a second run changes nothing.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from gpusetup.core.services.gate import ExecutionGate
from gpusetup.core.services.placement import backup_entry, timestamp

logger = logging.getLogger(__name__)

_VERSIONED = re.compile(r"^(?P<stem>.+\.so)\.(?P<major>\d+)\.(?P<rest>\d+(?:\.\d+)*)$")


@dataclass
class NormalizeReport:
    """What a normalization pass did (or, in dry-run, would do)."""

    created: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)
    backed_up: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    backup_dir: str | None = None

    @property
    def changed(self) -> bool:
        return bool(self.created or self.replaced or self.backed_up)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "replaced": self.replaced,
            "backed_up": self.backed_up,
            "unchanged": self.unchanged,
            "backup_dir": self.backup_dir,
        }


def _version_key(name: str) -> tuple[int, ...]:
    m = _VERSIONED.match(name)
    if not m:
        return ()
    return (int(m.group("major")), *(int(p) for p in m.group("rest").split(".")))


def versioned_libraries(libdir: Path, pattern: str = "lib*.so.*") -> dict[str, Path]:
    """Map each alias name (``<stem>.so.<major>``) to its newest real file."""
    best: dict[str, Path] = {}
    for path in sorted(libdir.glob(pattern)):
        if path.is_symlink() or not path.is_file():
            continue
        m = _VERSIONED.match(path.name)
        if not m:
            continue
        alias = f"{m.group('stem')}.{m.group('major')}"
        current = best.get(alias)
        if current is None or _version_key(path.name) > _version_key(current.name):
            best[alias] = path
    return best


def _link(target_name: str, link_path: Path) -> None:
    """Atomically point ``link_path`` at ``target_name`` (relative)."""
    tmp = link_path.with_name(f".{link_path.name}.gpusetup-tmp")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    os.symlink(target_name, tmp)
    os.replace(tmp, link_path)


def normalize_symlinks(
    libdir: Path,
    gate: ExecutionGate,
    *,
    pattern: str = "lib*.so.*",
    dev_links: bool = True,
) -> NormalizeReport:
    """Ensure alias symlinks in ``libdir`` point at the versioned files.

    Args:
        libdir: Library directory to repair.
        gate: Execution gate; every change goes through it.
        pattern: Glob selecting candidate libraries (e.g. ``libcudnn*.so.*``).
        dev_links: Also create a missing ``<stem>.so`` development link.

    Returns:
        NormalizeReport describing the changes.
    """
    report = NormalizeReport()
    if not libdir.is_dir():
        logger.warning("Library directory not found: %s", libdir)
        return report

    targets = versioned_libraries(libdir, pattern)
    if not targets:
        logger.warning("No versioned libraries matching %s in %s", pattern, libdir)
        return report

    backup_dir = libdir / f"backup-so-{timestamp()}"

    for alias, target in sorted(targets.items()):
        alias_path = libdir / alias

        if alias_path.is_symlink():
            current = os.readlink(alias_path)
            if current == target.name:
                report.unchanged.append(alias)
            else:
                logger.warning("Symlink %s points to %s; updating to %s",
                               alias_path, current, target.name)
                gate.execute(f"ln -sf {target.name} {alias_path}", _link, target.name, alias_path)
                report.replaced.append(alias)
        elif alias_path.exists():
            logger.warning("Found non-symlink alias %s; moving it to %s", alias_path, backup_dir)
            gate.execute(f"mv {alias_path} {backup_dir}/", backup_entry, alias_path, backup_dir)
            gate.execute(f"ln -s {target.name} {alias_path}", _link, target.name, alias_path)
            report.backed_up.append(alias)
            report.replaced.append(alias)
            report.backup_dir = str(backup_dir)
        else:
            gate.execute(f"ln -s {target.name} {alias_path}", _link, target.name, alias_path)
            report.created.append(alias)

        if dev_links:
            dev_name = alias.rsplit(".", 1)[0]
            dev_path = libdir / dev_name
            if not dev_path.exists() and not dev_path.is_symlink():
                gate.execute(f"ln -s {alias} {dev_path}", _link, alias, dev_path)
                report.created.append(dev_name)

    logger.info(
        "Symlink normalization in %s: %d created, %d replaced, %d unchanged",
        libdir, len(report.created), len(report.replaced), len(report.unchanged),
    )
    return report
