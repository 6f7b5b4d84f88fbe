"""
File placement — copies, removals, backups and atomic writes.

These are the raw mutations.  Callers wrap each of them in
``ExecutionGate.execute`` so dry-run never reaches this module.

Invariants:
    - A file is never half-written at its final path: content goes to a
      temp name in the same directory and is renamed into place.
    - An existing destination that differs from the incoming file is
      moved into the backup directory before it is replaced.
    - Symlinks are copied as symlinks.
"""

from __future__ import annotations

import filecmp
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def timestamp() -> str:
    """Backup suffix, e.g. ``20250101_120000``."""
    return time.strftime("%Y%m%d_%H%M%S")


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via temp file + rename.

    An existing file keeps its permission bits and, when running as
    root, its owner (the shell profile belongs to the invoking user).
    A new file takes the owner of its directory.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    existing = path.stat() if path.exists() else None
    owner = existing or path.parent.stat()

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.chmod(tmp, existing.st_mode & 0o7777 if existing is not None else 0o644)
        if os.geteuid() == 0:
            os.chown(tmp, owner.st_uid, owner.st_gid)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("Wrote %s (%d bytes)", path, len(content))


def _same_entry(src: Path, dst: Path) -> bool:
    """True if ``dst`` already matches ``src`` (same link target or content)."""
    if src.is_symlink() or dst.is_symlink():
        return (
            src.is_symlink() and dst.is_symlink()
            and os.readlink(src) == os.readlink(dst)
        )
    if src.is_file() and dst.is_file():
        return filecmp.cmp(src, dst, shallow=False)
    return False


def _copy_entry_atomic(src: Path, dst: Path) -> None:
    """Copy one file or symlink to ``dst`` through a temp name."""
    tmp = dst.with_name(f".{dst.name}.gpusetup-tmp")
    if tmp.exists() or tmp.is_symlink():
        tmp.unlink()
    try:
        if src.is_symlink():
            os.symlink(os.readlink(src), tmp)
        else:
            shutil.copy2(src, tmp)
        os.replace(tmp, dst)
    except BaseException:
        if tmp.exists() or tmp.is_symlink():
            tmp.unlink()
        raise


def backup_entry(path: Path, backup_dir: Path) -> Path:
    """Move ``path`` into ``backup_dir`` (created on demand)."""
    backup_dir.mkdir(parents=True, exist_ok=True)
    dest = backup_dir / path.name
    if dest.exists() or dest.is_symlink():
        dest = backup_dir / f"{path.name}.{timestamp()}"
    shutil.move(str(path), str(dest))
    logger.warning("Moved %s to %s", path, dest)
    return dest


def copy_matching(
    src_dir: Path,
    dst_dir: Path,
    patterns: list[str],
    *,
    backup_dir: Path,
) -> list[Path]:
    """Copy entries of ``src_dir`` matching ``patterns`` into ``dst_dir``.

    Directories are merged recursively.  Returns the destination paths
    that were written (unchanged entries are skipped).
    """
    if not src_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {src_dir}")
    dst_dir.mkdir(parents=True, exist_ok=True)

    placed: list[Path] = []
    seen: set[str] = set()
    for pattern in patterns:
        for src in sorted(src_dir.glob(pattern)):
            if src.name in seen:
                continue
            seen.add(src.name)
            placed.extend(_place(src, dst_dir / src.name, backup_dir))
    return placed


def _is_real_dir(path: Path) -> bool:
    return path.is_dir() and not path.is_symlink()


def _place(src: Path, dst: Path, backup_dir: Path) -> list[Path]:
    """Place ``src`` at ``dst``; ``backup_dir`` mirrors ``dst.parent``."""
    if _is_real_dir(src):
        if dst.is_symlink() or (dst.exists() and not dst.is_dir()):
            backup_entry(dst, backup_dir)
        dst.mkdir(parents=True, exist_ok=True)
        placed: list[Path] = []
        for child in sorted(src.iterdir()):
            placed.extend(_place(child, dst / child.name, backup_dir / src.name))
        return placed

    if dst.exists() or dst.is_symlink():
        if _same_entry(src, dst):
            return []
        backup_entry(dst, backup_dir)
    _copy_entry_atomic(src, dst)
    return [dst]


def remove_path(path: Path) -> None:
    """Delete a file, symlink or directory tree; missing is fine."""
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        return
    logger.debug("Removed %s", path)


def move_all(paths: list[Path], dest_dir: Path) -> list[Path]:
    """Move every path into ``dest_dir``, replacing same-named entries."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    moved: list[Path] = []
    for path in paths:
        target = dest_dir / path.name
        if target.is_symlink() or target.is_file():
            target.unlink()
        shutil.move(str(path), str(target))
        moved.append(target)
    return moved
