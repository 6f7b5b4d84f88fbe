"""
Downloader — fetch artifacts and verify their integrity.

``Downloader.fetch(url, dest)`` is the only download entry point the
installer uses.  The real implementation shells out to ``wget`` with
resume (``--continue``), a network read timeout and retries; the whole
transfer is bounded by the runner timeout.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any

from gpusetup.adapters.shell import CommandRunner

logger = logging.getLogger(__name__)


def verify_checksum(path: Path, expected: str) -> bool:
    """Verify file checksum.  Format: ``algo:hex``.

    Supports any algorithm known to ``hashlib`` (sha256, sha1, md5, ...).

    Args:
        path: Path to the downloaded file.
        expected: Checksum string like ``sha256:abc123...``.

    Returns:
        True if the file's computed digest matches ``expected``.
    """
    algo, expected_hash = expected.split(":", 1)
    h = hashlib.new(algo)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest() == expected_hash.lower()


def _fmt_size(n: int) -> str:
    """Format byte count as human-readable string."""
    size = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


class Downloader:
    """Download files with wget (resumable, bounded by timeouts)."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        timeout: int = 3600,
        read_timeout: int = 60,
        tries: int = 3,
    ):
        self.runner = runner
        self.timeout = timeout
        self.read_timeout = read_timeout
        self.tries = tries

    def fetch(self, url: str, dest: Path) -> dict[str, Any]:
        """Download ``url`` to ``dest``, resuming a partial file.

        Returns:
            ``{"ok": True, "path": "...", "size_bytes": N}`` or error dict.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.exists():
            logger.info("Partial or previous download found: %s (%s), resuming",
                        dest, _fmt_size(dest.stat().st_size))

        result = self.runner.run(
            [
                "wget",
                "--continue",
                f"--timeout={self.read_timeout}",
                f"--tries={self.tries}",
                "--output-document", str(dest),
                url,
            ],
            timeout=self.timeout,
        )
        if not result["ok"]:
            # wget answers 416 when the file is already complete
            if dest.is_file() and "416" in result.get("stderr", ""):
                logger.info("Download already complete: %s", dest)
            else:
                return {"ok": False, "error": f"Download failed: {result.get('error')}",
                        "stderr": result.get("stderr", "")}

        if not dest.is_file():
            return {"ok": False, "error": f"Download finished but {dest} is missing"}

        size = dest.stat().st_size
        logger.info("Downloaded %s to %s", _fmt_size(size), dest)
        return {"ok": True, "path": str(dest), "size_bytes": size}
