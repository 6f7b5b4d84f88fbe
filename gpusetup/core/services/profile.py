"""
Profile editor — the managed environment block in the user's shell profile.

The block looks like::

    # >>> PIXINSIGHT_GPU_SETUP BEGIN >>>
    export PATH=/usr/local/cuda-11.8/bin:$PATH
    export LD_LIBRARY_PATH=/usr/local/cuda-11.8/lib64:$LD_LIBRARY_PATH
    export TF_FORCE_GPU_ALLOW_GROWTH="true"
    # <<< PIXINSIGHT_GPU_SETUP END <<<

``ensure_block`` appends it when absent and never rewrites an existing
block (changing the variables means removing the block first).
``remove_block`` deletes the two marker lines and everything between
them, plus the single newline ``ensure_block`` inserted in front of it,
so remove-after-ensure restores the original bytes.  A profile that
the same editor created is deleted again when the block was all it held;
a run that only removes cannot tell, and leaves an empty file.

The file is read whole, edited in memory and written back atomically.
"""

from __future__ import annotations

import logging
from pathlib import Path

from gpusetup.core.errors import ProfileError
from gpusetup.core.services.gate import ExecutionGate
from gpusetup.core.services.placement import atomic_write_text

logger = logging.getLogger(__name__)


def begin_marker(marker: str) -> str:
    return f"# >>> {marker} BEGIN >>>"


def end_marker(marker: str) -> str:
    return f"# <<< {marker} END <<<"


def render_env_block(root: Path, libdir: Path, feature_flag: str) -> str:
    """The export lines managed inside the block."""
    return (
        f"export PATH={root}/bin:$PATH\n"
        f"export LD_LIBRARY_PATH={libdir}:$LD_LIBRARY_PATH\n"
        f'export {feature_flag}="true"\n'
    )


class ProfileEditor:
    """Idempotent edits to one marker-delimited block."""

    def __init__(self, path: Path, marker: str, gate: ExecutionGate):
        self.path = path
        self.begin = begin_marker(marker)
        self.end = end_marker(marker)
        self.gate = gate
        self._created = False

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def _locate(self, content: str) -> tuple[int, int] | None:
        """Character span of the block (begin line start, end line end).

        Raises:
            ProfileError: duplicate begin markers or an unterminated block.
        """
        lines = content.splitlines(keepends=True)
        starts = [i for i, ln in enumerate(lines) if ln.rstrip("\r\n") == self.begin]
        if not starts:
            return None
        if len(starts) > 1:
            raise ProfileError(
                f"{self.path} contains {len(starts)} '{self.begin}' markers; "
                "remove the duplicates by hand"
            )
        first = starts[0]
        last = next(
            (i for i in range(first + 1, len(lines)) if lines[i].rstrip("\r\n") == self.end),
            None,
        )
        if last is None:
            raise ProfileError(f"{self.path} has '{self.begin}' without '{self.end}'")
        start = sum(len(ln) for ln in lines[:first])
        stop = sum(len(ln) for ln in lines[: last + 1])
        return start, stop

    def has_block(self) -> bool:
        return self._locate(self.read()) is not None

    def ensure_block(self, desired_text: str) -> bool:
        """Append the block if absent.

        Returns:
            True if the file was (or, in dry-run, would be) changed.
        """
        content = self.read()
        if self._locate(content) is not None:
            logger.info("GPU environment block already present in %s", self.path)
            return False

        body = desired_text if desired_text.endswith("\n") else desired_text + "\n"
        block = f"{self.begin}\n{body}{self.end}\n"
        created = not self.path.exists()
        new_content = f"{content}\n{block}" if content else block

        self.gate.execute(
            f"append GPU environment block to {self.path}",
            atomic_write_text, self.path, new_content,
        )
        self._created = created and not self.gate.dry_run
        return True

    def remove_block(self) -> bool:
        """Delete the block; a no-op when it is absent.

        Returns:
            True if the file was (or, in dry-run, would be) changed.
        """
        content = self.read()
        span = self._locate(content)
        if span is None:
            logger.info("No GPU environment block in %s", self.path)
            return False

        start, stop = span
        before, after = content[:start], content[stop:]
        # Drop the separator newline ensure_block added in front of the block
        if before.endswith("\n") and (before.endswith("\n\n") or not after):
            before = before[:-1]

        remaining = before + after
        if not remaining and self._created:
            # ensure_block created the file; leave no empty profile behind
            self.gate.execute(f"rm {self.path}", self.path.unlink)
            self._created = False
            return True

        self.gate.execute(
            f"remove GPU environment block from {self.path}",
            atomic_write_text, self.path, remaining,
        )
        return True
