"""
Tests for the profile editor — idempotence, round trip, malformed blocks.
"""

import os
import stat
from pathlib import Path

import pytest

from gpusetup.core.errors import ProfileError
from gpusetup.core.services.profile import (
    ProfileEditor,
    begin_marker,
    end_marker,
    render_env_block,
)

MARKER = "PIXINSIGHT_GPU_SETUP"
BLOCK = render_env_block(
    Path("/usr/local/cuda-11.8"),
    Path("/usr/local/cuda-11.8/targets/x86_64-linux/lib"),
    "TF_FORCE_GPU_ALLOW_GROWTH",
)


@pytest.fixture
def profile(tmp_path: Path) -> Path:
    return tmp_path / ".bashrc"


def _editor(profile: Path, gate) -> ProfileEditor:
    return ProfileEditor(profile, MARKER, gate)


class TestRenderBlock:
    def test_exports(self):
        assert BLOCK == (
            "export PATH=/usr/local/cuda-11.8/bin:$PATH\n"
            "export LD_LIBRARY_PATH=/usr/local/cuda-11.8/targets/x86_64-linux/lib:$LD_LIBRARY_PATH\n"
            'export TF_FORCE_GPU_ALLOW_GROWTH="true"\n'
        )

    def test_markers(self):
        assert begin_marker(MARKER) == "# >>> PIXINSIGHT_GPU_SETUP BEGIN >>>"
        assert end_marker(MARKER) == "# <<< PIXINSIGHT_GPU_SETUP END <<<"


class TestEnsureBlock:
    def test_appends_to_existing_file(self, profile, gate):
        profile.write_text("export EDITOR=vim\n")

        assert _editor(profile, gate).ensure_block(BLOCK) is True

        assert profile.read_text() == (
            "export EDITOR=vim\n"
            "\n"
            f"{begin_marker(MARKER)}\n"
            f"{BLOCK}"
            f"{end_marker(MARKER)}\n"
        )

    def test_file_ends_with_block(self, profile, gate):
        profile.write_text("alias ll='ls -l'\n")
        _editor(profile, gate).ensure_block("X=1")
        assert profile.read_text().endswith(
            f"{begin_marker(MARKER)}\nX=1\n{end_marker(MARKER)}\n"
        )

    def test_creates_missing_file(self, profile, gate):
        _editor(profile, gate).ensure_block(BLOCK)
        assert profile.read_text().startswith(begin_marker(MARKER))

    def test_is_idempotent(self, profile, gate):
        profile.write_text("alias ll='ls -l'\n")
        editor = _editor(profile, gate)
        editor.ensure_block(BLOCK)
        once = profile.read_bytes()

        assert editor.ensure_block(BLOCK) is False
        assert profile.read_bytes() == once

    def test_existing_block_is_not_rewritten(self, profile, gate):
        editor = _editor(profile, gate)
        editor.ensure_block(BLOCK)
        once = profile.read_bytes()

        assert editor.ensure_block("export OTHER=1\n") is False
        assert profile.read_bytes() == once

    def test_preserves_mode(self, profile, gate):
        profile.write_text("# rc\n")
        os.chmod(profile, 0o600)
        _editor(profile, gate).ensure_block(BLOCK)
        assert stat.S_IMODE(profile.stat().st_mode) == 0o600

    def test_dry_run_does_not_write(self, profile, dry_gate):
        profile.write_text("# rc\n")
        assert _editor(profile, dry_gate).ensure_block(BLOCK) is True
        assert profile.read_text() == "# rc\n"
        assert dry_gate.actions == [f"append GPU environment block to {profile}"]


class TestRemoveBlock:
    @pytest.mark.parametrize(
        "original",
        [
            "export EDITOR=vim\n",
            "export EDITOR=vim",
            "export EDITOR=vim\n\n\n",
            "",
        ],
    )
    def test_round_trip_restores_bytes(self, profile, gate, original):
        profile.write_text(original)
        editor = _editor(profile, gate)

        editor.ensure_block(BLOCK)
        assert editor.remove_block() is True

        assert profile.read_text() == original

    def test_block_in_the_middle(self, profile, gate):
        profile.write_text(
            "a=1\n"
            f"{begin_marker(MARKER)}\n"
            "export X=1\n"
            f"{end_marker(MARKER)}\n"
            "b=2\n"
        )
        _editor(profile, gate).remove_block()
        assert profile.read_text() == "a=1\nb=2\n"

    def test_absent_block_is_a_no_op(self, profile, gate):
        profile.write_text("export EDITOR=vim\n")
        assert _editor(profile, gate).remove_block() is False
        assert profile.read_text() == "export EDITOR=vim\n"

    def test_twice_is_idempotent(self, profile, gate):
        profile.write_text("x\n")
        editor = _editor(profile, gate)
        editor.ensure_block(BLOCK)
        editor.remove_block()
        assert editor.remove_block() is False
        assert profile.read_text() == "x\n"

    def test_missing_file(self, profile, gate):
        assert _editor(profile, gate).remove_block() is False
        assert not profile.exists()

    def test_round_trip_on_missing_file_deletes_it(self, profile, gate):
        editor = _editor(profile, gate)
        editor.ensure_block(BLOCK)
        assert profile.exists()

        assert editor.remove_block() is True
        assert not profile.exists()

    def test_existing_empty_file_is_kept(self, profile, gate):
        profile.write_text("")
        editor = _editor(profile, gate)
        editor.ensure_block(BLOCK)
        editor.remove_block()
        assert profile.read_text() == ""

    def test_block_only_file_from_another_run_is_emptied(self, profile, gate):
        _editor(profile, gate).ensure_block(BLOCK)
        assert _editor(profile, gate).remove_block() is True
        assert profile.read_text() == ""


class TestMalformed:
    def test_duplicate_begin_markers(self, profile, gate):
        b, e = begin_marker(MARKER), end_marker(MARKER)
        profile.write_text(f"{b}\n{e}\n{b}\n{e}\n")
        with pytest.raises(ProfileError, match="2"):
            _editor(profile, gate).ensure_block(BLOCK)

    def test_begin_without_end(self, profile, gate):
        profile.write_text(f"{begin_marker(MARKER)}\nexport X=1\n")
        with pytest.raises(ProfileError):
            _editor(profile, gate).remove_block()

    def test_end_before_begin_is_unterminated(self, profile, gate):
        profile.write_text(f"{end_marker(MARKER)}\n{begin_marker(MARKER)}\n")
        with pytest.raises(ProfileError):
            _editor(profile, gate).has_block()

    def test_marker_must_be_whole_line(self, profile, gate):
        profile.write_text(f"echo '{begin_marker(MARKER)}'\n")
        assert _editor(profile, gate).has_block() is False
