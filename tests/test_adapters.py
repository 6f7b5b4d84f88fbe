"""
Tests for adapters — command runner, package managers, downloader, mocks.
"""

import hashlib
import os
import sys
from pathlib import Path

import pytest

from gpusetup.adapters.download import Downloader, verify_checksum
from gpusetup.adapters.mock import MockRunner
from gpusetup.adapters.packages import (
    AptPackageManager,
    DnfPackageManager,
    detect_package_manager,
)
from gpusetup.adapters.shell import CommandRunner, missing_commands
from gpusetup.core.services.probe import StateProber

# ── Command runner ───────────────────────────────────────────────────


class TestCommandRunner:
    def test_success(self):
        result = CommandRunner().run([sys.executable, "-c", "print('hello')"])
        assert result["ok"]
        assert result["stdout"].strip() == "hello"
        assert result["elapsed_ms"] >= 0

    def test_nonzero_exit(self):
        result = CommandRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
        )
        assert not result["ok"]
        assert result["returncode"] == 3
        assert result["stderr"] == "boom"

    def test_not_found(self):
        result = CommandRunner().run(["definitely-not-a-command-xyz"])
        assert not result["ok"]
        assert "not found" in result["error"]

    def test_timeout(self):
        result = CommandRunner().run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=1)
        assert not result["ok"]
        assert "timed out" in result["error"]

    def test_env_overrides(self):
        result = CommandRunner().run(
            [sys.executable, "-c", "import os; print(os.environ['GPUSETUP_T'])"],
            env_overrides={"GPUSETUP_T": "42"},
        )
        assert result["stdout"].strip() == "42"

    def test_missing_commands(self):
        runner = MockRunner(available={"tar", "wget"})
        assert missing_commands(runner, ["wget", "tar", "ldconfig"]) == ["ldconfig"]

    def test_long_output_is_kept_whole(self):
        script = "print('first'); [print('x' * 79) for _ in range(200)]"
        result = CommandRunner().run([sys.executable, "-c", script])
        assert result["ok"]
        assert len(result["stdout"]) > 4000
        assert result["stdout"].startswith("first\n")

    def test_failure_output_is_truncated(self):
        script = "import sys; print('x' * 10000); sys.exit(1)"
        result = CommandRunner().run([sys.executable, "-c", script])
        assert not result["ok"]
        assert len(result["stdout"]) == 4000


# ── Mock runner ──────────────────────────────────────────────────────


class TestMockRunner:
    def test_longest_prefix_wins(self):
        runner = MockRunner()
        runner.set_output("ldconfig", "refresh")
        runner.set_output("ldconfig -p", "cache")
        assert runner.run(["ldconfig", "-p"])["stdout"] == "cache"
        assert runner.run(["ldconfig"])["stdout"] == "refresh"

    def test_prefix_matches_whole_words(self):
        runner = MockRunner()
        runner.set_failure("tar")
        assert runner.run(["tarball"])["ok"]
        assert not runner.run(["tar", "-xf", "a.tar"])["ok"]

    def test_effect_and_log(self):
        runner = MockRunner()
        seen = []
        runner.set_effect("tar -xf", seen.append)
        runner.run(["tar", "-xf", "a.tar", "-C", "/tmp/x"])
        assert seen == [["tar", "-xf", "a.tar", "-C", "/tmp/x"]]
        assert runner.calls_to("tar") == seen
        runner.reset()
        assert runner.call_count == 0


# ── Package managers ─────────────────────────────────────────────────


class TestApt:
    def _apt(self) -> tuple[AptPackageManager, MockRunner]:
        runner = MockRunner()
        runner.set_output(
            "dpkg-query -W -f=${Package}",
            "libcudnn8 install ok installed\n"
            "cuda-toolkit-11-8 install ok installed\n"
            "libcudnn8-dev deinstall ok config-files\n"
            "vim install ok installed\n",
        )
        return AptPackageManager(runner), runner

    def test_installed_matching(self):
        apt, _ = self._apt()
        assert apt.installed_matching(["cudnn*", "libcudnn*"]) == ["libcudnn8"]
        assert apt.installed_matching([]) == []

    def test_is_installed(self):
        apt, runner = self._apt()
        runner.set_output("dpkg-query -W -f=${Status} wget", "install ok installed")
        runner.set_failure("dpkg-query -W -f=${Status} curl")
        assert apt.is_installed("wget")
        assert not apt.is_installed("curl")

    def test_purge_resolves_globs(self):
        apt, runner = self._apt()
        result = apt.purge(["cuda*", "cublas*"])
        assert result["ok"]
        assert result["removed"] == ["cuda-toolkit-11-8"]
        assert ["apt-get", "purge", "-y", "cuda-toolkit-11-8"] in runner.call_log

    def test_purge_nothing_matching(self):
        apt, runner = self._apt()
        result = apt.purge(["tensorflow*"])
        assert result["ok"]
        assert result["removed"] == []
        assert runner.calls_to("apt-get") == []

    def test_query_failure_means_nothing_installed(self):
        runner = MockRunner()
        runner.set_failure("dpkg-query")
        assert AptPackageManager(runner).installed_packages() == []


class TestDnf:
    def test_queries_and_writes(self):
        runner = MockRunner()
        runner.set_output("rpm -qa", "cuda-toolkit-11-8\nbash\n")
        dnf = DnfPackageManager(runner)
        assert dnf.installed_matching(["cuda*"]) == ["cuda-toolkit-11-8"]
        dnf.purge(["cuda*"])
        assert ["dnf", "remove", "-y", "cuda-toolkit-11-8"] in runner.call_log


class TestDetect:
    def test_apt_first(self):
        assert isinstance(detect_package_manager(MockRunner()), AptPackageManager)

    def test_dnf(self):
        pm = detect_package_manager(MockRunner(available={"dnf"}))
        assert isinstance(pm, DnfPackageManager)

    def test_none(self):
        assert detect_package_manager(MockRunner(available=set())) is None


# ── Downloader ───────────────────────────────────────────────────────


class TestChecksum:
    def test_match_and_mismatch(self, tmp_path):
        f = tmp_path / "a.run"
        f.write_bytes(b"payload")
        digest = hashlib.sha256(b"payload").hexdigest()
        assert verify_checksum(f, f"sha256:{digest}")
        assert verify_checksum(f, f"sha256:{digest.upper()}")
        assert not verify_checksum(f, "sha256:" + "0" * 64)


class TestDownloader:
    def _wget_writes(self, runner: MockRunner, content: bytes) -> None:
        def effect(cmd):
            dest = Path(cmd[cmd.index("--output-document") + 1])
            dest.write_bytes(content)

        runner.set_effect("wget", effect)

    def test_fetch(self, tmp_path):
        runner = MockRunner()
        self._wget_writes(runner, b"12345")
        dest = tmp_path / "dl" / "cuda.run"

        result = Downloader(runner, read_timeout=30, tries=5).fetch("https://example.com/cuda.run", dest)

        assert result == {"ok": True, "path": str(dest), "size_bytes": 5}
        cmd = runner.calls_to("wget")[0]
        assert "--continue" in cmd
        assert "--timeout=30" in cmd
        assert "--tries=5" in cmd
        assert cmd[-1] == "https://example.com/cuda.run"

    def test_failure(self, tmp_path):
        runner = MockRunner()
        runner.set_failure("wget", "wget failed (exit 8)")
        result = Downloader(runner).fetch("https://example.com/x", tmp_path / "x")
        assert not result["ok"]
        assert "exit 8" in result["error"]

    def test_already_complete(self, tmp_path):
        dest = tmp_path / "x.tar.gz"
        dest.write_bytes(b"done")
        runner = MockRunner()
        runner.set_response("wget", {
            "ok": False,
            "error": "wget failed (exit 8)",
            "stderr": "HTTP request sent, awaiting response... 416 Requested Range Not Satisfiable",
        })
        result = Downloader(runner).fetch("https://example.com/x.tar.gz", dest)
        assert result["ok"]
        assert result["size_bytes"] == 4

    def test_missing_after_success(self, tmp_path):
        result = Downloader(MockRunner()).fetch("https://example.com/x", tmp_path / "x")
        assert not result["ok"]


# ── Real tools with long listings ────────────────────────────────────


def _fake_tool(bin_dir: Path, name: str, first_lines: list[str], filler: str) -> None:
    """Shell script printing ``first_lines`` then 2000 filler lines."""
    head = "".join(f"printf '%s\\n' '{line}'\n" for line in first_lines)
    script = bin_dir / name
    script.write_text(
        "#!/bin/sh\n"
        f"{head}"
        "i=0\n"
        "while [ $i -lt 2000 ]; do\n"
        f"  printf '%s\\n' \"{filler}$i\"\n"
        "  i=$((i+1))\n"
        "done\n"
    )
    os.chmod(script, 0o755)


class TestLongListings:
    @pytest.fixture
    def bin_dir(self, tmp_path, monkeypatch):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
        return bin_dir

    def test_dpkg_packages_listed_first(self, bin_dir):
        _fake_tool(
            bin_dir, "dpkg-query",
            ["cuda-toolkit-11-8 install ok installed", "libcudnn8 install ok installed"],
            "filler-package install ok installed ",
        )
        apt = AptPackageManager(CommandRunner())
        assert apt.installed_matching(["cuda*", "libcudnn*"]) == ["cuda-toolkit-11-8", "libcudnn8"]

    def test_linker_cache_entry_listed_first(self, bin_dir, config):
        _fake_tool(
            bin_dir, "ldconfig",
            ["4021 libs found in cache /etc/ld.so.cache",
             "\tlibcudnn.so.8 (libc6,x86-64) => /usr/local/cuda-11.8/lib64/libcudnn.so.8"],
            "\tlibfiller.so.1 (libc6,x86-64) => /usr/lib/libfiller.so.",
        )
        prober = StateProber(config, CommandRunner())
        assert prober.is_library_registered("libcudnn")
