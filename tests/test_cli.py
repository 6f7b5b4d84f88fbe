"""
Tests for the CLI — command wiring, exit codes, menus end to end.

Sessions are built by a factory passed through ``obj`` so every command
runs against the sandbox host with mock adapters.
"""

import json
import os
from pathlib import Path

import pytest
from click.testing import CliRunner

from gpusetup import __version__
from gpusetup.adapters.mock import MockRunner
from gpusetup.core.services.session import build_session
from gpusetup.main import cli


@pytest.fixture
def invoke(config, runner, packages, downloader, tmp_path, monkeypatch):
    """Invoke the CLI with sessions wired to the sandbox."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GPUSETUP_CONFIG", raising=False)
    for var in ("GPUSETUP_LOG_LEVEL", "GPUSETUP_LOG_FILE", "GPUSETUP_LOG_FILE_LEVEL"):
        monkeypatch.delenv(var, raising=False)

    def factory(_loaded, *, dry_run, assume_yes, runner=runner):
        session = build_session(
            config,
            dry_run=dry_run,
            assume_yes=assume_yes,
            runner=runner,
            packages=packages,
            downloader=downloader,
        )
        session.prober.proc_modules = tmp_path / "modules"
        return session

    def _invoke(args, *, session_factory=factory, **kwargs):
        return CliRunner().invoke(cli, args, obj={"session_factory": session_factory}, **kwargs)

    return _invoke


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 0)


class TestBasics:
    def test_help(self, invoke):
        result = invoke(["--help"])
        assert result.exit_code == 0
        for command in ("install", "uninstall", "status"):
            assert command in result.output

    def test_version(self, invoke):
        result = invoke(["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_invalid_config(self, invoke, tmp_path):
        result = invoke(["-c", str(tmp_path / "missing.yml"), "status"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestStatus:
    def test_json(self, invoke):
        result = invoke(["-q", "status", "--json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert set(data["components"]) == {"cuda", "cudnn", "tensorflow"}
        assert data["components"]["cuda"]["state"] == "absent"
        assert data["driver"]["status"] == "undetermined"
        assert data["profile"]["block"] is False

    def test_human(self, invoke, full_stack):
        result = invoke(["-q", "status"])
        assert result.exit_code == 0, result.output
        assert "cuda" in result.output
        assert "present" in result.output
        assert "Profile block" in result.output

    def test_does_not_need_root(self, invoke, monkeypatch):
        monkeypatch.setattr(os, "geteuid", lambda: 1000)
        assert invoke(["-q", "status", "--json"]).exit_code == 0


class TestInstallMenu:
    def test_quit(self, invoke):
        result = invoke(["--dry-run", "install"], input="9\n")
        assert result.exit_code == 0, result.output
        assert "DRY-RUN: no changes will be made." in result.output
        assert "Dry-run: 0 action(s)" in result.output

    def test_default_command_is_installer(self, invoke):
        result = invoke(["--dry-run"], input="9\n")
        assert result.exit_code == 0
        assert "installer" in result.output

    def test_dry_run_lists_actions(self, invoke, config):
        result = invoke(["--dry-run", "--yes", "install"], input="4\n9\n")
        assert result.exit_code == 0, result.output
        assert "would have been executed" in result.output
        assert f"download {config.tensorflow.url}" in result.output
        assert not Path(config.lib_dir).exists()

    def test_eof_is_interrupt(self, invoke):
        result = invoke(["--dry-run", "install"], input="")
        assert result.exit_code == 130

    def test_missing_commands(self, invoke):
        result = invoke(
            ["--dry-run", "install"],
            input="9\n",
            session_factory=lambda _c, **kw: build_session(
                _c, runner=MockRunner(available=set()), packages=None, **kw
            ),
        )
        assert result.exit_code == 2
        assert "wget" in result.output

    def test_reexec_failure(self, invoke, monkeypatch):
        monkeypatch.setattr(os, "geteuid", lambda: 1000)

        def fail(*args):
            raise OSError("sudo: not found")

        monkeypatch.setattr(os, "execvp", fail)
        result = invoke(["install"], input="9\n")
        assert result.exit_code == 1
        assert "sudo" in result.output

    def test_installs_tensorflow(self, invoke, as_root, fake_tar, config, paths):
        result = invoke(["--yes", "install"], input="4\n9\n")

        assert result.exit_code == 0, result.output
        assert (Path(config.lib_dir) / "libtensorflow.so.2.14.0").is_file()
        assert (Path(config.include_dir) / "tensorflow" / "c" / "c_api.h").is_file()
        assert config.profile_marker in paths.profile_path().read_text()

    def test_declining_confirmation(self, invoke, as_root, downloader):
        result = invoke(["install"], input="4\nn\n9\n")
        assert result.exit_code == 0, result.output
        assert downloader.call_count == 0
        assert "Declined by user" in result.output


class TestUninstallMenu:
    def test_uninstall_all(self, invoke, as_root, full_stack, paths):
        result = invoke(["--yes", "uninstall"], input="4\n7\n")

        assert result.exit_code == 0, result.output
        assert not paths.cuda_root().exists()
        assert not paths.cuda_alias().is_symlink()
        assert paths.profile_path().read_text() == "export EDITOR=vim\n"

    def test_dry_run(self, invoke, full_stack, paths):
        result = invoke(["--dry-run", "--yes", "uninstall"], input="3\n7\n")
        assert result.exit_code == 0, result.output
        assert paths.cuda_root().is_dir()
        assert "rm -rf" in result.output
