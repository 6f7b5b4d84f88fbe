"""
Shared test fixtures — a sandboxed host under tmp_path.

Every path in the SetupConfig points below ``tmp_path/host`` and every
external tool is a mock, so no test touches the real system.
"""

import os
from pathlib import Path

import pytest

from gpusetup.adapters.mock import MockDownloader, MockPackageManager, MockRunner
from gpusetup.core.models.component import AppDescriptor, SetupConfig
from gpusetup.core.services.gate import AlwaysAllow, ExecutionGate
from gpusetup.core.services.paths import PathResolver
from gpusetup.core.services.profile import ProfileEditor, render_env_block
from gpusetup.core.services.session import build_session

CUDNN_TOP = "cudnn-linux-x86_64-8.9.4.25_cuda11-archive"


def _touch(path: Path, content: bytes = b"\x7fELF", mode: int | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if mode is not None:
        os.chmod(path, mode)
    return path


def build_cuda_tree(root: Path) -> None:
    """What the CUDA runfile leaves behind (trimmed)."""
    _touch(root / "bin" / "nvcc", b"#!/bin/sh\n", mode=0o755)
    libdir = root / "targets" / "x86_64-linux" / "lib"
    _touch(libdir / "libcudart.so.11.8.89")
    os.symlink("libcudart.so.11.8.89", libdir / "libcudart.so.11.0")
    (root / "include").mkdir(parents=True, exist_ok=True)


def build_cudnn_tree(dest: Path) -> Path:
    """cuDNN archive layout with one alias extracted as a regular file."""
    top = dest / CUDNN_TOP
    _touch(top / "include" / "cudnn.h", b"/* cudnn */\n")
    _touch(top / "include" / "cudnn_version.h", b"#define CUDNN_MAJOR 8\n")
    lib = top / "lib"
    _touch(lib / "libcudnn.so.8.9.4", b"cudnn")
    os.symlink("libcudnn.so.8.9.4", lib / "libcudnn.so.8")
    os.symlink("libcudnn.so.8", lib / "libcudnn.so")
    _touch(lib / "libcudnn_ops_infer.so.8.9.4", b"ops")
    _touch(lib / "libcudnn_ops_infer.so.8", b"ops")
    return top


def build_tensorflow_tree(dest: Path) -> Path:
    """libtensorflow C API tarball layout."""
    _touch(dest / "include" / "tensorflow" / "c" / "c_api.h", b"/* tf */\n")
    lib = dest / "lib"
    _touch(lib / "libtensorflow.so.2.14.0", b"tf")
    os.symlink("libtensorflow.so.2.14.0", lib / "libtensorflow.so.2")
    _touch(lib / "libtensorflow_framework.so.2.14.0", b"tf-fw")
    os.symlink("libtensorflow_framework.so.2.14.0", lib / "libtensorflow_framework.so.2")
    return dest


@pytest.fixture
def sandbox(tmp_path: Path) -> Path:
    root = tmp_path / "host"
    (root / "home" / "user").mkdir(parents=True)
    return root


@pytest.fixture
def config(sandbox: Path) -> SetupConfig:
    usr_local = sandbox / "usr" / "local"
    app_root = sandbox / "opt" / "PixInsight"
    return SetupConfig(
        cuda_base=str(usr_local),
        include_dir=str(usr_local / "include"),
        lib_dir=str(usr_local / "lib"),
        ldso_conf_dir=str(sandbox / "etc" / "ld.so.conf.d"),
        user_home=str(sandbox / "home" / "user"),
        app=AppDescriptor(
            root=str(app_root),
            binary=str(sandbox / "usr" / "bin" / "PixInsight"),
            launcher=str(app_root / "bin" / "PixInsight.sh"),
            lib_dir=str(app_root / "bin" / "lib"),
        ),
    )


@pytest.fixture
def paths(config: SetupConfig) -> PathResolver:
    return PathResolver(config)


@pytest.fixture
def runner() -> MockRunner:
    return MockRunner()


@pytest.fixture
def packages() -> MockPackageManager:
    return MockPackageManager()


@pytest.fixture
def downloader() -> MockDownloader:
    return MockDownloader()


@pytest.fixture
def gate() -> ExecutionGate:
    return ExecutionGate(AlwaysAllow())


@pytest.fixture
def dry_gate() -> ExecutionGate:
    return ExecutionGate(AlwaysAllow(), dry_run=True)


def _session(config, runner, packages, downloader, tmp_path, *, dry_run):
    s = build_session(
        config,
        dry_run=dry_run,
        runner=runner,
        packages=packages,
        downloader=downloader,
        confirm=AlwaysAllow(),
    )
    s.prober.proc_modules = tmp_path / "modules"
    return s


@pytest.fixture
def session(config, runner, packages, downloader, tmp_path):
    return _session(config, runner, packages, downloader, tmp_path, dry_run=False)


@pytest.fixture
def dry_session(config, runner, packages, downloader, tmp_path):
    return _session(config, runner, packages, downloader, tmp_path, dry_run=True)


@pytest.fixture
def cuda_installed(paths: PathResolver) -> Path:
    """CUDA already on the sandbox host."""
    root = paths.cuda_root()
    build_cuda_tree(root)
    return root


@pytest.fixture
def fake_runfile(runner: MockRunner, paths: PathResolver, config: SetupConfig) -> Path:
    """Make the mocked CUDA runfile create the toolkit tree."""
    runfile = paths.artifact_path(config.cuda)
    runner.set_effect(str(runfile), lambda cmd: build_cuda_tree(paths.cuda_root()))
    return runfile


@pytest.fixture
def fake_tar(runner: MockRunner) -> None:
    """Make ``tar -xf <archive> -C <staging>`` produce the archive layout."""

    def extract(cmd: list[str]) -> None:
        archive, staging = Path(cmd[2]), Path(cmd[4])
        if "cudnn" in archive.name:
            build_cudnn_tree(staging)
        else:
            build_tensorflow_tree(staging)

    runner.set_effect("tar -xf", extract)


@pytest.fixture
def cudnn_archive(sandbox: Path) -> Path:
    return _touch(sandbox / "home" / "user" / "Downloads" / f"{CUDNN_TOP}.tar.xz", b"archive")


@pytest.fixture
def app_installed(config: SetupConfig) -> Path:
    """PixInsight launcher present, with its bundled TensorFlow."""
    _touch(Path(config.app.launcher), b"#!/bin/sh\n", mode=0o755)
    lib_dir = Path(config.app.lib_dir)
    _touch(lib_dir / "libtensorflow.so.2", b"bundled")
    _touch(lib_dir / "libtensorflow_framework.so.2", b"bundled-fw")
    return lib_dir


@pytest.fixture
def full_stack(config: SetupConfig, paths: PathResolver) -> None:
    """CUDA, cuDNN and TensorFlow all installed, linker and profile configured."""
    root = paths.cuda_root()
    build_cuda_tree(root)
    os.symlink(str(root), paths.cuda_alias())

    libdir = paths.cuda_libdir()
    _touch(root / "include" / "cudnn.h", b"/* cudnn */\n")
    _touch(libdir / "libcudnn.so.8.9.4", b"cudnn")
    os.symlink("libcudnn.so.8.9.4", libdir / "libcudnn.so.8")
    os.symlink("libcudnn.so.8", libdir / "libcudnn.so")

    build_tensorflow_tree(Path(config.cuda_base))

    conf_dir = Path(config.ldso_conf_dir)
    _touch(paths.linker_config(), f"{libdir}\n".encode())
    _touch(conf_dir / "cudnn.conf", f"{libdir}\n".encode())

    profile = paths.profile_path()
    profile.write_text("export EDITOR=vim\n")
    ProfileEditor(profile, config.profile_marker, ExecutionGate(AlwaysAllow())).ensure_block(
        render_env_block(root, libdir, config.feature_flag)
    )
