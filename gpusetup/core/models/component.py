"""
Component descriptors and settings — the single configuration structure.

Every action receives a ``SetupConfig``. Versions, download URLs and
path patterns live here and nowhere else, so tests can point the whole
tool at a sandbox directory.

Path patterns use ``{placeholder}`` tokens rendered by the PathResolver:

    {cuda_base}      parent of the CUDA root (``/usr/local``)
    {cuda_root}      versioned CUDA root (``/usr/local/cuda-11.8``)
    {libdir}         detected CUDA library directory
    {include}        system include directory (``/usr/local/include``)
    {lib}            system library directory (``/usr/local/lib``)
    {ldso_conf_dir}  dynamic linker config directory
    {version}        the descriptor's full version
    {short_version}  major.minor of the descriptor's version
"""

from __future__ import annotations

import os
import pwd
from pathlib import Path

from pydantic import BaseModel, Field


def short_version(version: str) -> str:
    """``11.8.0`` → ``11.8``."""
    parts = version.split(".")
    return ".".join(parts[:2])


def invoking_user_home() -> Path:
    """Home directory of the user who invoked the tool.

    Under sudo this is ``SUDO_USER``'s home, not root's.
    """
    user = os.environ.get("SUDO_USER") or os.environ.get("USER") or os.environ.get("LOGNAME")
    if user:
        try:
            return Path(pwd.getpwnam(user).pw_dir)
        except KeyError:
            pass
    return Path.home()


class ComponentDescriptor(BaseModel):
    """One managed component (CUDA, cuDNN, TensorFlow C API)."""

    name: str                                   # cuda, cudnn, tensorflow
    label: str = ""                             # human-readable name
    version: str
    url: str = ""                               # empty = user-supplied artifact
    artifact: str = ""                          # downloaded/expected filename
    checksum: str = ""                          # "sha256:<hex>", optional
    markers: list[str] = Field(default_factory=list)
    headers: list[str] = Field(default_factory=list)
    libraries: list[str] = Field(default_factory=list)
    remove_paths: list[str] = Field(default_factory=list)
    packages: list[str] = Field(default_factory=list)       # package-name globs
    linker_names: list[str] = Field(default_factory=list)   # ldconfig -p names
    linker_configs: list[str] = Field(default_factory=list)
    installer_args: list[str] = Field(default_factory=list)

    @property
    def display(self) -> str:
        return f"{self.label or self.name} {self.version}"


class AppDescriptor(BaseModel):
    """The host application whose plugins use the GPU stack."""

    name: str = "PixInsight"
    root: str = "/opt/PixInsight"
    binary: str = "/usr/bin/PixInsight"
    launcher: str = "/opt/PixInsight/bin/PixInsight.sh"
    lib_dir: str = "/opt/PixInsight/bin/lib"
    bundled_libs: str = "libtensorflow*.so*"
    backup_dir: str = "backup_tf"


class Timeouts(BaseModel):
    """Subprocess timeouts in seconds."""

    command: int = 300
    probe: int = 10
    download: int = 3600
    installer: int = 1800
    network_read: int = 60


def _default_cuda() -> ComponentDescriptor:
    version = "11.8.0"
    artifact = f"cuda_{version}_520.61.05_linux.run"
    return ComponentDescriptor(
        name="cuda",
        label="CUDA",
        version=version,
        url=(
            "https://developer.download.nvidia.com/compute/cuda/"
            f"{version}/local_installers/{artifact}"
        ),
        artifact=artifact,
        markers=["{cuda_root}", "{cuda_root}/bin/nvcc"],
        remove_paths=["{cuda_root}"],
        packages=["cuda*", "cublas*"],
        linker_names=["libcudart"],
        linker_configs=["{ldso_conf_dir}/cuda-*.conf"],
        installer_args=["--silent", "--toolkit", "--no-opengl-libs"],
    )


def _default_cudnn() -> ComponentDescriptor:
    return ComponentDescriptor(
        name="cudnn",
        label="cuDNN",
        version="8.9.4.25",
        artifact="cudnn-linux-x86_64-8.9.4.25_cuda11-archive.tar.xz",
        markers=["{cuda_root}/include/cudnn.h", "{libdir}/libcudnn.so*"],
        headers=["cudnn*.h"],
        libraries=["libcudnn*"],
        remove_paths=[
            "{cuda_root}/include/cudnn*.h",
            "{libdir}/libcudnn*",
            "{cuda_root}/lib64/libcudnn*",
        ],
        packages=["cudnn*", "libcudnn*"],
        linker_names=["libcudnn"],
        linker_configs=["{ldso_conf_dir}/*cudnn*.conf"],
    )


def _default_tensorflow() -> ComponentDescriptor:
    version = "2.14.0"
    artifact = f"libtensorflow-gpu-linux-x86_64-{version}.tar.gz"
    return ComponentDescriptor(
        name="tensorflow",
        label="TensorFlow C API",
        version=version,
        url=f"https://storage.googleapis.com/tensorflow/libtensorflow/{artifact}",
        artifact=artifact,
        markers=["{lib}/libtensorflow.so.{version}"],
        headers=["*"],
        libraries=["*"],
        remove_paths=[
            "{lib}/libtensorflow.so*",
            "{lib}/libtensorflow_framework.so*",
            "{include}/tensorflow",
        ],
        linker_names=["libtensorflow"],
    )


class SetupConfig(BaseModel):
    """Everything the actions need to know about the host."""

    cuda: ComponentDescriptor = Field(default_factory=_default_cuda)
    cudnn: ComponentDescriptor = Field(default_factory=_default_cudnn)
    tensorflow: ComponentDescriptor = Field(default_factory=_default_tensorflow)
    app: AppDescriptor = Field(default_factory=AppDescriptor)

    # ── System locations ─────────────────────────────────────────
    cuda_base: str = "/usr/local"
    include_dir: str = "/usr/local/include"
    lib_dir: str = "/usr/local/lib"
    ldso_conf_dir: str = "/etc/ld.so.conf.d"

    # ── Invoking user ────────────────────────────────────────────
    user_home: str = Field(default_factory=lambda: str(invoking_user_home()))
    profile_file: str = ".bashrc"               # relative to user_home
    download_dir: str = "Downloads"             # relative to user_home

    # ── Behaviour ────────────────────────────────────────────────
    profile_marker: str = "PIXINSIGHT_GPU_SETUP"
    feature_flag: str = "TF_FORCE_GPU_ALLOW_GROWTH"
    required_driver_version: str = "550"
    prerequisites: list[str] = Field(
        default_factory=lambda: ["build-essential", "wget", "curl", "binutils"],
    )
    timeouts: Timeouts = Field(default_factory=Timeouts)

    def component(self, name: str) -> ComponentDescriptor:
        """Look up a descriptor by name (cuda, cudnn, tensorflow)."""
        if name not in ("cuda", "cudnn", "tensorflow"):
            raise KeyError(name)
        return getattr(self, name)

    @property
    def components(self) -> list[ComponentDescriptor]:
        """Descriptors in install order."""
        return [self.cuda, self.cudnn, self.tensorflow]
