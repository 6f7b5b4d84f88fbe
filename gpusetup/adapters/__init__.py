"""Adapters — narrow bindings to the external tools.

Public re-exports for convenient access.
"""

from gpusetup.adapters.download import Downloader, verify_checksum
from gpusetup.adapters.mock import MockDownloader, MockPackageManager, MockRunner
from gpusetup.adapters.packages import (
    AptPackageManager,
    DnfPackageManager,
    PackageManager,
    detect_package_manager,
)
from gpusetup.adapters.shell import CommandRunner, missing_commands

__all__ = [
    "AptPackageManager",
    "CommandRunner",
    "DnfPackageManager",
    "Downloader",
    "MockDownloader",
    "MockPackageManager",
    "MockRunner",
    "PackageManager",
    "detect_package_manager",
    "missing_commands",
    "verify_checksum",
]
