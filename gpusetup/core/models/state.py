"""
Observed host state — derived on every probe, never persisted.
"""

from __future__ import annotations

from enum import Enum


class InstallState(str, Enum):
    """How much of a component is on disk."""

    ABSENT = "absent"
    PARTIAL = "partial"
    PRESENT = "present"


class DriverStatus(str, Enum):
    """Result of comparing the NVIDIA driver against the required version."""

    COMPATIBLE = "compatible"
    INCOMPATIBLE = "incompatible"
    UNDETERMINED = "undetermined"
