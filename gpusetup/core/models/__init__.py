"""
Domain models — Pydantic types for gpusetup.

All models are re-exported here for convenient access:

    from gpusetup.core.models import SetupConfig, ActionResult, InstallState
"""

from gpusetup.core.models.component import (
    AppDescriptor,
    ComponentDescriptor,
    SetupConfig,
    Timeouts,
)
from gpusetup.core.models.result import ActionResult
from gpusetup.core.models.state import DriverStatus, InstallState

__all__ = [
    # result.py
    "ActionResult",
    # component.py
    "AppDescriptor",
    "ComponentDescriptor",
    # state.py
    "DriverStatus",
    "InstallState",
    "SetupConfig",
    "Timeouts",
]
