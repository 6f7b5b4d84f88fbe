"""
ActionResult — the outcome of one install/uninstall action.

Actions never let a stage failure escape as an exception: the failure is
captured here together with the stage it happened in, so the menu can
report it and carry on.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

FailedStage = Literal["precondition", "download", "extract", "place", "link", "remove"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ActionResult(BaseModel):
    """Result of an installer or uninstaller action."""

    component: str
    action: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    message: str = ""
    error: str | None = None
    stage: str = ""                         # last stage reached
    failed_stage: FailedStage | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded (or had nothing to do)."""
        return self.status != "failed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(
        cls,
        component: str,
        action: str,
        message: str = "",
        **kwargs: Any,
    ) -> ActionResult:
        """Create a success result."""
        return cls(
            component=component,
            action=action,
            status="ok",
            message=message,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        component: str,
        action: str,
        error: str,
        *,
        failed_stage: FailedStage,
        **kwargs: Any,
    ) -> ActionResult:
        """Create a failure result classified by stage."""
        return cls(
            component=component,
            action=action,
            status="failed",
            error=error,
            failed_stage=failed_stage,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        component: str,
        action: str,
        reason: str = "",
        **kwargs: Any,
    ) -> ActionResult:
        """Create a skip result (already in desired state, or declined)."""
        return cls(
            component=component,
            action=action,
            status="skipped",
            message=reason,
            **kwargs,
        )
