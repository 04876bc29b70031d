"""Completion engine configuration.

All durations are milliseconds, costs are USD.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CompletionConfig(BaseModel):
    """Timeouts and thresholds for task/session completion detection."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    inactivity_timeout_ms: float = Field(
        default=300_000, gt=0, description="Silence before a session is considered over"
    )
    summary_message_timeout_ms: float = Field(
        default=5_000, gt=0, description="Grace period after a summary record"
    )
    task_completion_timeout_ms: float = Field(
        default=3_000, gt=0, description="Silence after an assistant turn for immediate completion"
    )
    delayed_task_completion_timeout_ms: float = Field(
        default=30_000, gt=0, description="Silence after an assistant turn for delayed completion"
    )
    min_task_cost: float = Field(default=0.01, ge=0, description="Smallest task cost reported")
    min_task_messages: int = Field(default=1, ge=0, description="Fewest assistant turns reported")
    enable_progress_notifications: bool = Field(default=True)
    progress_check_interval_ms: float = Field(
        default=10_000, gt=0, description="Progress check period and minimum spacing"
    )
    min_progress_cost: float = Field(default=0.02, ge=0)
    min_progress_duration_ms: float = Field(default=15_000, ge=0)

    def merged(self, **changes: Any) -> "CompletionConfig":
        """Return a validated copy with ``changes`` applied."""
        return CompletionConfig.model_validate({**self.model_dump(), **changes})
