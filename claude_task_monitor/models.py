"""Pydantic models for the Claude Code task monitor.

Input side: the three conversation event variants parsed from Claude Code
JSONL transcript records.

Output side: the closed set of events the completion engine emits
(TaskCompleted, TaskProgress, SessionCompleted), tagged by ``type`` so
consumers can dispatch on it and the NDJSON stream is self-describing.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

UNKNOWN_SESSION = "unknown"
DEFAULT_SUMMARY_TEXT = "Task completed"


class EventType(str, Enum):
    """Record types the engine understands."""

    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"


class CompletionType(str, Enum):
    """Confidence level of a task completion."""

    IMMEDIATE = "immediate"
    DELAYED = "delayed"


class CompletionReason(str, Enum):
    """Why a session was closed."""

    SUMMARY = "summary"
    INACTIVITY = "inactivity"
    MANUAL = "manual"


class TokenUsage(BaseModel):
    """Token counts reported on an assistant turn."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_read_input_tokens: int = Field(default=0, ge=0)
    cache_creation_input_tokens: int = Field(default=0, ge=0)

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_zero(cls, value):
        return 0 if value is None else value


# =============================================================================
# Input events
# =============================================================================


class ConversationEvent(BaseModel):
    """Fields shared by every conversation event.

    ``cwd`` and ``file_path`` are context hints used once, when a session is
    first seen, to derive its project label.
    """

    session_id: str = Field(default=UNKNOWN_SESSION, description="Claude Code sessionId")
    timestamp: datetime = Field(description="Event time taken from the record itself")
    uuid: str = Field(default="", description="Record uuid, used as the causal event id")
    cwd: Optional[str] = Field(default=None, description="Working directory of the turn")
    file_path: Optional[str] = Field(
        default=None, description="Transcript file the record was read from"
    )

    @field_validator("session_id", mode="before")
    @classmethod
    def _default_session(cls, value):
        return value or UNKNOWN_SESSION

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    class Config:
        """Pydantic configuration."""

        frozen = True


class UserTurn(ConversationEvent):
    """A user prompt; starts a new task window."""

    type: Literal["user"] = "user"


class AssistantTurn(ConversationEvent):
    """An assistant response; extends the current task."""

    type: Literal["assistant"] = "assistant"
    cost_usd: Optional[float] = Field(default=None, description="Explicit cost if recorded")
    duration_ms: Optional[float] = Field(default=None)
    usage: Optional[TokenUsage] = Field(default=None)
    model: Optional[str] = Field(default=None, description="Model id from message.model")


class SessionSummary(ConversationEvent):
    """A summary record; strong hint that the session is over."""

    type: Literal["summary"] = "summary"
    summary: Optional[str] = Field(default=None)


Event = Union[UserTurn, AssistantTurn, SessionSummary]


# =============================================================================
# Emitted events
# =============================================================================


class TaskCompleted(BaseModel):
    """A task is considered finished.

    Both an ``immediate`` and a ``delayed`` completion may be emitted for the
    same task; consumers wanting a single signal should use ``delayed``.
    """

    type: Literal["task-completed"] = "task-completed"
    session_id: str
    project_name: str
    task_cost: float
    task_duration_ms: int
    assistant_message_count: int
    last_message_uuid: str
    timestamp: datetime = Field(description="Time of the task's last assistant turn")
    completion_type: CompletionType

    class Config:
        """Pydantic configuration."""

        use_enum_values = True


class TaskProgress(BaseModel):
    """Interim report for a long or expensive task still in progress."""

    type: Literal["task-progress"] = "task-progress"
    session_id: str
    project_name: str
    current_cost: float
    current_duration_ms: int
    assistant_message_count: int
    is_active: bool = True
    estimated_completion_ms: Optional[int] = Field(
        default=None,
        description="Best-effort guess of remaining time; a hint, not a guarantee",
    )


class SessionCompleted(BaseModel):
    """A session has ended and was removed from tracking."""

    type: Literal["session-completed"] = "session-completed"
    session_id: str
    project_name: str
    summary: str
    total_cost: float
    message_count: int
    duration_ms: int
    start_time: datetime
    end_time: datetime
    last_message_uuid: str
    reason: CompletionReason

    class Config:
        """Pydantic configuration."""

        use_enum_values = True


EngineEvent = Annotated[
    Union[TaskCompleted, TaskProgress, SessionCompleted],
    Field(discriminator="type"),
]


class SessionInfo(BaseModel):
    """Read-only diagnostic snapshot of a tracked session."""

    session_id: str
    project_name: str
    total_cost: float
    message_count: int
    has_summary: bool
    last_activity: datetime
    duration_ms: int
    task_in_progress: bool
    task_cost: float
    task_assistant_count: int


# =============================================================================
# Record parsing
# =============================================================================


def _message_dict(record: dict) -> dict:
    message = record.get("message")
    return message if isinstance(message, dict) else {}


def parse_event(record: dict, file_path: Optional[str] = None) -> Optional[Event]:
    """Build a typed event from one decoded JSONL record.

    Returns None for record types the engine does not track. Raises
    pydantic.ValidationError (a ValueError) for malformed records.
    """
    record_type = record.get("type")
    common = {
        "session_id": record.get("sessionId"),
        "timestamp": record.get("timestamp"),
        "uuid": record.get("uuid") or record.get("leafUuid") or "",
        "cwd": record.get("cwd"),
        "file_path": file_path,
    }

    if record_type == EventType.USER.value:
        return UserTurn(**common)

    if record_type == EventType.ASSISTANT.value:
        message = _message_dict(record)
        usage = record.get("usage") or message.get("usage")
        return AssistantTurn(
            **common,
            cost_usd=record.get("costUSD"),
            duration_ms=record.get("durationMs"),
            usage=usage,
            model=message.get("model"),
        )

    if record_type == EventType.SUMMARY.value:
        # Claude Code writes summary records without a timestamp
        if common["timestamp"] is None:
            common["timestamp"] = datetime.now(timezone.utc)
        return SessionSummary(**common, summary=record.get("summary"))

    return None
