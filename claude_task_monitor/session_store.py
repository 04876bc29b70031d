"""In-memory session arena owned by the completion engine.

Each tracked session is a SessionRecord holding its accumulators, the
current-task sub-state, and one slot per timer kind. Timer callbacks never
capture a record; they carry the session id and look the record up again
when they fire, so a session removed in the meantime is a plain miss.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .clock import TimerHandle


class TimerKind(str, Enum):
    """Timer slots a session can have armed."""

    INACTIVITY = "inactivity"
    SUMMARY_GRACE = "summary_grace"
    TASK_IMMEDIATE = "task_immediate"
    TASK_DELAYED = "task_delayed"
    PROGRESS = "progress"


# Timers re-armed (or dropped) on every incoming event. The progress interval
# is owned by the task and survives turns within it.
EVENT_SCOPED_TIMERS = (
    TimerKind.INACTIVITY,
    TimerKind.SUMMARY_GRACE,
    TimerKind.TASK_IMMEDIATE,
    TimerKind.TASK_DELAYED,
)


@dataclass
class TaskState:
    """The session's current task: one user request and its replies."""

    started_at: Optional[datetime] = None
    cost: float = 0.0
    assistant_count: int = 0
    last_assistant_at: Optional[datetime] = None
    in_progress: bool = False
    last_progress_notified_at: Optional[datetime] = None

    def reset(self, started_at: Optional[datetime] = None) -> None:
        self.started_at = started_at
        self.cost = 0.0
        self.assistant_count = 0
        self.last_assistant_at = None
        self.in_progress = False
        self.last_progress_notified_at = None


@dataclass
class SessionRecord:
    """Mutable state for one tracked session."""

    session_id: str
    project_label: str
    started_at: datetime
    last_activity_at: datetime
    total_cost: float = 0.0
    event_count: int = 0
    user_count: int = 0
    assistant_count: int = 0
    has_summary: bool = False
    summary_text: Optional[str] = None
    last_event_id: Optional[str] = None
    task: TaskState = field(default_factory=TaskState)
    timers: dict[TimerKind, TimerHandle] = field(default_factory=dict)

    def arm(self, kind: TimerKind, handle: TimerHandle) -> None:
        """Store a timer, cancelling any previous timer of the same kind."""
        self.cancel(kind)
        self.timers[kind] = handle

    def cancel(self, *kinds: TimerKind) -> None:
        for kind in kinds:
            handle = self.timers.pop(kind, None)
            if handle is not None:
                handle.cancel()

    def cancel_all(self) -> None:
        self.cancel(*list(self.timers))

    def is_armed(self, kind: TimerKind) -> bool:
        return kind in self.timers

    def fired(self, kind: TimerKind) -> None:
        """Forget a one-shot timer that has just run."""
        self.timers.pop(kind, None)


class SessionStore:
    """Mapping from session id to SessionRecord."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def create(
        self, session_id: str, project_label: str, timestamp: datetime
    ) -> SessionRecord:
        if session_id in self._sessions:
            raise KeyError(f"session {session_id} already tracked")
        record = SessionRecord(
            session_id=session_id,
            project_label=project_label,
            started_at=timestamp,
            last_activity_at=timestamp,
        )
        self._sessions[session_id] = record
        return record

    def remove(self, session_id: str) -> Optional[SessionRecord]:
        """Drop a session, cancelling whatever timers it still holds."""
        record = self._sessions.pop(session_id, None)
        if record is not None:
            record.cancel_all()
        return record

    def ids(self) -> list[str]:
        """Snapshot of tracked session ids."""
        return list(self._sessions)
