"""Pytest configuration and fixtures for the task monitor tests.

Engine tests run on a ManualScheduler: the ``harness`` feeds events at
millisecond offsets from BASE, moving the virtual clock to each event's
timestamp first, and records everything the engine emits.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from claude_task_monitor.clock import ManualScheduler
from claude_task_monitor.completion_engine import CompletionEngine
from claude_task_monitor.config import CompletionConfig
from claude_task_monitor.models import (
    AssistantTurn,
    Event,
    SessionCompleted,
    SessionSummary,
    TaskCompleted,
    TaskProgress,
    UserTurn,
)

BASE = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
DEFAULT_CWD = "/home/dev/src/github.com/acme/api"


def at(offset_ms: float) -> datetime:
    """Absolute time ``offset_ms`` after BASE."""
    return BASE + timedelta(milliseconds=offset_ms)


class EngineHarness:
    """CompletionEngine on virtual time with an event recorder."""

    def __init__(self, config: Optional[CompletionConfig] = None) -> None:
        self.scheduler = ManualScheduler(start=BASE)
        self.engine = CompletionEngine(self.scheduler, config=config)
        self.emitted: list = []
        self.engine.subscribe(self.emitted.append)

    def feed(self, event: Event) -> Event:
        self.scheduler.advance_to(event.timestamp)
        self.engine.process_event(event)
        return event

    def user(self, t_ms: float, session_id: str = "s1", cwd: str = DEFAULT_CWD) -> Event:
        return self.feed(
            UserTurn(session_id=session_id, timestamp=at(t_ms), uuid=f"u-{t_ms:g}", cwd=cwd)
        )

    def assistant(
        self,
        t_ms: float,
        cost: Optional[float] = 0.05,
        session_id: str = "s1",
        cwd: str = DEFAULT_CWD,
        **fields,
    ) -> Event:
        return self.feed(
            AssistantTurn(
                session_id=session_id,
                timestamp=at(t_ms),
                uuid=f"a-{t_ms:g}",
                cwd=cwd,
                cost_usd=cost,
                **fields,
            )
        )

    def summary(self, t_ms: float, text: Optional[str] = "done", session_id: str = "s1") -> Event:
        return self.feed(
            SessionSummary(
                session_id=session_id, timestamp=at(t_ms), uuid=f"sum-{t_ms:g}", summary=text
            )
        )

    def advance_to(self, t_ms: float) -> None:
        self.scheduler.advance_to(at(t_ms))

    @property
    def tasks(self) -> list[TaskCompleted]:
        return [e for e in self.emitted if isinstance(e, TaskCompleted)]

    @property
    def progress(self) -> list[TaskProgress]:
        return [e for e in self.emitted if isinstance(e, TaskProgress)]

    @property
    def sessions(self) -> list[SessionCompleted]:
        return [e for e in self.emitted if isinstance(e, SessionCompleted)]


@pytest.fixture
def make_harness() -> Callable[..., EngineHarness]:
    """Factory for harnesses with config overrides (milliseconds/USD)."""

    def _make(**overrides) -> EngineHarness:
        return EngineHarness(CompletionConfig(**overrides))

    return _make


@pytest.fixture
def harness(make_harness) -> EngineHarness:
    """Harness with default configuration."""
    return make_harness()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler(start=BASE)


@pytest.fixture
def write_transcript(tmp_path):
    """Write JSONL records under a fake ~/.claude/projects tree.

    Returns a function taking (records, folder, name) and returning the path.
    """
    import json

    def _write(records, folder: str = "-home-dev-src-api", name: str = "session.jsonl"):
        directory = tmp_path / "projects" / folder
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        with path.open("a", encoding="utf-8") as handle:
            for record in records:
                line = record if isinstance(record, str) else json.dumps(record)
                handle.write(line + "\n")
        return path

    return _write


def record(record_type: str, t_ms: float, session_id: str = "s1", **fields) -> dict:
    """Claude Code style transcript record."""
    data = {
        "type": record_type,
        "sessionId": session_id,
        "timestamp": at(t_ms).isoformat().replace("+00:00", "Z"),
        "uuid": f"{record_type}-{t_ms:g}",
        "cwd": DEFAULT_CWD,
    }
    data.update(fields)
    return data


@pytest.fixture
def make_record() -> Callable[..., dict]:
    return record


@pytest.fixture
def at_ms() -> Callable[[float], datetime]:
    """Function mapping a millisecond offset to an absolute BASE-relative time."""
    return at
