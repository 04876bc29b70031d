"""Offline replay of transcripts through the completion engine.

Events are fed in timestamp order on a ManualScheduler whose clock jumps to
each event's timestamp, so timers fire exactly as they would have live but
without waiting. Useful for tuning timeouts against real transcripts.
"""

import logging
from operator import attrgetter
from pathlib import Path
from typing import Iterable

from .clock import ManualScheduler
from .completion_engine import CompletionEngine, Subscriber
from .config import CompletionConfig
from .jsonl_source import read_events
from .models import Event

logger = logging.getLogger(__name__)


def replay_events(
    events: Iterable[Event],
    config: CompletionConfig,
    consumers: Iterable[Subscriber] = (),
) -> int:
    """Run events through a fresh engine in virtual time.

    After the last event the clock runs past every timeout so all pending
    tasks and sessions complete. Returns the number of events replayed.
    """
    ordered = sorted(events, key=attrgetter("timestamp"))
    if not ordered:
        return 0

    scheduler = ManualScheduler(start=ordered[0].timestamp)
    engine = CompletionEngine(scheduler, config=config)
    for consumer in consumers:
        engine.subscribe(consumer)

    for event in ordered:
        scheduler.advance_to(event.timestamp)
        engine.process_event(event)

    scheduler.advance(
        max(
            config.inactivity_timeout_ms,
            config.delayed_task_completion_timeout_ms,
            config.summary_message_timeout_ms,
        )
    )
    # Anything still open (none expected after the final advance)
    engine.complete_all_sessions()
    return len(ordered)


def replay_files(
    paths: Iterable[Path],
    config: CompletionConfig,
    consumers: Iterable[Subscriber] = (),
) -> int:
    """Replay every event from the given transcript files."""
    events: list[Event] = []
    for path in paths:
        file_events = list(read_events(path))
        logger.info(f"Loaded {len(file_events)} events from {path}")
        events.extend(file_events)
    return replay_events(events, config, consumers)
