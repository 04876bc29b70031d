"""Task and session completion engine.

Claude Code never writes a "done" marker, so completion is inferred:

    Task:     user turn → assistant turns → silence
              IMMEDIATE after task_completion_timeout_ms of silence (fast hint)
              DELAYED   after delayed_task_completion_timeout_ms (authoritative)
              A new user turn silently discards an unfinished task.

    Session:  any event (re)arms the inactivity timer
              summary record arms a short grace timer instead
              inactivity / grace expiry / manual flush → SessionCompleted

Every event cancels the session's event-scoped timers before re-arming them.
The progress interval lives as long as the task it watches.

The engine is synchronous and single-threaded. Timer callbacks receive the
session id and re-fetch the record, so a timer outliving its session or task
is a no-op rather than an error.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from .clock import Scheduler
from .config import CompletionConfig
from .models import (
    DEFAULT_SUMMARY_TEXT,
    AssistantTurn,
    CompletionReason,
    CompletionType,
    EngineEvent,
    Event,
    SessionCompleted,
    SessionInfo,
    SessionSummary,
    TaskCompleted,
    TaskProgress,
    UserTurn,
)
from .pricing import CostResolver, resolve_cost
from .project import derive_project_label
from .session_store import (
    EVENT_SCOPED_TIMERS,
    SessionRecord,
    SessionStore,
    TaskState,
    TimerKind,
)

logger = logging.getLogger(__name__)

Subscriber = Callable[[EngineEvent], None]

# Assumed spacing between assistant turns when a task has only one
DEFAULT_MESSAGE_INTERVAL_MS = 5_000.0
# Upper bound of the "about to finish" estimate
SHORT_COMPLETION_ESTIMATE_MS = 5_000.0


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


class CompletionEngine:
    """Infers task and session completion from a conversation event stream.

    Consumers register with subscribe() and receive TaskCompleted,
    TaskProgress and SessionCompleted events synchronously, from inside
    process_event() or a timer callback. Consumers doing I/O must hand the
    work off (e.g. asyncio.create_task) instead of blocking.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        config: Optional[CompletionConfig] = None,
        cost_resolver: Optional[CostResolver] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            scheduler: Clock and timer capability
            config: Timeouts and thresholds (defaults if omitted)
            cost_resolver: Turns an assistant turn into USD (pricing.resolve_cost)
        """
        self.scheduler = scheduler
        self.config = config or CompletionConfig()
        self.cost_resolver = cost_resolver or resolve_cost
        self._store = SessionStore()
        self._subscribers: list[Subscriber] = []

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a consumer. Returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: EngineEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Consumer {callback!r} failed handling {event.type}")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def process_event(self, event: Event) -> None:
        """Apply one conversation event to its session and re-arm timers."""
        session_id = event.session_id
        session = self._store.get(session_id)
        if session is None:
            project = derive_project_label(event.cwd, event.file_path)
            session = self._store.create(session_id, project, event.timestamp)
            logger.info(f"New session {session_id} for project {project}")

        session.last_activity_at = event.timestamp
        session.event_count += 1
        session.last_event_id = event.uuid
        session.cancel(*EVENT_SCOPED_TIMERS)

        if isinstance(event, UserTurn):
            self._on_user_turn(session, event)
        elif isinstance(event, AssistantTurn):
            self._on_assistant_turn(session, event)
        elif isinstance(event, SessionSummary):
            self._on_summary(session, event)
            # A summary is a stronger signal than silence; no inactivity timer
            return

        session.arm(
            TimerKind.INACTIVITY,
            self.scheduler.call_later(
                self.config.inactivity_timeout_ms,
                self._on_session_timer,
                session_id,
                TimerKind.INACTIVITY,
                CompletionReason.INACTIVITY,
            ),
        )

    def _on_user_turn(self, session: SessionRecord, event: UserTurn) -> None:
        session.user_count += 1
        task = session.task
        if task.assistant_count > 0:
            logger.debug(
                f"Session {session.session_id}: task interrupted by new user turn "
                f"(discarding {task.assistant_count} turns, ${task.cost:.4f})"
            )
        session.cancel(TimerKind.PROGRESS)
        task.reset(started_at=event.timestamp)

    def _on_assistant_turn(self, session: SessionRecord, event: AssistantTurn) -> None:
        session.assistant_count += 1
        cost = self._resolve_cost(event)
        session.total_cost += cost

        task = session.task
        if task.started_at is None:
            task.started_at = event.timestamp
        task.cost += cost
        task.assistant_count += 1
        task.last_assistant_at = event.timestamp
        task.in_progress = True

        session_id = session.session_id
        session.arm(
            TimerKind.TASK_IMMEDIATE,
            self.scheduler.call_later(
                self.config.task_completion_timeout_ms,
                self._on_task_timer,
                session_id,
                TimerKind.TASK_IMMEDIATE,
                CompletionType.IMMEDIATE,
            ),
        )
        session.arm(
            TimerKind.TASK_DELAYED,
            self.scheduler.call_later(
                self.config.delayed_task_completion_timeout_ms,
                self._on_task_timer,
                session_id,
                TimerKind.TASK_DELAYED,
                CompletionType.DELAYED,
            ),
        )
        if self.config.enable_progress_notifications and not session.is_armed(
            TimerKind.PROGRESS
        ):
            session.arm(
                TimerKind.PROGRESS,
                self.scheduler.call_every(
                    self.config.progress_check_interval_ms,
                    self._check_progress,
                    session_id,
                ),
            )

        logger.debug(
            f"Session {session_id}: assistant turn ${cost:.4f} "
            f"(task ${task.cost:.4f} over {task.assistant_count} turns)"
        )

    def _on_summary(self, session: SessionRecord, event: SessionSummary) -> None:
        session.has_summary = True
        session.summary_text = event.summary or DEFAULT_SUMMARY_TEXT
        logger.debug(f"Session {session.session_id}: summary {session.summary_text!r}")
        # A closing session reports no progress
        session.cancel(TimerKind.PROGRESS)
        session.arm(
            TimerKind.SUMMARY_GRACE,
            self.scheduler.call_later(
                self.config.summary_message_timeout_ms,
                self._on_session_timer,
                session.session_id,
                TimerKind.SUMMARY_GRACE,
                CompletionReason.SUMMARY,
            ),
        )

    def _resolve_cost(self, event: AssistantTurn) -> float:
        try:
            return float(self.cost_resolver(event) or 0.0)
        except Exception as e:
            logger.warning(f"Cost resolution failed for {event.uuid or 'turn'}: {e}")
            return 0.0

    def _duration_ms(self, session_id: str, start: datetime, end: datetime, what: str) -> int:
        duration = _elapsed_ms(start, end)
        if duration < 0:
            logger.warning(
                f"Session {session_id}: negative {what} ({duration}ms), "
                f"events out of order; reporting 0"
            )
            return 0
        return duration

    # ------------------------------------------------------------------
    # Task completion
    # ------------------------------------------------------------------

    def _on_task_timer(
        self, session_id: str, kind: TimerKind, completion_type: CompletionType
    ) -> None:
        session = self._store.get(session_id)
        if session is None:
            return
        session.fired(kind)
        self._complete_task(session_id, completion_type)

    def _complete_task(self, session_id: str, completion_type: CompletionType) -> None:
        session = self._store.get(session_id)
        if session is None or session.task.assistant_count == 0:
            logger.debug(f"Session {session_id}: no open task for {completion_type.value} completion")
            return

        task = session.task
        if (
            task.cost < self.config.min_task_cost
            or task.assistant_count < self.config.min_task_messages
        ):
            logger.debug(
                f"Session {session_id}: task below thresholds "
                f"(cost ${task.cost:.4f}, {task.assistant_count} turns)"
            )
            session.cancel(TimerKind.TASK_IMMEDIATE, TimerKind.TASK_DELAYED, TimerKind.PROGRESS)
            task.reset()
            return

        last_assistant_at = task.last_assistant_at or session.last_activity_at
        completed = TaskCompleted(
            session_id=session_id,
            project_name=session.project_label,
            task_cost=task.cost,
            task_duration_ms=self._duration_ms(
                session_id, task.started_at or last_assistant_at, last_assistant_at, "task duration"
            ),
            assistant_message_count=task.assistant_count,
            last_message_uuid=session.last_event_id or "",
            timestamp=last_assistant_at,
            completion_type=completion_type,
        )

        if completion_type == CompletionType.IMMEDIATE:
            # Keep the accumulators: the delayed timer re-confirms this task
            session.cancel(TimerKind.TASK_IMMEDIATE, TimerKind.PROGRESS)
            task.in_progress = False
        else:
            session.cancel(TimerKind.TASK_IMMEDIATE, TimerKind.TASK_DELAYED, TimerKind.PROGRESS)
            task.reset()

        logger.info(
            f"Session {session_id}: task completed ({completion_type.value}) "
            f"${completed.task_cost:.4f}, {completed.assistant_message_count} turns, "
            f"{completed.task_duration_ms}ms"
        )
        self._emit(completed)

    # ------------------------------------------------------------------
    # Progress monitoring
    # ------------------------------------------------------------------

    def _check_progress(self, session_id: str) -> None:
        session = self._store.get(session_id)
        if session is None:
            return

        task = session.task
        if not task.in_progress or task.started_at is None:
            session.cancel(TimerKind.PROGRESS)
            return

        now = self.scheduler.now()
        duration = self._duration_ms(session_id, task.started_at, now, "task progress duration")
        if (
            duration < self.config.min_progress_duration_ms
            or task.cost < self.config.min_progress_cost
        ):
            return

        if task.last_progress_notified_at is not None:
            since_last = _elapsed_ms(task.last_progress_notified_at, now)
            if since_last < self.config.progress_check_interval_ms:
                return

        progress = TaskProgress(
            session_id=session_id,
            project_name=session.project_label,
            current_cost=task.cost,
            current_duration_ms=duration,
            assistant_message_count=task.assistant_count,
            is_active=True,
            estimated_completion_ms=self._estimate_completion(task, now),
        )
        task.last_progress_notified_at = now
        logger.debug(
            f"Session {session_id}: task progress ${task.cost:.4f}, "
            f"{task.assistant_count} turns, {duration}ms"
        )
        self._emit(progress)

    def _estimate_completion(self, task: TaskState, now: datetime) -> Optional[int]:
        """Guess the remaining task time.

        This is a heuristic hint only. If the assistant has been quiet for
        more than twice its average turn spacing the task is probably
        wrapping up, so predict a short remainder; otherwise predict two
        more average intervals.
        """
        if task.last_assistant_at is None or task.started_at is None:
            return None

        since_last = max(0, _elapsed_ms(task.last_assistant_at, now))
        if task.assistant_count > 1:
            average = _elapsed_ms(task.started_at, task.last_assistant_at) / task.assistant_count
        else:
            average = DEFAULT_MESSAGE_INTERVAL_MS

        if since_last > average * 2:
            remaining = min(
                SHORT_COMPLETION_ESTIMATE_MS,
                self.config.task_completion_timeout_ms - since_last,
            )
            return max(0, int(remaining))
        return max(0, int(average * 2))

    # ------------------------------------------------------------------
    # Session completion
    # ------------------------------------------------------------------

    def _on_session_timer(
        self, session_id: str, kind: TimerKind, reason: CompletionReason
    ) -> None:
        session = self._store.get(session_id)
        if session is None:
            return
        session.fired(kind)
        self._complete_session(session_id, reason)

    def _complete_session(self, session_id: str, reason: CompletionReason) -> bool:
        session = self._store.remove(session_id)
        if session is None:
            logger.debug(f"Session {session_id}: already completed ({reason.value})")
            return False

        completed = SessionCompleted(
            session_id=session_id,
            project_name=session.project_label,
            summary=session.summary_text or self._generate_summary(session),
            total_cost=session.total_cost,
            message_count=session.event_count,
            duration_ms=self._duration_ms(
                session_id, session.started_at, session.last_activity_at, "session duration"
            ),
            start_time=session.started_at,
            end_time=session.last_activity_at,
            last_message_uuid=session.last_event_id or "",
            reason=reason,
        )
        logger.info(
            f"Session {session_id} completed ({reason.value}): {completed.project_name}, "
            f"${completed.total_cost:.4f}, {completed.message_count} events"
        )
        self._emit(completed)
        return True

    @staticmethod
    def _generate_summary(session: SessionRecord) -> str:
        if session.user_count == 0:
            return "No user interaction"
        if session.assistant_count == 0:
            return "No assistant responses"
        return f"{session.user_count} questions, {session.assistant_count} responses"

    # ------------------------------------------------------------------
    # Manual control and queries
    # ------------------------------------------------------------------

    def complete_all_sessions(self) -> None:
        """Complete every tracked session with reason "manual" (shutdown)."""
        for session_id in self._store.ids():
            self._complete_session(session_id, CompletionReason.MANUAL)

    def complete_session(self, session_id: str) -> bool:
        """Complete one session now. Returns False if it was not tracked."""
        return self._complete_session(session_id, CompletionReason.MANUAL)

    def flush_task(self, session_id: str) -> None:
        """Close the session's open task now, as an authoritative completion."""
        self._complete_task(session_id, CompletionType.DELAYED)

    def get_active_sessions(self) -> list[str]:
        return self._store.ids()

    def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        session = self._store.get(session_id)
        if session is None:
            return None
        return SessionInfo(
            session_id=session_id,
            project_name=session.project_label,
            total_cost=session.total_cost,
            message_count=session.event_count,
            has_summary=session.has_summary,
            last_activity=session.last_activity_at,
            duration_ms=max(0, _elapsed_ms(session.started_at, session.last_activity_at)),
            task_in_progress=session.task.in_progress,
            task_cost=session.task.cost,
            task_assistant_count=session.task.assistant_count,
        )

    def is_session_idle(self, session_id: str) -> bool:
        """True if the session has been silent longer than the inactivity timeout.

        Pure query: does not complete the session.
        """
        session = self._store.get(session_id)
        if session is None:
            return False
        idle_ms = _elapsed_ms(session.last_activity_at, self.scheduler.now())
        return idle_ms > self.config.inactivity_timeout_ms

    def update_config(self, **changes) -> None:
        """Merge new timeouts/thresholds into the active configuration.

        Timers already armed keep their original delays; the next event
        uses the new values.
        """
        self.config = self.config.merged(**changes)
        logger.info(f"Configuration updated: {', '.join(sorted(changes))}")
