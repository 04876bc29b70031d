"""Desktop notifications for completed tasks and sessions.

Uses libnotify's notify-send. Only the authoritative (delayed) task
completion and session completion notify by default; immediate completions
and progress reports are opt-in since they fire far more often.
"""

import asyncio
import logging
import shutil
from typing import Optional

from .models import (
    CompletionType,
    EngineEvent,
    SessionCompleted,
    TaskCompleted,
    TaskProgress,
)

logger = logging.getLogger(__name__)

APP_NAME = "Claude Task Monitor"


def format_cost(cost: float) -> str:
    """Format a USD amount with precision that suits its size."""
    if cost >= 10:
        return f"${cost:.2f}"
    if cost >= 1:
        return f"${cost:.3f}"
    return f"${cost:.4f}"


def format_duration(duration_ms: float) -> str:
    """Format milliseconds as "45s", "3m 20s" or "1h 5m"."""
    seconds = int(duration_ms // 1000)
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def build_notification(
    event: EngineEvent,
    notify_immediate: bool = False,
    notify_progress: bool = False,
) -> Optional[tuple[str, str]]:
    """Return (title, body) for an event, or None if it should not notify."""
    if isinstance(event, TaskCompleted):
        if event.completion_type == CompletionType.IMMEDIATE and not notify_immediate:
            return None
        title = f"Task completed · {event.project_name}"
        body = (
            f"{format_cost(event.task_cost)} · {format_duration(event.task_duration_ms)} · "
            f"{event.assistant_message_count} responses"
        )
        return title, body

    if isinstance(event, TaskProgress):
        if not notify_progress:
            return None
        title = f"Task in progress · {event.project_name}"
        body = f"{format_cost(event.current_cost)} · {format_duration(event.current_duration_ms)}"
        if event.estimated_completion_ms is not None:
            body += f" · ~{format_duration(event.estimated_completion_ms)} left"
        return title, body

    if isinstance(event, SessionCompleted):
        title = f"Session ended · {event.project_name}"
        body = (
            f"{event.summary}\n"
            f"{format_cost(event.total_cost)} · {format_duration(event.duration_ms)}"
        )
        return title, body

    return None


async def send_notification(title: str, body: str) -> None:
    """Send a desktop notification via notify-send.

    No --action flag: it blocks until the user interacts.
    """
    notify_send = shutil.which("notify-send")
    if not notify_send:
        logger.warning("notify-send not found, skipping notification")
        return

    cmd = [
        notify_send,
        f"--app-name={APP_NAME}",
        "--urgency=normal",
        title,
        body,
    ]

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await process.wait()
        logger.debug(f"Sent notification: {title}")
    except OSError as e:
        logger.error(f"Error sending notification: {e}")


class DesktopNotifier:
    """Engine consumer that turns events into desktop notifications."""

    def __init__(self, notify_immediate: bool = False, notify_progress: bool = False) -> None:
        self.notify_immediate = notify_immediate
        self.notify_progress = notify_progress
        self._pending: set[asyncio.Task] = set()

    def __call__(self, event: EngineEvent) -> None:
        message = build_notification(event, self.notify_immediate, self.notify_progress)
        if message is None:
            return
        task = asyncio.get_running_loop().create_task(send_notification(*message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for notifications already handed to notify-send."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
