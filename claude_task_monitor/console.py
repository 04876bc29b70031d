"""Rich console rendering of engine events."""

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import (
    CompletionType,
    EngineEvent,
    SessionCompleted,
    TaskCompleted,
    TaskProgress,
)
from .notifier import format_cost, format_duration


class ConsoleRenderer:
    """Engine consumer printing one line (or panel) per event.

    Writes to stderr by default so NDJSON on stdout stays machine-readable.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        show_immediate: bool = True,
        show_progress: bool = True,
    ) -> None:
        """Initialize the renderer.

        Args:
            console: Optional Rich Console instance
            show_immediate: Print immediate (low-confidence) task completions
            show_progress: Print progress reports
        """
        self.console = console or Console(stderr=True)
        self.show_immediate = show_immediate
        self.show_progress = show_progress

    def __call__(self, event: EngineEvent) -> None:
        if isinstance(event, TaskCompleted):
            self._render_task(event)
        elif isinstance(event, TaskProgress):
            self._render_progress(event)
        elif isinstance(event, SessionCompleted):
            self._render_session(event)

    @staticmethod
    def _time(value: datetime) -> str:
        return value.astimezone().strftime("%H:%M:%S")

    def _render_task(self, event: TaskCompleted) -> None:
        immediate = event.completion_type == CompletionType.IMMEDIATE
        if immediate and not self.show_immediate:
            return

        line = Text()
        line.append(f"{self._time(event.timestamp)} ", style="dim")
        line.append("✓ task ", style="yellow" if immediate else "bold green")
        line.append(f"{event.project_name} ", style="magenta")
        line.append(format_cost(event.task_cost), style="bold")
        line.append(
            f"  {format_duration(event.task_duration_ms)}"
            f"  {event.assistant_message_count} responses"
        )
        line.append(f"  ({event.completion_type})", style="dim")
        self.console.print(line)

    def _render_progress(self, event: TaskProgress) -> None:
        if not self.show_progress:
            return

        line = Text()
        line.append("… working ", style="cyan")
        line.append(f"{event.project_name} ", style="magenta")
        line.append(format_cost(event.current_cost), style="bold")
        line.append(f"  {format_duration(event.current_duration_ms)}")
        if event.estimated_completion_ms is not None:
            line.append(
                f"  ~{format_duration(event.estimated_completion_ms)} left", style="dim"
            )
        self.console.print(line)

    def _render_session(self, event: SessionCompleted) -> None:
        table = Table.grid(padding=(0, 2))
        table.add_column(style="dim")
        table.add_column()
        table.add_row("Summary", event.summary)
        table.add_row("Cost", format_cost(event.total_cost))
        table.add_row("Duration", format_duration(event.duration_ms))
        table.add_row("Messages", str(event.message_count))
        table.add_row(
            "Span", f"{self._time(event.start_time)} → {self._time(event.end_time)}"
        )
        table.add_row("Ended by", str(event.reason))

        self.console.print(
            Panel(
                table,
                title=f"[bold]Session completed[/bold] · {event.project_name}",
                border_style="blue",
                expand=False,
            )
        )
