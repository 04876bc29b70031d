"""Claude Code transcript source.

Claude Code appends one JSON record per line to
``~/.claude/projects/<project-folder>/<session>.jsonl``. This module turns
those lines into typed events:

    read_events()       - whole file, for replay
    TranscriptTailer    - live, follows appended lines using watchdog

Malformed lines are logged and dropped here so the engine only ever sees
well-formed events. File offsets live in memory only; a restart starts from
the current end of each file.
"""

import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import Event, parse_event

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = ".jsonl"


def get_default_projects_dir() -> Path:
    """Claude Code's transcript directory (honours CLAUDE_CONFIG_DIR)."""
    config_dir = os.environ.get("CLAUDE_CONFIG_DIR")
    base = Path(config_dir) if config_dir else Path.home() / ".claude"
    return base / "projects"


def parse_line(line: str, file_path: Optional[str] = None) -> Optional[Event]:
    """Parse one transcript line.

    Returns None for blank lines, untracked record types and malformed
    input (logged as a warning).
    """
    line = line.strip()
    if not line:
        return None

    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning(f"Dropping unparseable line from {file_path}: {e} ({line[:80]!r})")
        return None

    if not isinstance(record, dict):
        logger.warning(f"Dropping non-object record from {file_path}: {line[:80]!r}")
        return None

    try:
        return parse_event(record, file_path=file_path)
    except ValueError as e:
        logger.warning(
            f"Dropping malformed {record.get('type', 'untyped')} record "
            f"{record.get('uuid', '')} from {file_path}: {e}"
        )
        return None


def read_events(path: Path) -> Iterator[Event]:
    """Yield every well-formed event in a transcript file."""
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            event = parse_line(line, str(path))
            if event is not None:
                yield event


def find_transcripts(root: Path) -> list[Path]:
    """All transcript files below ``root`` (or ``root`` itself if a file)."""
    if root.is_file():
        return [root]
    if not root.is_dir():
        return []
    return sorted(root.rglob(f"*{TRANSCRIPT_SUFFIX}"))


class _TranscriptHandler(FileSystemEventHandler):
    """Forwards created/modified transcript files to the tailer."""

    def __init__(self, tailer: "TranscriptTailer") -> None:
        super().__init__()
        self.tailer = tailer

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = Path(os.fsdecode(event.src_path))
        if path.suffix != TRANSCRIPT_SUFFIX:
            return
        self.tailer.read_new_lines(path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)


class TranscriptTailer:
    """Follows transcript files and hands new events to the event loop.

    File reads happen on the watchdog observer thread; each parsed event is
    delivered with ``loop.call_soon_threadsafe`` so ``on_event`` always runs
    on the loop thread.
    """

    def __init__(
        self,
        root: Path,
        on_event: Callable[[Event], None],
        include_existing: bool = False,
    ) -> None:
        """Initialize the tailer.

        Args:
            root: Directory watched recursively for *.jsonl files
            on_event: Called on the event loop for every parsed event
            include_existing: Replay existing file contents on start instead
                of starting from their current end
        """
        self.root = root
        self.on_event = on_event
        self.include_existing = include_existing

        self._offsets: dict[Path, int] = {}
        self._offsets_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Optional[Observer] = None

    async def start(self) -> None:
        """Record starting offsets and begin watching."""
        self._loop = asyncio.get_running_loop()
        self.root.mkdir(parents=True, exist_ok=True)

        existing = find_transcripts(self.root)
        for path in existing:
            if self.include_existing:
                self._offsets[path] = 0
            else:
                self._offsets[path] = path.stat().st_size
        logger.info(f"Tracking {len(existing)} transcript files under {self.root}")

        if self.include_existing:
            for path in existing:
                self.read_new_lines(path)

        self._observer = Observer()
        self._observer.schedule(_TranscriptHandler(self), str(self.root), recursive=True)
        self._observer.start()
        logger.info("Transcript watcher started")

    async def stop(self) -> None:
        """Stop the watchdog observer."""
        if self._observer is None:
            return
        self._observer.stop()
        await asyncio.to_thread(self._observer.join, 5.0)
        self._observer = None
        logger.info("Transcript watcher stopped")

    def read_new_lines(self, path: Path) -> int:
        """Parse lines appended to ``path`` since the last read.

        A trailing partial line is left for the next read. Returns the number
        of events delivered.
        """
        with self._offsets_lock:
            offset = self._offsets.get(path, 0)
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                self._offsets.pop(path, None)
                return 0

            if size < offset:
                logger.info(f"{path} was truncated, reading from the start")
                offset = 0
            if size == offset:
                return 0

            with path.open("rb") as handle:
                handle.seek(offset)
                chunk = handle.read(size - offset)

            end = chunk.rfind(b"\n")
            if end < 0:
                return 0
            self._offsets[path] = offset + end + 1

        delivered = 0
        for raw in chunk[: end + 1].splitlines():
            event = parse_line(raw.decode("utf-8", errors="replace"), str(path))
            if event is not None:
                self._deliver(event)
                delivered += 1
        return delivered

    def _deliver(self, event: Event) -> None:
        if self._loop is None:
            self.on_event(event)
        else:
            self._loop.call_soon_threadsafe(self.on_event, event)
