"""NDJSON output of engine events.

Each TaskCompleted, TaskProgress and SessionCompleted event becomes one JSON
line on stdout or on a named pipe, for status bars and scripts that follow
the stream (e.g. EWW deflisten, ``jq --unbuffered``).

The engine calls consumers synchronously, so OutputWriter only schedules the
write and returns; the blocking write itself runs in a worker thread.
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional, TextIO

from .models import EngineEvent

logger = logging.getLogger(__name__)

# A reader that stops draining the FIFO must not stall the event loop
WRITE_TIMEOUT_SEC = 1.0


def encode_event(event: EngineEvent) -> str:
    """One compact NDJSON line for an engine event."""
    return json.dumps(event.model_dump(mode="json"), separators=(",", ":")) + "\n"


class OutputWriter:
    """NDJSON sink for engine events.

    Writes to a named pipe (FIFO) when ``pipe_path`` is given, otherwise to
    ``stream`` (stdout by default). Lines produced while no pipe reader is
    attached are dropped rather than queued.
    """

    def __init__(
        self, pipe_path: Optional[Path] = None, stream: Optional[TextIO] = None
    ) -> None:
        """Initialize the writer.

        Args:
            pipe_path: Named pipe to create (or reuse) and write to
            stream: Text stream used when no pipe is given (default stdout)
        """
        self.pipe_path = pipe_path
        self._stream = stream
        self._sink: Optional[TextIO] = None
        self._accepting = False
        self._write_lock = asyncio.Lock()
        self._scheduled: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Prepare the sink and begin accepting events."""
        if self.pipe_path is not None:
            self._prepare_fifo(self.pipe_path)
        else:
            self._sink = self._stream or sys.stdout
            logger.info("Writing NDJSON events to stdout")
        self._accepting = True

    async def stop(self) -> None:
        """Wait for scheduled lines, then release the pipe."""
        if self._scheduled:
            await asyncio.gather(*self._scheduled, return_exceptions=True)
        self._accepting = False

        if self.pipe_path is not None and self._sink is not None:
            try:
                self._sink.close()
            except OSError as e:
                logger.debug(f"Closing {self.pipe_path} failed: {e}")
        if self.pipe_path is not None:
            self._sink = None

        logger.info("NDJSON writer stopped")

    def __call__(self, event: EngineEvent) -> None:
        """Engine consumer: schedule the event for writing."""
        task = asyncio.get_running_loop().create_task(self.write_event(event))
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)

    async def write_event(self, event: EngineEvent) -> None:
        """Write one engine event as an NDJSON line."""
        line = encode_event(event)
        async with self._write_lock:
            if not self._accepting:
                return

            sink = self._sink if self.pipe_path is None else self._open_fifo()
            if sink is None:
                logger.debug(f"No sink for {event.type}, dropping it")
                return

            try:
                await asyncio.wait_for(
                    asyncio.to_thread(self._write_line, sink, line), timeout=WRITE_TIMEOUT_SEC
                )
            except asyncio.TimeoutError:
                logger.warning(f"Writing {event.type} timed out, dropping it")
            except BrokenPipeError:
                logger.warning("Pipe reader went away")
                self._sink = None
            except OSError as e:
                logger.error(f"Writing {event.type} failed: {e}")

    @staticmethod
    def _prepare_fifo(path: Path) -> None:
        """Make sure ``path`` is a FIFO, keeping an existing one for its readers."""
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.is_fifo():
            logger.info(f"Reusing named pipe {path}")
            return
        if path.exists():
            path.unlink()
        os.mkfifo(path)
        logger.info(f"Created named pipe {path}")

    def _open_fifo(self) -> Optional[TextIO]:
        if self._sink is not None:
            return self._sink
        try:
            # O_RDWR returns at once even before a reader has opened the FIFO
            fd = os.open(self.pipe_path, os.O_RDWR | os.O_NONBLOCK)
        except OSError as e:
            logger.warning(f"Cannot open {self.pipe_path}: {e}")
            return None
        self._sink = os.fdopen(fd, "w")
        logger.info(f"Opened {self.pipe_path} for writing")
        return self._sink

    @staticmethod
    def _write_line(sink: TextIO, line: str) -> None:
        sink.write(line)
        sink.flush()
