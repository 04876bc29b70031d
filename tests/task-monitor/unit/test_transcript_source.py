"""
Unit tests for transcript parsing and the watchdog-based tailer.
"""

import asyncio
import json
import logging
from pathlib import Path

import pytest

from claude_task_monitor.jsonl_source import (
    TranscriptTailer,
    find_transcripts,
    get_default_projects_dir,
    parse_line,
    read_events,
)
from claude_task_monitor.models import AssistantTurn, UserTurn


async def wait_for_count(received: list, count: int, timeout: float = 3.0) -> None:
    """Poll until ``received`` has ``count`` items or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(received) < count and loop.time() < deadline:
        await asyncio.sleep(0.02)


class TestParseLine:
    """Single line parsing and malformed input."""

    def test_valid_line(self, make_record):
        event = parse_line(json.dumps(make_record("user", 0)), "/x/s.jsonl")
        assert isinstance(event, UserTurn)
        assert event.file_path == "/x/s.jsonl"

    def test_blank_line(self):
        assert parse_line("   \n") is None

    def test_invalid_json_dropped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert parse_line("{not json", "/x/s.jsonl") is None
        assert "unparseable" in caplog.text

    def test_non_object_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert parse_line("[1, 2]") is None
        assert "non-object" in caplog.text

    def test_malformed_record_dropped(self, make_record, caplog):
        record = make_record("assistant", 0)
        record["timestamp"] = "yesterday"
        with caplog.at_level(logging.WARNING):
            assert parse_line(json.dumps(record)) is None
        assert "malformed assistant" in caplog.text

    def test_untracked_type_ignored(self, make_record):
        assert parse_line(json.dumps(make_record("system", 0))) is None


class TestFiles:
    """Whole-file helpers."""

    def test_read_events_skips_bad_lines(self, write_transcript, make_record):
        path = write_transcript(
            [
                make_record("user", 0),
                "garbage",
                make_record("assistant", 10, costUSD=0.01),
                make_record("system", 20),
            ]
        )

        events = list(read_events(path))

        assert [type(e) for e in events] == [UserTurn, AssistantTurn]
        assert all(e.file_path == str(path) for e in events)

    def test_find_transcripts(self, write_transcript, make_record, tmp_path):
        first = write_transcript([make_record("user", 0)], folder="-a", name="1.jsonl")
        second = write_transcript([make_record("user", 0)], folder="-b", name="2.jsonl")
        (tmp_path / "projects" / "-a" / "notes.txt").write_text("x")

        assert find_transcripts(tmp_path / "projects") == [first, second]
        assert find_transcripts(first) == [first]
        assert find_transcripts(tmp_path / "missing") == []

    def test_default_projects_dir_honours_config_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(tmp_path))
        assert get_default_projects_dir() == tmp_path / "projects"

    def test_default_projects_dir_home(self, monkeypatch):
        monkeypatch.delenv("CLAUDE_CONFIG_DIR", raising=False)
        assert get_default_projects_dir() == Path.home() / ".claude" / "projects"


class TestReadNewLines:
    """Offset tracking without a running observer."""

    def test_reads_only_appended_complete_lines(self, write_transcript, make_record):
        path = write_transcript([make_record("user", 0), make_record("assistant", 10)])
        received = []
        tailer = TranscriptTailer(path.parent.parent, on_event=received.append)

        assert tailer.read_new_lines(path) == 2
        assert tailer.read_new_lines(path) == 0

        line = json.dumps(make_record("assistant", 20))
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line[:25])
        assert tailer.read_new_lines(path) == 0

        with path.open("a", encoding="utf-8") as handle:
            handle.write(line[25:] + "\n")
        assert tailer.read_new_lines(path) == 1

        assert [e.uuid for e in received] == ["user-0", "assistant-10", "assistant-20"]

    def test_truncated_file_read_from_start(self, write_transcript, make_record):
        path = write_transcript(
            [make_record("user", 0), make_record("assistant", 10), make_record("user", 20)]
        )
        received = []
        tailer = TranscriptTailer(path.parent.parent, on_event=received.append)
        tailer.read_new_lines(path)

        path.write_text(json.dumps(make_record("user", 99)) + "\n", encoding="utf-8")

        assert tailer.read_new_lines(path) == 1
        assert received[-1].uuid == "user-99"

    def test_deleted_file(self, write_transcript, make_record):
        path = write_transcript([make_record("user", 0)])
        tailer = TranscriptTailer(path.parent.parent, on_event=lambda event: None)
        path.unlink()

        assert tailer.read_new_lines(path) == 0


class TestTranscriptTailer:
    """Live watching through watchdog."""

    @pytest.mark.asyncio
    async def test_include_existing_replays_current_contents(
        self, write_transcript, make_record, tmp_path
    ):
        write_transcript([make_record("user", 0), make_record("assistant", 10)])
        received = []
        tailer = TranscriptTailer(
            tmp_path / "projects", on_event=received.append, include_existing=True
        )

        await tailer.start()
        try:
            await wait_for_count(received, 2)
        finally:
            await tailer.stop()

        assert [e.uuid for e in received] == ["user-0", "assistant-10"]

    @pytest.mark.asyncio
    async def test_follows_appended_lines(self, write_transcript, make_record, tmp_path):
        path = write_transcript([make_record("user", 0)])
        received = []
        tailer = TranscriptTailer(tmp_path / "projects", on_event=received.append)

        await tailer.start()
        try:
            # Existing content is skipped
            await asyncio.sleep(0.1)
            assert received == []

            write_transcript([make_record("assistant", 10, costUSD=0.02)])
            await wait_for_count(received, 1)
        finally:
            await tailer.stop()

        assert len(received) == 1
        assert received[0].cost_usd == 0.02
        assert received[0].file_path == str(path)

    @pytest.mark.asyncio
    async def test_picks_up_new_transcript_files(self, make_record, tmp_path, write_transcript):
        root = tmp_path / "projects"
        received = []
        tailer = TranscriptTailer(root, on_event=received.append)

        await tailer.start()
        try:
            (root / "-new").mkdir()
            await asyncio.sleep(0.2)
            write_transcript([make_record("user", 0, session_id="new")], folder="-new")
            await wait_for_count(received, 1)
        finally:
            await tailer.stop()

        assert [e.session_id for e in received] == ["new"]
