"""Claude Code task and session completion monitor.

Tails Claude Code JSONL transcripts, infers when tasks and sessions have
finished from silence and summary hints, and emits completion and progress
events as NDJSON, console output and desktop notifications.
"""

__version__ = "0.3.0"
