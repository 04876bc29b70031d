#!/usr/bin/env python3
"""CLI entry point for the Claude Code task monitor.

Watches Claude Code transcripts and reports finished tasks and sessions, or
replays existing transcripts in virtual time.

Usage:
    python -m claude_task_monitor [OPTIONS]
    claude-task-monitor [OPTIONS]

Options:
    --projects-dir PATH       Transcript directory (default: ~/.claude/projects)
    --replay PATH             Replay a transcript file or directory and exit
    --task-timeout SECONDS    Silence before an immediate task completion (default: 3)
    --inactivity-timeout SECS Silence before a session ends (default: 300)
    --no-notifications        Disable desktop notifications
    --pipe PATH               Write NDJSON to named pipe instead of stdout
    --verbose                 Enable verbose logging
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from . import __version__


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="claude-task-monitor",
        description="Claude Code task monitor - detect finished tasks and sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Watch live transcripts with default settings
    claude-task-monitor

    # Faster task completion, NDJSON to a named pipe for EWW
    claude-task-monitor --task-timeout 2 --pipe $XDG_RUNTIME_DIR/claude-task-monitor.pipe

    # Tune timeouts against an old session
    claude-task-monitor --replay ~/.claude/projects/-home-me-src-api/abc.jsonl

Environment Variables:
    CLAUDE_CONFIG_DIR                    Claude Code config dir (projects/ below it)
    CLAUDE_MONITOR_TASK_TIMEOUT          Override task timeout (3 seconds)
    CLAUDE_MONITOR_DELAYED_TASK_TIMEOUT  Override delayed task timeout (30 seconds)
    CLAUDE_MONITOR_INACTIVITY_TIMEOUT    Override session inactivity timeout (300 seconds)
    CLAUDE_MONITOR_SUMMARY_TIMEOUT       Override summary grace period (5 seconds)
    CLAUDE_MONITOR_PROGRESS_INTERVAL     Override progress check interval (10 seconds)
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--projects-dir",
        type=Path,
        default=None,
        help="Directory of Claude Code transcripts (default: ~/.claude/projects)",
    )

    parser.add_argument(
        "--include-existing",
        action="store_true",
        help="Process existing transcript contents on start instead of only new lines",
    )

    parser.add_argument(
        "--replay",
        type=Path,
        default=None,
        metavar="PATH",
        help="Replay a transcript file or directory in virtual time and exit",
    )

    timing = parser.add_argument_group("timing (seconds)")
    timing.add_argument(
        "--task-timeout",
        type=float,
        default=_env_float("CLAUDE_MONITOR_TASK_TIMEOUT", 3),
        help="Silence after an assistant turn before an immediate task completion (default: 3)",
    )
    timing.add_argument(
        "--delayed-task-timeout",
        type=float,
        default=_env_float("CLAUDE_MONITOR_DELAYED_TASK_TIMEOUT", 30),
        help="Silence before the authoritative delayed task completion (default: 30)",
    )
    timing.add_argument(
        "--inactivity-timeout",
        type=float,
        default=_env_float("CLAUDE_MONITOR_INACTIVITY_TIMEOUT", 300),
        help="Silence before a session is considered over (default: 300)",
    )
    timing.add_argument(
        "--summary-timeout",
        type=float,
        default=_env_float("CLAUDE_MONITOR_SUMMARY_TIMEOUT", 5),
        help="Grace period after a summary record before the session ends (default: 5)",
    )
    timing.add_argument(
        "--progress-interval",
        type=float,
        default=_env_float("CLAUDE_MONITOR_PROGRESS_INTERVAL", 10),
        help="Seconds between progress checks (default: 10)",
    )
    timing.add_argument(
        "--min-progress-duration",
        type=float,
        default=15,
        help="Task age before progress is reported (default: 15)",
    )

    thresholds = parser.add_argument_group("thresholds (USD)")
    thresholds.add_argument(
        "--min-task-cost",
        type=float,
        default=0.01,
        help="Smallest task cost reported (default: 0.01)",
    )
    thresholds.add_argument(
        "--min-task-messages",
        type=int,
        default=1,
        help="Fewest assistant responses for a task to be reported (default: 1)",
    )
    thresholds.add_argument(
        "--min-progress-cost",
        type=float,
        default=0.02,
        help="Task cost before progress is reported (default: 0.02)",
    )

    outputs = parser.add_argument_group("output")
    outputs.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress reports for long tasks",
    )
    outputs.add_argument(
        "--no-notifications",
        action="store_true",
        help="Disable desktop notifications",
    )
    outputs.add_argument(
        "--notify-immediate",
        action="store_true",
        help="Also notify on immediate (low-confidence) task completions",
    )
    outputs.add_argument(
        "--notify-progress",
        action="store_true",
        help="Also notify on progress reports",
    )
    outputs.add_argument(
        "--no-console",
        action="store_true",
        help="Do not render events on stderr",
    )
    outputs.add_argument(
        "--pipe",
        type=Path,
        default=None,
        help="Write NDJSON stream to named pipe (default: stdout)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,  # Log to stderr, JSON output goes to stdout
    )


def build_config(args: argparse.Namespace):
    """Translate CLI seconds into a CompletionConfig (milliseconds)."""
    from .config import CompletionConfig

    return CompletionConfig(
        inactivity_timeout_ms=args.inactivity_timeout * 1000,
        summary_message_timeout_ms=args.summary_timeout * 1000,
        task_completion_timeout_ms=args.task_timeout * 1000,
        delayed_task_completion_timeout_ms=args.delayed_task_timeout * 1000,
        min_task_cost=args.min_task_cost,
        min_task_messages=args.min_task_messages,
        enable_progress_notifications=not args.no_progress,
        progress_check_interval_ms=args.progress_interval * 1000,
        min_progress_cost=args.min_progress_cost,
        min_progress_duration_ms=args.min_progress_duration * 1000,
    )


async def run_replay(args: argparse.Namespace) -> int:
    """Replay transcripts and exit."""
    from .console import ConsoleRenderer
    from .jsonl_source import find_transcripts
    from .output import OutputWriter
    from .replay import replay_files

    logger = logging.getLogger("claude-task-monitor")

    paths = find_transcripts(args.replay)
    if not paths:
        logger.error(f"No transcripts found at {args.replay}")
        return 1

    output = OutputWriter(pipe_path=args.pipe)
    consumers = [output]
    if not args.no_console:
        consumers.append(ConsoleRenderer())

    await output.start()
    try:
        count = replay_files(paths, build_config(args), consumers)
        logger.info(f"Replayed {count} events from {len(paths)} transcripts")
    finally:
        await output.stop()
    return 0


async def main_async(args: argparse.Namespace) -> int:
    """Async main entry point."""
    # Import here to keep --help fast
    from .clock import AsyncioScheduler
    from .completion_engine import CompletionEngine
    from .console import ConsoleRenderer
    from .jsonl_source import TranscriptTailer, get_default_projects_dir
    from .notifier import DesktopNotifier
    from .output import OutputWriter

    logger = logging.getLogger("claude-task-monitor")
    logger.info(f"Starting Claude task monitor v{__version__}")

    config = build_config(args)
    engine = CompletionEngine(AsyncioScheduler(), config=config)

    output = OutputWriter(pipe_path=args.pipe)
    engine.subscribe(output)
    if not args.no_console:
        engine.subscribe(ConsoleRenderer())
    notifier = None
    if not args.no_notifications:
        notifier = DesktopNotifier(
            notify_immediate=args.notify_immediate,
            notify_progress=args.notify_progress,
        )
        engine.subscribe(notifier)

    projects_dir = args.projects_dir or get_default_projects_dir()
    tailer = TranscriptTailer(
        projects_dir,
        on_event=engine.process_event,
        include_existing=args.include_existing,
    )

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def handle_signal(signum: int) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))

    try:
        await output.start()
        await tailer.start()
        logger.info(f"Watching {projects_dir}")

        await shutdown_event.wait()

    except OSError as e:
        logger.error(f"Service error: {e}")
        return 1

    finally:
        logger.info("Shutting down...")
        await tailer.stop()
        # Flush every open session so consumers see a final report
        engine.complete_all_sessions()
        if notifier is not None:
            await notifier.drain()
        await output.stop()

    return 0


def main() -> None:
    """Main entry point."""
    args = parse_args()
    setup_logging(args.verbose)

    try:
        if args.replay is not None:
            exit_code = asyncio.run(run_replay(args))
        else:
            exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
