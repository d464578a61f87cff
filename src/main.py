# src/main.py - v1
"""CLI entry point - detect, resume, sessions, show, cleanup, plan, stats commands.

Usage:
    autodetect detect <directory> --processor package.module:processor
    autodetect resume <session_id> --processor package.module:processor
    autodetect sessions [--incomplete]
    autodetect show <session_id>
    autodetect cleanup
    autodetect plan <directory> [--batch-size N]
    autodetect stats
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import logging
import sys
from pathlib import Path
from typing import Any

from autodetect.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="autodetect",
        description=f"autodetect v{__version__} - resumable batch code-defect detection",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- detect ---
    p_detect = subparsers.add_parser(
        "detect", help="Run defect detection over a directory",
    )
    p_detect.add_argument("directory", type=Path, help="Directory to scan")
    _add_processor_argument(p_detect)
    p_detect.add_argument(
        "--batch-size", type=int, default=None,
        help="Files per batch (default: BATCH_SIZE setting)",
    )
    p_detect.add_argument(
        "--concurrency", type=int, default=None,
        help="Files processed concurrently inside a batch (default: 1)",
    )
    p_detect.add_argument(
        "--file-types", default=None,
        help="Comma-separated extensions to include (default: .h,.cpp,.hpp,.cc,.cxx)",
    )
    p_detect.add_argument(
        "--exclude", action="append", default=None,
        help="Glob to exclude (repeatable)",
    )
    p_detect.add_argument(
        "--resume-last", action="store_true",
        help="Resume the most recent incomplete session instead of starting fresh",
    )
    p_detect.set_defaults(func=_cmd_detect)

    # --- resume ---
    p_resume = subparsers.add_parser(
        "resume", help="Resume an incomplete session",
    )
    p_resume.add_argument("session_id", help="Session to resume")
    _add_processor_argument(p_resume)
    p_resume.set_defaults(func=_cmd_resume)

    # --- sessions ---
    p_sessions = subparsers.add_parser(
        "sessions", help="List stored sessions",
    )
    p_sessions.add_argument(
        "--incomplete", action="store_true",
        help="Only running, paused or interrupted sessions",
    )
    p_sessions.set_defaults(func=_cmd_sessions)

    # --- show ---
    p_show = subparsers.add_parser(
        "show", help="Print a session as JSON",
    )
    p_show.add_argument("session_id", help="Session to export")
    p_show.set_defaults(func=_cmd_show)

    # --- cleanup ---
    p_cleanup = subparsers.add_parser(
        "cleanup", help="Apply session retention rules",
    )
    p_cleanup.set_defaults(func=_cmd_cleanup)

    # --- plan ---
    p_plan = subparsers.add_parser(
        "plan", help="Show the batch plan for a directory without processing",
    )
    p_plan.add_argument("directory", type=Path, help="Directory to scan")
    p_plan.add_argument("--batch-size", type=int, default=None)
    p_plan.add_argument("--exclude", action="append", default=None)
    p_plan.set_defaults(func=_cmd_plan)

    # --- stats ---
    p_stats = subparsers.add_parser(
        "stats", help="Show session and resource statistics",
    )
    p_stats.set_defaults(func=_cmd_stats)

    return parser


def _add_processor_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-p", "--processor", required=True,
        help="Per-file processor as 'module:attribute' (instance, class or coroutine function)",
    )


async def _cmd_detect(args: argparse.Namespace) -> int:
    """Execute a detection run."""
    from autodetect.api.facade import DetectionService
    from autodetect.config.detection import DetectionConfig
    from autodetect.config.settings import load_settings

    directory: Path = args.directory
    if not directory.is_dir():
        logger.error("Not a directory: %s", directory)
        return 1

    settings = load_settings()
    overrides: dict[str, Any] = {
        "batch_size": args.batch_size,
        "max_concurrency": args.concurrency,
        "exclude_patterns": args.exclude,
    }
    if args.file_types:
        overrides["file_types"] = [t.strip() for t in args.file_types.split(",")]
    config = DetectionConfig.from_settings(settings, str(directory), **overrides)

    service = DetectionService(processor=load_processor(args.processor), settings=settings)
    await service.initialize()
    try:
        result = await service.start(
            config, callbacks=_console_callbacks(), resume_from_last=args.resume_last,
        )
    finally:
        await service.close()
    return _print_run_result(result)


async def _cmd_resume(args: argparse.Namespace) -> int:
    """Resume an incomplete session."""
    from autodetect.api.facade import DetectionService
    from autodetect.config.settings import load_settings

    service = DetectionService(processor=load_processor(args.processor), settings=load_settings())
    await service.initialize()
    try:
        result = await service.resume_from_session(args.session_id, callbacks=_console_callbacks())
    finally:
        await service.close()
    return _print_run_result(result)


async def _cmd_sessions(args: argparse.Namespace) -> int:
    """List sessions, newest first."""
    store = _open_store()
    try:
        sessions = await (store.list_incomplete() if args.incomplete else store.list_sessions())
    finally:
        await store.close()

    if not sessions:
        print("No sessions found")
        return 0
    print(f"{'ID':<40} {'STATUS':<12} {'PROGRESS':>9} {'FILES':>11}  TARGET")
    for s in sessions:
        files = f"{s.processed_files}/{s.total_files}"
        print(f"{s.id:<40} {s.status.value:<12} {s.percentage:>8}% {files:>11}  {s.target_directory}")
    return 0


async def _cmd_show(args: argparse.Namespace) -> int:
    """Print one session as JSON."""
    store = _open_store()
    try:
        exported = await store.export_session(args.session_id)
    finally:
        await store.close()
    if exported is None:
        logger.error("Session not found: %s", args.session_id)
        return 1
    print(exported)
    return 0


async def _cmd_cleanup(args: argparse.Namespace) -> int:
    """Apply max-count, retention and staleness rules."""
    store = _open_store()
    try:
        report = await store.cleanup()
    finally:
        await store.close()
    print("\nCleanup complete:")
    print(f"  By max count:  {report.by_max_count}")
    print(f"  By retention:  {report.by_retention}")
    print(f"  Stale:         {report.by_stale}")
    print(f"  Total:         {report.total}")
    return 0


async def _cmd_plan(args: argparse.Namespace) -> int:
    """Print the batch plan without processing anything."""
    from autodetect.batch.scanner import DirectoryScanner
    from autodetect.batch.scheduler import BatchScheduler
    from autodetect.config.settings import load_settings
    from autodetect.resources.governor import ResourceGovernor

    directory: Path = args.directory
    if not directory.is_dir():
        logger.error("Not a directory: %s", directory)
        return 1

    settings = load_settings()
    scan = DirectoryScanner().list(
        str(directory),
        include_extensions=settings.scan_file_types_list,
        exclude_patterns=args.exclude or settings.scan_exclude_patterns_list,
    )
    scheduler = BatchScheduler(
        args.batch_size or settings.batch_size,
        ResourceGovernor.from_settings(settings),
    )
    total_batches = 0
    for group in scan.all_groups():
        batches = scheduler.create_batches(group.files, group.name)
        total_batches += len(batches)
        print(f"\n[{group.name}] {len(group.files)} files, {len(batches)} batches")
        for batch in batches:
            names = ", ".join(f.name for f in batch.files)
            print(f"  {batch.id}: {names}")

    print(f"\nTotal: {scan.total_files} files, {total_batches} batches")
    return 0


async def _cmd_stats(args: argparse.Namespace) -> int:
    """Display session statistics and current memory headroom."""
    from autodetect.config.settings import load_settings
    from autodetect.resources.governor import ResourceGovernor

    store = _open_store()
    try:
        stats = await store.get_stats()
    finally:
        await store.close()
    sample = ResourceGovernor.from_settings(load_settings()).sample()

    print("\nSessions:")
    print(f"  Total:         {stats.total_sessions}")
    print(f"  Completed:     {stats.completed_sessions}")
    print(f"  Incomplete:    {stats.incomplete_sessions}")
    print(f"  Avg duration:  {stats.avg_duration_formatted}")
    for status, count in sorted(stats.status_counts.items()):
        print(f"    {status:<12} {count}")
    print("\nMemory:")
    print(f"  Used:          {sample.used_mb:.0f}MB / {sample.total_mb:.0f}MB ({sample.usage_percent:.1f}%)")
    print(f"  For processing: {sample.available_for_processing_mb:.0f}MB")
    return 0


def load_processor(spec: str) -> Any:
    """Resolve 'module:attribute' into a BaseFileProcessor.

    The attribute may be a processor instance, a processor class (built
    with no arguments) or a coroutine function taking a FileDescriptor.
    """
    from autodetect.core.base_file_processor import BaseFileProcessor, CallableFileProcessor

    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Processor must be 'module:attribute', got {spec!r}")
    target = getattr(importlib.import_module(module_name), attr)

    if isinstance(target, BaseFileProcessor):
        return target
    if inspect.isclass(target) and issubclass(target, BaseFileProcessor):
        return target()
    if inspect.iscoroutinefunction(target):
        return CallableFileProcessor(target)
    raise TypeError(f"{spec} is not a file processor or coroutine function")


def _open_store() -> Any:
    from autodetect.config.settings import load_settings
    from autodetect.session.store import SessionStore

    return SessionStore.from_settings(load_settings())


def _console_callbacks() -> Any:
    from autodetect.orchestrator.models import DetectionCallbacks

    def on_progress(snapshot: Any) -> None:
        logger.info(
            "%3d%% (%d/%d files, batch %d/%d) %s",
            snapshot.percentage, snapshot.processed_files, snapshot.total_files,
            snapshot.current_batch, snapshot.total_batches, snapshot.current_file,
        )

    def on_report(report: Any) -> None:
        print(f"  Group {report.group_name}: {report.files_scanned} files, "
              f"{report.defects_found} defects")

    return DetectionCallbacks(on_progress=on_progress, on_report=on_report)


def _print_run_result(result: Any) -> int:
    if not result.success:
        logger.error("Detection failed: %s", result.error)
        return 1
    s = result.session
    print("\nDetection finished:")
    print(f"  Session:      {s.id}")
    print(f"  Status:       {s.status.value}")
    print(f"  Files:        {s.processed_files}/{s.total_files}")
    print(f"  Failed:       {s.failed_files}")
    print(f"  Defects:      {s.total_defects_found}")
    return 0


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage from settings."""
    from autodetect.config.settings import load_settings
    from autodetect.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
