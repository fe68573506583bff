"""
Application entry point: command-line interface and the periodic pull scheduler.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError

from .client import ConfluenceClient
from .config import Settings, load_settings
from .duplicates import run_health_check
from .errors import (
    CfMirrorError,
    ConfigurationError,
    PageNotFoundError,
    VersionConflictError,
)
from .logging_setup import configure_logging
from .models import SyncOutcome, SyncResult
from .push import push_file
from .space_config import has_space_config, read_space_config
from .sync import CancelSignal, SyncEngine, SyncOptions

LOG = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_PARTIAL_FAILURE = 3
EXIT_VERSION_CONFLICT = 4
EXIT_CANCELLED = 130

OUTCOME_EXIT_CODES: Dict[SyncOutcome, int] = {
    SyncOutcome.SUCCESS: EXIT_SUCCESS,
    SyncOutcome.SUCCESS_WITH_WARNINGS: EXIT_SUCCESS,
    SyncOutcome.PARTIAL_FAILURE: EXIT_PARTIAL_FAILURE,
    SyncOutcome.FAILED: EXIT_FAILURE,
    SyncOutcome.CANCELLED: EXIT_CANCELLED,
}


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mirror a Confluence space into a local markdown tree.")
    parser.add_argument("--env-file", type=Path, default=None, help="Load settings from this .env file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    clone = subparsers.add_parser("clone", help="Clone a space into a new directory.")
    clone.add_argument("space_key", help="Key of the Confluence space.")
    clone.add_argument("--directory", type=Path, default=None, help="Target directory (default: SPACE_KEY).")

    pull = subparsers.add_parser("pull", help="Pull remote changes into the synced directory.")
    pull.add_argument("--dry-run", action="store_true", help="Report the diff without writing anything.")
    pull.add_argument("--force", action="store_true", help="Re-pull every page regardless of version.")
    pull.add_argument(
        "--page",
        dest="pages",
        action="append",
        default=[],
        metavar="ID_OR_PATH",
        help="Force a re-pull of this page id or local path (repeatable).",
    )

    push = subparsers.add_parser("push", help="Push one local file to Confluence.")
    push.add_argument("file", help="Markdown file, relative to the synced directory.")
    push.add_argument("--force", action="store_true", help="Overwrite the remote page on version conflict.")
    push.add_argument("--dry-run", action="store_true", help="Validate and convert without pushing.")

    doctor = subparsers.add_parser("doctor", help="Check the synced directory for duplicate page ids.")
    doctor.add_argument("--fix", action="store_true", help="Delete stale duplicate files.")

    subparsers.add_parser("watch", help="Pull on a fixed interval (SYNC_INTERVAL_MINUTES).")
    return parser.parse_args(argv)


def create_client(settings: Settings) -> ConfluenceClient:
    return ConfluenceClient(
        base_url=settings.base_url,
        email=settings.confluence_email,
        api_token=settings.confluence_api_token,
    )


def exit_code_for(result: SyncResult) -> int:
    return OUTCOME_EXIT_CODES[result.outcome]


def install_cancel_handlers(cancel: CancelSignal) -> Callable[[], None]:
    """Route SIGINT/SIGTERM to ``cancel``; returns a function restoring the previous handlers."""

    def handler(signum, frame) -> None:  # noqa: ARG001 - signal handler signature
        if not cancel.cancelled:
            LOG.warning("Cancelling after the current page", extra={"extra_payload": {"signal": signum}})
        cancel.cancel()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}

    def restore() -> None:
        for sig, old in previous.items():
            signal.signal(sig, old)

    return restore


def report_result(result: SyncResult) -> None:
    changes = result.changes
    for warning in result.warnings:
        LOG.warning(warning)
    for error in result.errors:
        LOG.error(error)
    LOG.info(
        "Sync summary",
        extra={
            "extra_payload": {
                "added": len(changes.added),
                "modified": len(changes.modified),
                "deleted": len(changes.deleted),
                "warnings": len(result.warnings),
                "errors": len(result.errors),
                "outcome": result.outcome.value,
            }
        },
    )


def warn_about_duplicates(directory: Path) -> None:
    for duplicate in run_health_check(directory).duplicates:
        LOG.warning(
            "Duplicate page_id detected; run 'cfmirror doctor' to review",
            extra={
                "extra_payload": {
                    "page_id": duplicate.page_id,
                    "files": [f.path for f in duplicate.files],
                    "keep": duplicate.keeper.path if duplicate.keeper else None,
                }
            },
        )


# Commands --------------------------------------------------------------------------


def perform_pull(
    engine: SyncEngine,
    directory: Path,
    dry_run: bool,
    force: bool = False,
    pages: Optional[list[str]] = None,
) -> SyncResult:
    cancel = CancelSignal()
    restore = install_cancel_handlers(cancel)
    try:
        result = engine.sync(
            directory,
            SyncOptions(dry_run=dry_run, force=force, force_pages=list(pages or []), signal=cancel),
        )
    finally:
        restore()
    report_result(result)
    if result.cancelled:
        LOG.warning("Pull cancelled; run 'cfmirror pull' again to resume.")
    return result


def run_clone(settings: Settings, client: ConfluenceClient, args: argparse.Namespace) -> int:
    target = args.directory or (settings.sync_directory / args.space_key)
    if target.exists():
        LOG.error("Directory already exists", extra={"extra_payload": {"directory": str(target)}})
        return EXIT_FAILURE

    engine = SyncEngine(client, settings.base_url)
    try:
        engine.init_sync(target, args.space_key)
    except CfMirrorError as exc:
        LOG.error("Clone failed", extra={"extra_payload": {"space_key": args.space_key, "error": str(exc)}})
        if target.exists():
            shutil.rmtree(target)
        return EXIT_FAILURE

    result = perform_pull(engine, target, dry_run=False)
    return exit_code_for(result)


def run_pull(settings: Settings, client: ConfluenceClient, args: argparse.Namespace) -> int:
    directory = settings.sync_directory
    if not has_space_config(directory):
        LOG.error(
            "No space configured in this directory; run 'cfmirror clone SPACE_KEY' first.",
            extra={"extra_payload": {"directory": str(directory)}},
        )
        return EXIT_CONFIG_ERROR
    warn_about_duplicates(directory)
    engine = SyncEngine(client, settings.base_url)
    result = perform_pull(
        engine,
        directory,
        dry_run=args.dry_run or settings.dry_run,
        force=args.force,
        pages=args.pages,
    )
    return exit_code_for(result)


def run_push(settings: Settings, client: ConfluenceClient, args: argparse.Namespace) -> int:
    try:
        result = push_file(
            client,
            settings.sync_directory,
            args.file,
            force=args.force,
            dry_run=args.dry_run or settings.dry_run,
            base_url=settings.base_url,
        )
    except VersionConflictError as exc:
        LOG.error(str(exc), extra={"extra_payload": {"page_id": exc.page_id}})
        return EXIT_VERSION_CONFLICT
    except ConfigurationError as exc:
        LOG.error(str(exc))
        return EXIT_CONFIG_ERROR
    except PageNotFoundError as exc:
        LOG.error(str(exc), extra={"extra_payload": {"page_id": exc.page_id}})
        return EXIT_FAILURE
    except CfMirrorError as exc:
        LOG.error("Push failed", extra={"extra_payload": {"file": args.file, "error": str(exc)}})
        return EXIT_FAILURE

    if result.dry_run:
        LOG.info(
            "Dry-run: no changes were made",
            extra={"extra_payload": {"file": result.local_path, "page_id": result.page_id}},
        )
    return EXIT_SUCCESS


def run_doctor(directory: Path, fix: bool) -> int:
    try:
        config = read_space_config(directory)
    except ConfigurationError as exc:
        LOG.error(str(exc))
        return EXIT_CONFIG_ERROR
    if config is None:
        LOG.error("Not a synced directory", extra={"extra_payload": {"directory": str(directory)}})
        return EXIT_CONFIG_ERROR

    health = run_health_check(directory)
    LOG.info(
        "Health check",
        extra={
            "extra_payload": {
                "space_key": config.space_key,
                "files": len(health.files),
                "tracked": len(health.tracked_files),
                "new": len(health.new_files),
                "duplicates": len(health.duplicates),
            }
        },
    )
    for unreadable in health.unreadable_files:
        LOG.warning(unreadable.parse_error or "Unreadable file", extra={"extra_payload": {"path": unreadable.path}})

    remaining = 0
    for duplicate in health.duplicates:
        payload = {
            "page_id": duplicate.page_id,
            "files": [f"{f.path} (v{f.version or '?'}, synced {f.synced_at or 'never'})" for f in duplicate.files],
        }
        if duplicate.ambiguous:
            LOG.warning("Duplicate page_id with no clear keeper; resolve by hand", extra={"extra_payload": payload})
            remaining += 1
            continue
        payload["keep"] = duplicate.keeper.path
        payload["stale"] = [f.path for f in duplicate.stale]
        LOG.warning("Duplicate page_id", extra={"extra_payload": payload})
        if not fix:
            remaining += 1
            continue
        for stale in duplicate.stale:
            try:
                (directory / stale.path).unlink()
            except OSError as exc:
                LOG.error("Failed to delete stale file", extra={"extra_payload": {"path": stale.path, "error": str(exc)}})
                remaining += 1
            else:
                LOG.info("Deleted stale file", extra={"extra_payload": {"path": stale.path}})

    if remaining or health.unreadable_files:
        return EXIT_FAILURE
    return EXIT_SUCCESS


def run_watch(settings: Settings, client: ConfluenceClient) -> int:
    directory = settings.sync_directory
    if not has_space_config(directory):
        LOG.error("No space configured in this directory", extra={"extra_payload": {"directory": str(directory)}})
        return EXIT_CONFIG_ERROR

    engine = SyncEngine(client, settings.base_url)

    def pull_once() -> None:
        report_result(engine.sync(directory, SyncOptions(dry_run=settings.dry_run)))

    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        pull_once,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        name="cfmirror-pull",
        next_run_time=datetime.now(tz=timezone.utc),
        max_instances=1,
    )

    LOG.info(
        "Starting scheduler",
        extra={
            "extra_payload": {
                "interval_minutes": settings.sync_interval_minutes,
                "dry_run": settings.dry_run,
            }
        },
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        LOG.info("Scheduler stopped.")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    try:
        settings = load_settings(args.env_file)
    except (RuntimeError, ValidationError, FileNotFoundError) as exc:
        configure_logging("INFO")
        LOG.error("Invalid configuration", extra={"extra_payload": {"error": str(exc)}})
        return EXIT_CONFIG_ERROR
    configure_logging(settings.log_level, settings.log_format)

    if args.command == "doctor":
        return run_doctor(settings.sync_directory, args.fix)

    client = create_client(settings)
    if args.command == "clone":
        return run_clone(settings, client, args)
    if args.command == "pull":
        return run_pull(settings, client, args)
    if args.command == "push":
        return run_push(settings, client, args)
    return run_watch(settings, client)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
