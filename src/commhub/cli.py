"""CLI entry point for the commhub background worker.

Usage:
    commhub run                                  # Run the worker until SIGINT/SIGTERM
    commhub init-db                              # Apply database migrations
    commhub sync account --account UUID          # Sync one account now
    commhub sync user --user UUID                # Sync all of a user's accounts now
    commhub syncs --user UUID [--active]         # Show recent or active sync runs
    commhub queue stats --user UUID              # Offline queue counts
    commhub queue process --user UUID            # Drain a user's offline queue
    commhub queue retry --user UUID              # Reset retryable failed operations
    commhub queue clear --user UUID              # Delete completed operations
    commhub automation run [--user UUID]         # Run one automated processing sweep
    commhub automation restore --user UUID --message UUID
    commhub automation cleanup-trash             # Delete messages past the restore window
    commhub --help                               # Show all options
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID

from commhub.core.config import Config
from commhub.core.logging import configure_logging
from commhub.worker import Worker

if TYPE_CHECKING:
    from commhub.schemas.automation import ProcessingStats

T = TypeVar("T")


def _add_user_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--user",
        type=str,
        required=True,
        metavar="UUID",
        help="User ID",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Background sync, offline queue and automation worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Common arguments
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in project root)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the background worker")
    subparsers.add_parser("init-db", help="Apply database migrations")

    # Sync subcommand
    sync_parser = subparsers.add_parser("sync", help="Trigger sync passes")
    sync_subparsers = sync_parser.add_subparsers(dest="sync_action", help="Sync actions")
    sync_account = sync_subparsers.add_parser("account", help="Sync one account now")
    sync_account.add_argument(
        "--account",
        type=str,
        required=True,
        metavar="UUID",
        help="Account ID to sync",
    )
    sync_user = sync_subparsers.add_parser("user", help="Sync all accounts of a user now")
    _add_user_arg(sync_user)

    # Sync run listing
    syncs_parser = subparsers.add_parser("syncs", help="Show sync runs for a user")
    _add_user_arg(syncs_parser)
    syncs_parser.add_argument(
        "--active",
        action="store_true",
        help="Only show runs that are still pending or syncing",
    )
    syncs_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of recent runs to show (default: 10)",
    )

    # Queue subcommand
    queue_parser = subparsers.add_parser("queue", help="Manage the offline operation queue")
    queue_subparsers = queue_parser.add_subparsers(dest="queue_action", help="Queue actions")
    for action, help_text in (
        ("stats", "Show operation counts by status"),
        ("process", "Apply pending operations"),
        ("retry", "Reset retryable failed operations to pending"),
        ("clear", "Delete completed operations"),
    ):
        _add_user_arg(queue_subparsers.add_parser(action, help=help_text))

    # Automation subcommand
    automation_parser = subparsers.add_parser("automation", help="Automated processing")
    automation_subparsers = automation_parser.add_subparsers(
        dest="automation_action", help="Automation actions"
    )
    automation_run = automation_subparsers.add_parser("run", help="Run one sweep now")
    automation_run.add_argument(
        "--user",
        type=str,
        default=None,
        metavar="UUID",
        help="Only process this user (default: all users)",
    )
    automation_restore = automation_subparsers.add_parser(
        "restore", help="Restore a message trashed by automation"
    )
    _add_user_arg(automation_restore)
    automation_restore.add_argument(
        "--message",
        type=str,
        required=True,
        metavar="UUID",
        help="Message ID to restore",
    )
    automation_subparsers.add_parser(
        "cleanup-trash", help="Permanently delete messages past the restore window"
    )

    return parser.parse_args(argv)


def get_env_file(args: argparse.Namespace) -> Path | None:
    """Get the .env file path from args or default location."""
    env_file = args.env_file
    if env_file is None:
        # Try project root
        cli_module = Path(__file__).resolve()
        project_root = cli_module.parent.parent.parent
        env_file = project_root / ".env"
    return env_file if env_file.exists() else None


def parse_uuid(value: str) -> UUID:
    """Parse a UUID argument, exiting with an error message if invalid."""
    try:
        return UUID(value)
    except ValueError:
        print(f"Invalid UUID format: {value}", file=sys.stderr)
        sys.exit(1)


def run_with_worker(config: Config, action: Callable[[Worker], Awaitable[T]]) -> T:
    """Run one action against a connected worker without starting its loops."""

    async def _run() -> T:  # pragma: no cover
        worker = Worker(config)
        await worker.database.connect()
        try:
            return await action(worker)
        finally:
            await worker.close_ai()
            await worker.database.disconnect()

    return asyncio.run(_run())


def run_worker(config: Config) -> None:
    """Run the worker until interrupted."""
    print("Starting commhub worker (Ctrl+C to stop)")
    asyncio.run(Worker(config).run_forever())


def init_db(config: Config) -> None:
    """Handle init-db command."""

    async def _migrate(worker: Worker) -> None:  # pragma: no cover
        await worker.database.migrate()

    run_with_worker(config, _migrate)
    print("Database migrated to head")


def sync_command(args: argparse.Namespace, config: Config) -> None:
    """Handle sync subcommands."""
    if args.sync_action == "account":
        account_id = parse_uuid(args.account)
        outcome = run_with_worker(config, lambda w: w.scheduler.trigger_sync(account_id))
        outcomes = [outcome] if outcome is not None else []
    elif args.sync_action == "user":
        user_id = parse_uuid(args.user)
        outcomes = run_with_worker(config, lambda w: w.scheduler.trigger_user_sync(user_id))
    else:
        print("Usage: commhub sync {account --account UUID|user --user UUID}")
        sys.exit(1)

    if not outcomes:
        print("Nothing to sync")
        return

    failed = False
    for outcome in outcomes:
        if outcome.skipped:
            state = "SKIPPED"
        elif outcome.cancelled:
            state = "CANCELLED"
        elif outcome.success:
            state = "OK"
        else:
            state = "FAIL"
            failed = True
        line = (
            f"[{state}] {outcome.account_id}: fetched={outcome.messages_fetched} "
            f"stored={outcome.messages_stored} failed={outcome.messages_failed}"
        )
        if outcome.error:
            line += f" error={outcome.error}"
        if outcome.escalated:
            line += " (account moved to error)"
        print(line)
    sys.exit(1 if failed else 0)


def syncs_command(args: argparse.Namespace, config: Config) -> None:
    """Handle syncs command."""
    user_id = parse_uuid(args.user)
    if args.active:
        runs = run_with_worker(config, lambda w: w.tracker.get_active_syncs(user_id))
    else:
        runs = run_with_worker(config, lambda w: w.tracker.get_recent_syncs(user_id, args.limit))

    print(f"Sync runs for {user_id}")
    print("=" * 60)
    if not runs:
        print("No sync runs")
    for run in runs:
        print(
            f"{run.sync_id} {run.status:<10} {run.sync_type:<11} "
            f"{run.progress_percentage:>3}% "
            f"({run.processed_messages}/{run.total_messages}, "
            f"success {run.success_rate}%) started {run.started_at:%Y-%m-%d %H:%M:%S}"
        )
        for entry in run.errors:
            print(f"    error: {entry.error}")
    print("=" * 60)


def queue_command(args: argparse.Namespace, config: Config) -> None:
    """Handle queue subcommands."""
    if args.queue_action not in ("stats", "process", "retry", "clear"):
        print("Usage: commhub queue {stats|process|retry|clear} --user UUID")
        sys.exit(1)
    user_id = parse_uuid(args.user)

    if args.queue_action == "stats":
        stats = run_with_worker(config, lambda w: w.queue.get_queue_stats(user_id))
        print(
            f"pending={stats.pending} processing={stats.processing} "
            f"completed={stats.completed} failed={stats.failed} "
            f"stale={stats.stale} total={stats.total}"
        )
    elif args.queue_action == "process":
        result = run_with_worker(config, lambda w: w.queue.process_user_queue(user_id))
        print(
            f"processed={result.processed} succeeded={result.succeeded} "
            f"failed={result.failed} stale={result.stale} skipped={result.skipped}"
        )
    elif args.queue_action == "retry":
        count = run_with_worker(config, lambda w: w.queue.retry_failed(user_id))
        print(f"Reset {count} operation(s) to pending")
    else:
        count = run_with_worker(config, lambda w: w.queue.clear_completed(user_id))
        print(f"Deleted {count} completed operation(s)")


def automation_command(args: argparse.Namespace, config: Config) -> None:
    """Handle automation subcommands."""
    if not config.has_ollama():
        print("AI service not configured. Set OLLAMA_BASE_URL.", file=sys.stderr)
        sys.exit(1)

    if args.automation_action == "run":
        only_user = parse_uuid(args.user) if args.user else None

        async def _sweep(worker: Worker) -> ProcessingStats:  # pragma: no cover
            pipeline = worker.require_pipeline()
            if only_user is not None:
                return await pipeline.process_user_messages(only_user)
            return await pipeline.process_all_users()

        stats = run_with_worker(config, _sweep)
        print(
            f"users={stats.users_processed} analyzed={stats.messages_analyzed} "
            f"trashed={stats.spam_trashed} replied={stats.replies_sent}"
        )
        for error in stats.errors:
            print(f"  - {error}", file=sys.stderr)
    elif args.automation_action == "restore":
        user_id = parse_uuid(args.user)
        message_id = parse_uuid(args.message)

        async def _restore(worker: Worker) -> bool:  # pragma: no cover
            return await worker.require_pipeline().restore_from_trash(message_id, user_id)

        if run_with_worker(config, _restore):
            print(f"Restored {message_id}")
        else:
            print(f"Message {message_id} is not restorable", file=sys.stderr)
            sys.exit(1)
    elif args.automation_action == "cleanup-trash":
        deleted = run_with_worker(config, lambda w: w.require_pipeline().cleanup_old_trash())
        print(f"Deleted {deleted} message(s) from trash")
    else:
        print(
            "Usage: commhub automation "
            "{run [--user UUID]|restore --user UUID --message UUID|cleanup-trash}"
        )
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the commhub worker."""
    args = parse_args(argv)

    # Load configuration
    env_file = get_env_file(args)
    try:
        config = Config.from_env(env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    problems = config.validate()
    if problems:
        print("Configuration errors:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.log_level, config.log_json)

    # Route to appropriate handler
    if args.command == "run":
        run_worker(config)
    elif args.command == "init-db":
        init_db(config)
    elif args.command == "sync":
        sync_command(args, config)
    elif args.command == "syncs":
        syncs_command(args, config)
    elif args.command == "queue":
        queue_command(args, config)
    elif args.command == "automation":
        automation_command(args, config)
    else:
        print("Usage: commhub {run|init-db|sync|syncs|queue|automation} ...")
        sys.exit(1)


if __name__ == "__main__":
    main()
