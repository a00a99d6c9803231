"""CLI entry point for mail-sync.

Usage:
    mail-sync serve                      # Run the HTTP API
    mail-sync sync UUID                  # Sync one account in this process
    mail-sync sync UUID --resume         # Continue from the saved cursor
    mail-sync status UUID                # Show sync status
    mail-sync stop UUID                  # Ask a running sync to stop
    mail-sync resume-pending             # Pick up paused/queued/abandoned syncs
    mail-sync --help                     # Show all options
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from uuid import UUID

from mail_sync.core.config import Config
from mail_sync.core.errors import AccountMissingError
from mail_sync.core.logging import configure_logging
from mail_sync.schemas.sync import AccountSyncState


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Resumable mailbox synchronization engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in the working directory)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Bind port")

    sync = subparsers.add_parser("sync", help="Sync one account in this process")
    sync.add_argument("account_id", type=str, metavar="UUID", help="Account to sync")
    sync.add_argument(
        "--resume",
        action="store_true",
        help="Continue as a background sync, keeping the stop flag",
    )

    status = subparsers.add_parser("status", help="Show sync status")
    status.add_argument("account_id", type=str, metavar="UUID", help="Account to inspect")

    stop = subparsers.add_parser("stop", help="Ask a running sync to stop")
    stop.add_argument("account_id", type=str, metavar="UUID", help="Account to stop")

    resume = subparsers.add_parser("resume-pending", help="Pick up scheduled and abandoned syncs")
    resume.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum accounts to pick up (default: 50)",
    )

    return parser.parse_args(argv)


def get_env_file(args: argparse.Namespace) -> Path | None:
    """Get the .env file path from args or default location."""
    env_file: Path = args.env_file or Path(".env")
    return env_file if env_file.exists() else None


def parse_account_id(value: str) -> UUID:
    """Parse an account UUID or exit with an error."""
    try:
        return UUID(value)
    except ValueError:
        print(f"Invalid UUID format: {value}", file=sys.stderr)
        sys.exit(1)


def format_state(state: AccountSyncState) -> str:
    """Render a sync state for the terminal."""
    lines = [
        f"Account:     {state.id} ({state.email_address})",
        f"Status:      {state.sync_status.value}",
        f"Progress:    {state.sync_progress}%",
        f"Synced:      {state.synced_email_count} / {state.total_email_count}",
        f"Last synced: {state.last_synced_at.isoformat() if state.last_synced_at else 'never'}",
        f"Initial:     {'complete' if state.initial_sync_completed else 'incomplete'}",
    ]
    if state.continuation_count:
        lines.append(f"Continuations: {state.continuation_count}")
    if state.last_error:
        lines.append(f"Last error:  {state.last_error}")
    return "\n".join(lines)


async def _sync_account(config: Config, account_id: UUID, resume: bool) -> AccountSyncState | None:
    from mail_sync.api.database import Database
    from mail_sync.repositories.email import EmailRepository
    from mail_sync.repositories.sync_state import SyncStateRepository
    from mail_sync.services.continuation import LocalContinuationDispatcher
    from mail_sync.services.sync_service import SyncRuntime, SyncService

    db = Database(config.database_url)
    await db.connect()
    runtime: SyncRuntime | None = None
    try:

        async def resume_account(target: UUID) -> None:
            assert runtime is not None
            async with db.session() as session:
                service = SyncService(runtime, SyncStateRepository(session), EmailRepository(session))
                await service.execute(target, resume=True)

        dispatcher = LocalContinuationDispatcher(resume_account)
        runtime = SyncRuntime.from_config(config, dispatcher=dispatcher)

        async with db.session() as session:
            service = SyncService(runtime, SyncStateRepository(session), EmailRepository(session))
            result = await service.execute(account_id, resume=resume)
            print(result.message)

        # Continuations run as tasks; wait for the whole chain
        await dispatcher.join()

        async with db.session() as session:
            return await SyncStateRepository(session).load(account_id)
    finally:
        if runtime is not None:
            await runtime.close()
        await db.disconnect()


async def _load_state(config: Config, account_id: UUID) -> AccountSyncState | None:
    from mail_sync.api.database import Database
    from mail_sync.repositories.sync_state import SyncStateRepository

    db = Database(config.database_url)
    await db.connect()
    try:
        async with db.session() as session:
            return await SyncStateRepository(session).load(account_id)
    finally:
        await db.disconnect()


async def _stop_account(config: Config, account_id: UUID) -> bool:
    from mail_sync.api.database import Database
    from mail_sync.repositories.sync_state import SyncStateRepository
    from mail_sync.schemas.sync import AccountSyncUpdate

    db = Database(config.database_url)
    await db.connect()
    try:
        async with db.session() as session:
            return await SyncStateRepository(session).save(
                account_id, AccountSyncUpdate(sync_stopped=True)
            )
    finally:
        await db.disconnect()


async def _resume_pending(config: Config, limit: int) -> list[UUID]:
    from mail_sync.api.database import Database
    from mail_sync.repositories.email import EmailRepository
    from mail_sync.repositories.sync_state import SyncStateRepository
    from mail_sync.services.sync_service import SyncRuntime, SyncService

    db = Database(config.database_url)
    await db.connect()
    runtime = SyncRuntime.from_config(config)
    try:
        async with db.session() as session:
            service = SyncService(runtime, SyncStateRepository(session), EmailRepository(session))
            return await service.resume_pending(limit=limit)
    finally:
        await runtime.close()
        await db.disconnect()


def cmd_serve(args: argparse.Namespace, config: Config) -> None:
    """Handle serve command."""
    from mail_sync.api.main import run_server

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    run_server(config)


def cmd_sync(args: argparse.Namespace, config: Config) -> None:
    """Handle sync command."""
    account_id = parse_account_id(args.account_id)
    missing = config.validate()
    if missing:
        print(f"Missing configuration: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    try:
        state = asyncio.run(_sync_account(config, account_id, args.resume))
    except AccountMissingError as e:
        print(e.message, file=sys.stderr)
        sys.exit(1)

    if state is None:
        print(f"Account {account_id} no longer exists", file=sys.stderr)
        sys.exit(1)

    print("=" * 60)
    print(format_state(state))
    print("=" * 60)
    sys.exit(0 if state.sync_status.value not in ("error", "error_permanent") else 1)


def cmd_status(args: argparse.Namespace, config: Config) -> None:
    """Handle status command."""
    account_id = parse_account_id(args.account_id)
    state = asyncio.run(_load_state(config, account_id))
    if state is None:
        print(f"Account {account_id} not found", file=sys.stderr)
        sys.exit(1)
    print(format_state(state))


def cmd_stop(args: argparse.Namespace, config: Config) -> None:
    """Handle stop command."""
    account_id = parse_account_id(args.account_id)
    if not asyncio.run(_stop_account(config, account_id)):
        print(f"Account {account_id} not found", file=sys.stderr)
        sys.exit(1)
    print(f"Stop requested for {account_id}")


def cmd_resume_pending(args: argparse.Namespace, config: Config) -> None:
    """Handle resume-pending command."""
    missing = config.validate()
    if missing:
        print(f"Missing configuration: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    picked = asyncio.run(_resume_pending(config, args.limit))
    print(f"Resumed {len(picked)} account(s)")
    for account_id in picked:
        print(f"  - {account_id}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the sync engine."""
    args = parse_args(argv)

    env_file = get_env_file(args)
    try:
        config = Config.from_env(env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.log_level, json_logs=config.json_logs)

    if args.command == "serve":
        cmd_serve(args, config)
    elif args.command == "sync":
        cmd_sync(args, config)
    elif args.command == "status":
        cmd_status(args, config)
    elif args.command == "stop":
        cmd_stop(args, config)
    elif args.command == "resume-pending":
        cmd_resume_pending(args, config)
    else:
        print("Usage: mail-sync {serve|sync|status|stop|resume-pending}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
