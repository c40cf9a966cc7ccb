"""
Command-line front-end for one account's synced document.

Usage:
    biosync [--owner ID] [--db PATH] [--remote redis|memory|offline] status
    biosync log [--override]
    biosync undo
    biosync settings [--unit-price X] [--units-per-pack N] ...
    biosync reset --yes
    biosync sync

Every command starts a session (local cache + configured replica), runs,
pushes whatever changed and exits. Output is JSON on stdout.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from biosync.errors import ResetNotConfirmedError
from biosync.formatting import format_countdown, format_hours
from biosync.local_cache import DEFAULT_CACHE_PATH, KeyValueStore, LocalCache, cache_namespace
from biosync.logging_utils import configure_logging, get_logger
from biosync.models import EventKind
from biosync.replica import get_replica
from biosync.replica.redis_client import close_redis
from biosync.schemas import document_to_wire
from biosync.session import SyncSession

logger = get_logger(__name__)

# Settings flags -> wire keys
SETTINGS_FLAGS = {
    "unit_price": "unitPrice",
    "units_per_pack": "unitsPerPack",
    "baseline_daily_count": "baselineDailyCount",
    "min_interval_minutes": "minIntervalMinutes",
    "target_daily_count": "targetDailyCount",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="biosync", description="Offline-first habit log sync")
    parser.add_argument(
        "--owner",
        default=os.getenv("BIOSYNC_OWNER_ID", "local"),
        help="Account id (default: $BIOSYNC_OWNER_ID or 'local')",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=DEFAULT_CACHE_PATH,
        help="SQLite cache path",
    )
    parser.add_argument(
        "--remote",
        choices=["redis", "memory", "offline"],
        default=None,
        help=(
            "Replica backend (default: $BIOSYNC_REMOTE or redis). "
            "'memory' lives only for this process: a dry run against an empty remote"
        ),
    )
    parser.add_argument("--log-level", default=None, help="Logging level")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show document summary and derived metrics")

    log_cmd = sub.add_parser("log", help="Log an event now")
    log_cmd.add_argument("--override", action="store_true", help="Log an override event")

    sub.add_parser("undo", help="Remove the most recent event")

    settings_cmd = sub.add_parser("settings", help="Show or change settings")
    settings_cmd.add_argument("--unit-price", type=float)
    settings_cmd.add_argument("--units-per-pack", type=int)
    settings_cmd.add_argument("--baseline-daily-count", type=int)
    settings_cmd.add_argument("--min-interval-minutes", type=int)
    settings_cmd.add_argument("--target-daily-count", type=int)

    reset_cmd = sub.add_parser("reset", help="Wipe all history and settings")
    reset_cmd.add_argument("--yes", action="store_true", help="Confirm the reset")

    sub.add_parser("sync", help="Reconcile with the remote replica now")
    return parser


def _status(session: SyncSession) -> Dict[str, Any]:
    document = session.current_state()
    metrics = session.derive_metrics()
    stats = session.daily_stats()
    return {
        "owner": session.owner_id,
        "events": document.event_count,
        "lastEventTime": document.last_event_time,
        "documentRevisionTime": document.document_revision_time,
        "longestAbstention": format_hours(document.profile.longest_abstention_hours),
        "metrics": metrics.to_dict(),
        "stats": stats.to_dict(),
        "cooldown": format_countdown(stats.cooldown_remaining_ms),
        "subscribed": session.subscribed,
    }


async def run_command(args: argparse.Namespace) -> Dict[str, Any]:
    store = KeyValueStore(args.db)
    cache = LocalCache(store, cache_namespace(args.owner))
    replica = get_replica(args.owner, backend=args.remote)
    session = SyncSession(args.owner, cache, replica)

    try:
        await session.start()

        if args.command == "status":
            result = _status(session)
        elif args.command == "log":
            kind = EventKind.OVERRIDE if args.override else EventKind.NORMAL
            event = await session.log_event(kind)
            result = {"logged": event.to_dict() if event else None}
        elif args.command == "undo":
            event = await session.undo_last()
            result = {"undone": event.to_dict() if event else None}
        elif args.command == "settings":
            changes = {
                wire: getattr(args, flag)
                for flag, wire in SETTINGS_FLAGS.items()
                if getattr(args, flag) is not None
            }
            if changes:
                current = session.current_state().settings.to_wire()
                current.update(changes)
                await session.save_settings(current)
            result = {"settings": session.current_state().settings.to_wire()}
        elif args.command == "reset":
            await session.reset_all(confirm=args.yes)
            result = {"reset": True}
        elif args.command == "sync":
            pushed = await session.push(force=True)
            result = {"synced": pushed, "document": document_to_wire(session.current_state())}
        else:
            raise ValueError(f"Unknown command: {args.command}")

        if args.command != "sync":
            result["synced"] = await session.push()
        return result
    finally:
        await session.close()
        await close_redis()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        result = asyncio.run(run_command(args))
    except ResetNotConfirmedError:
        print("Refusing to reset without --yes", file=sys.stderr)
        return 2

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
