"""
remindsync CLI - inspect and drive local-to-cloud sync.

Usage:
    remindsync [--offline] status [--json]
    remindsync sync [--queue | --push | --pull] [--json]
    remindsync purge
    remindsync requeue [ENTRY_ID]...
"""

import argparse
import json
import logging
import sys

from remindsync.config import get_settings
from remindsync.logging_config import setup_remindsync_logging
from remindsync.service import RemindSync
from remindsync.sync.connectivity import StaticNetworkStatus
from remindsync.types import format_datetime

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def build_app(offline: bool = False) -> RemindSync:
    network = StaticNetworkStatus(reachable=False) if offline else None
    return RemindSync.from_settings(get_settings(), network=network)


def _resolve_owner(args, app: RemindSync) -> str:
    return args.owner or app.current_identity().id


def cmd_status(args, app: RemindSync):
    """Show identity, connectivity and queue state."""
    owner_id = _resolve_owner(args, app)
    identity = app.records.get_identity(owner_id)
    status = app.queue.status()
    last_sync = app.get_last_sync_time()
    online = app.gate.is_connected()

    if args.json:
        print(
            json.dumps(
                {
                    "owner_id": owner_id,
                    "is_guest": bool(identity and identity.is_guest),
                    "online": online,
                    "pending": app.get_pending_sync_count(owner_id),
                    "dead_letter": status["dead_letter"],
                    "by_entity_type": status["by_entity_type"],
                    "last_sync_time": format_datetime(last_sync),
                },
                indent=2,
            )
        )
        return

    kind = "guest" if identity and identity.is_guest else "account"
    print(f"Identity:    {owner_id} ({kind})")
    print(f"Connection:  {'✓ online' if online else '✗ offline'}")
    print(f"Pending:     {app.get_pending_sync_count(owner_id)}")
    for entity_type, count in sorted(status["by_entity_type"].items()):
        print(f"  {entity_type}: {count}")
    print(f"Dead letter: {status['dead_letter']}")
    print(f"Last sync:   {format_datetime(last_sync) if last_sync else 'never'}")


def cmd_sync(args, app: RemindSync):
    """Run a full sync or a single stage."""
    owner_id = _resolve_owner(args, app)

    if args.queue:
        result = app.engine.process_queue(owner_id)
        summary = {"success": result.success, "failed": result.failed}
        skipped = result.skipped
    elif args.push or args.pull:
        counts = app.engine.push_all(owner_id) if args.push else app.engine.pull_all(owner_id)
        summary = {
            "reminders": counts.reminders,
            "categories": counts.categories,
            "saved_places": counts.saved_places,
            "failed": counts.failed,
        }
        skipped = counts.skipped
    else:
        result = app.full_sync(owner_id)
        summary = {
            "queue_success": result.queue.success,
            "queue_failed": result.queue.failed,
            "pushed": result.pushed.total,
            "pulled": result.pulled.total,
            "completed": result.completed,
        }
        skipped = result.skipped

    if args.json:
        summary["skipped"] = skipped.value if skipped else None
        print(json.dumps(summary, indent=2))
        return

    if skipped:
        print(f"✗ Sync skipped ({skipped.value})")
        return
    print("✓ " + ", ".join(f"{key}={value}" for key, value in summary.items()))


def cmd_purge(args, app: RemindSync):
    """Delete dead-lettered queue entries."""
    count = app.purge_dead_lettered()
    print(f"Purged {count} dead-lettered entries")


def cmd_requeue(args, app: RemindSync):
    """Reset dead-lettered entries so they are retried."""
    count = app.queue.requeue_dead_letters(args.entry_ids or None)
    print(f"Requeued {count} entries")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="remindsync",
        description="Offline-first sync for reminders, categories and saved places",
    )
    parser.add_argument("--owner", "-o", help="Owner ID (default: active identity)", default=None)
    parser.add_argument(
        "--offline", action="store_true", help="Treat the network as unreachable (no remote calls)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status
    p_status = subparsers.add_parser("status", help="Show sync status")
    p_status.add_argument("--json", "-j", action="store_true")

    # sync
    p_sync = subparsers.add_parser("sync", help="Sync with the cloud")
    stage = p_sync.add_mutually_exclusive_group()
    stage.add_argument("--queue", action="store_true", help="Only drain the outbound queue")
    stage.add_argument("--push", action="store_true", help="Only push local records")
    stage.add_argument("--pull", action="store_true", help="Only pull remote records")
    p_sync.add_argument("--json", "-j", action="store_true")

    # purge
    subparsers.add_parser("purge", help="Delete dead-lettered queue entries")

    # requeue
    p_requeue = subparsers.add_parser("requeue", help="Retry dead-lettered queue entries")
    p_requeue.add_argument("entry_ids", nargs="*", help="Entry IDs (default: all)")

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_remindsync_logging(level=settings.log_level)

    try:
        app = build_app(offline=args.offline)
    except (ValueError, TypeError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    try:
        if args.command == "status":
            cmd_status(args, app)
        elif args.command == "sync":
            cmd_sync(args, app)
        elif args.command == "purge":
            cmd_purge(args, app)
        elif args.command == "requeue":
            cmd_requeue(args, app)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
