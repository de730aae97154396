"""Command-line interface for kvsync."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import yaml

from . import __version__
from .bootstrap import build_engine, engine_lifespan, resolve_config
from .config import Config
from .config_loader import ensure_config
from .core.errors import SyncError
from .logger import setup_logging
from .sync.engine import SyncEngine
from .sync.reporter import (
    format_entries,
    format_init_result,
    format_round_result,
    format_status,
    status_to_json,
)
from .transfer import export_entries, import_entries

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_ping(engine: SyncEngine, args: argparse.Namespace) -> int:
    engine.ping()
    print("Remote is reachable")
    return 0


def cmd_init(engine: SyncEngine, args: argparse.Namespace) -> int:
    result = engine.initialize(args.keys or None)
    print(format_init_result(result))
    return 0


def cmd_sync(engine: SyncEngine, args: argparse.Namespace) -> int:
    result = engine.sync_once()
    print(format_round_result(result))
    return 0 if result.succeeded or result.skipped else 1


def cmd_status(engine: SyncEngine, args: argparse.Namespace) -> int:
    summary = engine.status_summary()
    if args.json:
        print(json.dumps(status_to_json(summary), indent=2))
    else:
        print(format_status(summary))
    return 0


def cmd_configure(engine: SyncEngine, args: argparse.Namespace) -> int:
    if args.remote_url is not None:
        engine.configure_remote(args.remote_url)
    if args.interval is not None:
        engine.set_interval(args.interval)
    if args.auto is not None:
        engine.set_enabled(args.auto == "on")
    print(format_status(engine.status_summary()))
    return 0


def cmd_get(engine: SyncEngine, args: argparse.Namespace) -> int:
    value = engine.get_value(args.key)
    if value is None:
        print(f"ERROR: Key '{args.key}' not found", file=sys.stderr)
        return 1
    print(value)
    return 0


def cmd_set(engine: SyncEngine, args: argparse.Namespace) -> int:
    queued = engine.set_value(args.key, args.value)
    print(f"Set {args.key}" + (" (queued for sync)" if queued else ""))
    return 0


def cmd_add(engine: SyncEngine, args: argparse.Namespace) -> int:
    if engine.add_member(args.key, args.member):
        print(f"Added {args.member} to {args.key}")
    else:
        print(f"{args.member} is already in {args.key}")
    return 0


def cmd_remove(engine: SyncEngine, args: argparse.Namespace) -> int:
    if engine.remove_member(args.key, args.member):
        print(f"Removed {args.member} from {args.key}")
    else:
        print(f"{args.member} is not in {args.key}")
    return 0


def cmd_note(engine: SyncEngine, args: argparse.Namespace) -> int:
    text = "" if args.delete else (args.text or "")
    update = engine.update_note(args.entity_id, text)
    if update.text:
        print(f"Saved note for {args.entity_id}")
    else:
        print(f"Deleted note for {args.entity_id}")
    return 0


def cmd_list(engine: SyncEngine, args: argparse.Namespace) -> int:
    print(format_entries(engine.entries(synced_only=args.synced_only)))
    return 0


def cmd_delete(engine: SyncEngine, args: argparse.Namespace) -> int:
    if not args.yes:
        print(
            f"ERROR: This deletes {len(args.keys)} local key(s) and cannot be undone. "
            "Re-run with --yes to confirm.",
            file=sys.stderr,
        )
        return 1
    removed = engine.delete_keys(args.keys)
    print(f"Deleted {len(removed)} key(s): {', '.join(removed) or '-'}")
    return 0


def cmd_enable(engine: SyncEngine, args: argparse.Namespace) -> int:
    added = engine.enable_keys(args.keys)
    print(f"Enabled {len(added)} key(s): {', '.join(added) or '-'}")
    return 0


def cmd_disable(engine: SyncEngine, args: argparse.Namespace) -> int:
    removed = engine.disable_keys(args.keys)
    print(f"Disabled {len(removed)} key(s): {', '.join(removed) or '-'}")
    return 0


def cmd_reset(engine: SyncEngine, args: argparse.Namespace) -> int:
    engine.reset()
    print("Local sync settings and pending changes cleared")
    return 0


def cmd_clear_remote(engine: SyncEngine, args: argparse.Namespace) -> int:
    if not args.yes:
        print(
            "ERROR: This deletes ALL data on the remote. Re-run with --yes to confirm.",
            file=sys.stderr,
        )
        return 1
    engine.clear_remote()
    print("Remote data cleared; run 'kvsync init' to set it up again")
    return 0


def cmd_export(engine: SyncEngine, args: argparse.Namespace) -> int:
    count = export_entries(engine, Path(args.path), args.keys or None)
    print(f"Exported {count} entries to {args.path}")
    return 0


def cmd_import(engine: SyncEngine, args: argparse.Namespace) -> int:
    summary = import_entries(engine, Path(args.path))
    print(f"Imported {summary.imported} entries")
    if summary.queued:
        print(f"{summary.queued} synced key(s) will be uploaded on the next sync")
    if summary.skipped:
        print(f"Skipped reserved keys: {', '.join(summary.skipped)}")
    return 0


async def _run_daemon(config: Config) -> None:
    async with engine_lifespan(config):
        await asyncio.Event().wait()


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvsync",
        description="kvsync - keep a local key-value store in sync with a remote store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Point this device at a remote and bootstrap it
  kvsync configure --remote-url https://script.example.com/exec
  kvsync enable favorites statusesConfig
  kvsync init

  # Local changes are queued and uploaded on the next round
  kvsync add favorites 12345
  kvsync sync

  # Run periodic sync in the foreground (logs to /tmp/kvsync.log)
  kvsync run

  # Inspect local data; synced keys are marked with *
  kvsync list --synced-only

  # Move data between devices by file
  kvsync export backup.json
  kvsync import backup.json
        """,
    )
    parser.add_argument(
        "--url",
        help="Remote endpoint URL (takes precedence over KVSYNC_URL env var and config files)",
    )
    parser.add_argument(
        "--store",
        help="Local store file (takes precedence over KVSYNC_STORE env var and config files)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log line format for stderr and --log-file output",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kvsync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ping", help="Check that the remote is reachable")
    p.set_defaults(func=cmd_ping)

    p = sub.add_parser("init", help="Bootstrap this device against the remote")
    p.add_argument("keys", nargs="*", help="Keys to sync when seeding an empty remote")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("sync", help="Run one sync round now")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("status", help="Show sync status")
    p.add_argument("--json", action="store_true", help="Output JSON")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("configure", help="Change sync settings")
    p.add_argument("--remote-url", help="Remote endpoint URL")
    p.add_argument("--interval", type=int, help="Seconds between rounds (min 60)")
    p.add_argument("--auto", choices=("on", "off"), help="Turn periodic sync on or off")
    p.set_defaults(func=cmd_configure)

    p = sub.add_parser("get", help="Print a value")
    p.add_argument("key")
    p.set_defaults(func=cmd_get)

    p = sub.add_parser("set", help="Replace a value")
    p.add_argument("key")
    p.add_argument("value")
    p.set_defaults(func=cmd_set)

    p = sub.add_parser("add", help="Add a member to a delimited set")
    p.add_argument("key")
    p.add_argument("member")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("remove", help="Remove a member from a delimited set")
    p.add_argument("key")
    p.add_argument("member")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("note", help="Set or delete a note")
    p.add_argument("entity_id")
    p.add_argument("text", nargs="?")
    p.add_argument("--delete", action="store_true", help="Delete the note")
    p.set_defaults(func=cmd_note)

    p = sub.add_parser("list", help="List local keys with a value preview")
    p.add_argument("--synced-only", action="store_true", help="Only show synced keys")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("delete", help="Delete local keys")
    p.add_argument("keys", nargs="+")
    p.add_argument("--yes", action="store_true", help="Confirm deletion")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("enable", help="Start syncing keys")
    p.add_argument("keys", nargs="+")
    p.set_defaults(func=cmd_enable)

    p = sub.add_parser("disable", help="Stop syncing keys")
    p.add_argument("keys", nargs="+")
    p.set_defaults(func=cmd_disable)

    p = sub.add_parser("run", help="Run periodic sync until interrupted")
    p.set_defaults(func=None)

    p = sub.add_parser("config-init", help="Create a starter config file")
    p.add_argument("path", nargs="?", help="Where to create it (default: .kvsync/config.yml)")
    p.set_defaults(func=None)

    p = sub.add_parser("reset", help="Forget local sync settings and pending changes")
    p.set_defaults(func=cmd_reset)

    p = sub.add_parser("clear-remote", help="Delete ALL data on the remote")
    p.add_argument("--yes", action="store_true", help="Confirm deletion")
    p.set_defaults(func=cmd_clear_remote)

    p = sub.add_parser("export", help="Export entries to a JSON file")
    p.add_argument("path")
    p.add_argument("keys", nargs="*", help="Keys to export (default: all)")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Import entries from a JSON file")
    p.add_argument("path")
    p.set_defaults(func=cmd_import)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "config-init":
        setup_logging(mode="cli", debug=args.debug, debug_format=args.log_format)
        path = ensure_config(Path(args.path) if args.path else None)
        print(f"Config file: {path}")
        return 0

    overrides = {}
    if args.url:
        overrides["url"] = args.url
    if args.store:
        overrides["store"] = args.store
    if args.debug:
        overrides["debug"] = True

    try:
        config = resolve_config(overrides)
    except (ValueError, yaml.YAMLError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    setup_logging(
        mode="daemon" if args.command == "run" else "cli",
        debug=config.debug,
        log_file=args.log_file or config.log_file,
        debug_format=args.log_format,
        default_level=config.log_level,
    )

    try:
        if args.command == "run":
            asyncio.run(_run_daemon(config))
            return 0
        engine = build_engine(config)
        return args.func(engine, args)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except SyncError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


def run() -> None:
    """Entry point that handles errors gracefully."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
