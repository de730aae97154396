"""Sync status and round report formatting.

Provides human-readable and machine-readable output for the CLI:

- ``format_countdown`` -- compact countdown label ("Sync now", "4m 05s", "12s").
- ``format_round_result`` -- one round's outcome.
- ``format_init_result`` -- outcome of device bootstrap.
- ``format_status`` -- multi-line status summary.
- ``status_to_json`` -- structured dict for ``--json`` output.
- ``format_entries`` -- table of local keys for ``kvsync list``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from .models import InitMode, RoundOutcome

if TYPE_CHECKING:
    from .models import InitResult, LocalEntry, RoundResult

_SKIP_REASONS = {
    RoundOutcome.SKIPPED_NOT_CONFIGURED: "remote not configured or not initialized",
    RoundOutcome.SKIPPED_OFFLINE: "offline",
    RoundOutcome.SKIPPED_IN_FLIGHT: "a round is already in progress",
}


def format_countdown(seconds: float | None) -> str:
    """Label for the time left until the next round."""
    if seconds is None:
        return "-"
    remaining = int(seconds)
    if remaining <= 0:
        return "Sync now"
    minutes, secs = divmod(remaining, 60)
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def format_timestamp(epoch_ms: int) -> str:
    """ISO 8601 UTC rendering of an epoch-ms timestamp; "never" for 0."""
    if not epoch_ms:
        return "never"
    return (
        datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
        .replace(microsecond=0)
        .isoformat()
    )


def format_round_result(result: RoundResult) -> str:
    """Format one round's outcome as human-readable text."""
    if result.outcome in _SKIP_REASONS:
        return f"Sync skipped: {_SKIP_REASONS[result.outcome]}"

    if result.outcome == RoundOutcome.FAILED:
        return (
            f"Sync failed ({result.error_kind}): {result.error}\n"
            f"{result.sent_operations} operations and {result.sent_notes} "
            "note updates kept for the next round"
        )

    lines = [
        f"Sync succeeded: sent {result.sent_operations} operations, "
        f"{result.sent_notes} note updates; "
        f"updated {len(result.applied_keys)} keys"
    ]
    if result.notes_applied:
        lines.append("Notes replaced from remote")
    if result.requeued:
        lines.append("Not confirmed by remote (queued again):")
        for op in result.requeued:
            lines.append(f"  {op.key}")
    return "\n".join(lines)


def format_init_result(result: InitResult) -> str:
    if result.mode == InitMode.ADOPTED:
        header = (
            f"Adopted existing remote configuration "
            f"({len(result.enabled_keys)} keys)"
        )
    else:
        header = f"Seeded remote with {len(result.applied_keys)} keys"
    lines = [header]
    for key in result.enabled_keys:
        lines.append(f"  {key}")
    if result.message:
        lines.append(result.message)
    return "\n".join(lines)


def format_status(summary: dict[str, Any]) -> str:
    """Format ``SyncEngine.status_summary()`` as human-readable text."""
    lines = [
        f"Remote: {summary.get('remote_url') or '(not set)'}",
        f"Initialized: {'yes' if summary.get('initialized') else 'no'}",
        f"Auto-sync: {'on' if summary.get('enabled') else 'off'}"
        f" (every {summary.get('interval')}s)",
        f"Status: {summary.get('phase')}"
        + ("" if summary.get("is_online", True) else " (offline)"),
        f"Last sync: {format_timestamp(summary.get('last_sync', 0))}",
        f"Pending: {summary.get('pending_operations', 0)} operations, "
        f"{summary.get('pending_notes', 0)} note updates",
    ]
    if summary.get("countdown") is not None:
        lines.append(f"Next sync: {format_countdown(summary['countdown'])}")
    keys = summary.get("enabled_keys") or []
    lines.append(f"Synced keys ({len(keys)}):")
    for key in keys:
        lines.append(f"  {key}")
    return "\n".join(lines)


def status_to_json(summary: dict[str, Any]) -> dict[str, Any]:
    """Structured status for ``--json`` output."""
    return {
        **summary,
        "last_sync_iso": (
            format_timestamp(summary["last_sync"])
            if summary.get("last_sync")
            else None
        ),
    }


def format_entries(entries: list[LocalEntry]) -> str:
    """Table of local keys: sync flag, key, length and a value preview."""
    if not entries:
        return "No local data"
    width = max(len(entry.key) for entry in entries)
    lines = []
    for entry in entries:
        mark = "*" if entry.synced else " "
        unit = "char" if entry.length == 1 else "chars"
        lines.append(
            f"{mark} {entry.key:<{width}}  {entry.length:>6} {unit:<5}  {entry.preview}"
        )
    lines.append("(* = synced)")
    return "\n".join(lines)
