"""One reconciliation round between the local store and the remote.

``Reconciler.run_round`` is the only code that writes synced keys from
remote data.  A round:

1. Skips when the remote is not configured or the device is offline.
2. Refuses to start while another round of the same instance is running.
3. Uploads the pending queue without clearing it.
4. On success overwrites every enabled key present in the snapshot,
   replaces the notes map, drops the uploaded entries from the queue and
   records ``last_sync``.
5. On failure, whether from the remote or while applying its snapshot,
   leaves the queue untouched so the next round resends it.

Keys listed in ``confirm_keys`` get an extra check: a ``set`` on one of
them only counts as synced when the snapshot echoes the value that was
sent.  Otherwise the local value is kept and the ``set`` is queued again,
unless a newer ``set`` on that key was queued while the round ran.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import TYPE_CHECKING, Callable

from ..core.errors import ApplicationError, SyncError
from ..storage.kvs import KeyValueStore, is_internal_key
from .models import (
    Operation,
    OperationAction,
    PendingChanges,
    RemoteSnapshot,
    RoundOutcome,
    RoundResult,
)
from .queue import OperationLog
from .settings import SettingsStore
from .status import SyncStatus

if TYPE_CHECKING:
    from ..core.client import SyncClient

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Reconciler:
    """Runs sync rounds for one engine instance.

    Args:
        client: Remote protocol client.
        store: Local key-value store.
        log: Pending operation log.
        settings: Settings store (``last_sync`` is written here).
        status: Observable status updated as the round progresses.
        notes_key: Store key holding the notes map.
        confirm_keys: Keys whose ``set`` must be confirmed by the snapshot.
        is_online: Returns the last known connectivity state.
        clock: Returns the current time in epoch ms.
    """

    def __init__(
        self,
        client: SyncClient,
        store: KeyValueStore,
        log: OperationLog,
        settings: SettingsStore,
        status: SyncStatus,
        notes_key: str = "userNotes",
        confirm_keys: tuple[str, ...] = (),
        is_online: Callable[[], bool] | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.log = log
        self.settings = settings
        self.status = status
        self.notes_key = notes_key
        self.confirm_keys = tuple(confirm_keys)
        self._is_online = is_online or (lambda: True)
        self._clock = clock or epoch_ms
        self._round_lock = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._round_lock.locked()

    def run_round(self) -> RoundResult:
        """Run one round and report how it ended.

        Never raises for round failures; they are reported in the result
        and reflected in ``status``.
        """
        settings = self.settings.load()
        if not settings.is_configured:
            logger.debug("Sync skipped: remote not configured or not initialized")
            return RoundResult(outcome=RoundOutcome.SKIPPED_NOT_CONFIGURED)
        if not self._is_online():
            logger.debug("Sync skipped: offline")
            return RoundResult(outcome=RoundOutcome.SKIPPED_OFFLINE)

        if not self._round_lock.acquire(blocking=False):
            logger.debug("Sync skipped: a round is already in flight")
            return RoundResult(outcome=RoundOutcome.SKIPPED_IN_FLIGHT)

        try:
            return self._run_locked(settings.enabled_keys)
        finally:
            self._round_lock.release()

    # ------------------------------------------------------------------
    # Round body
    # ------------------------------------------------------------------

    def _run_locked(self, enabled_keys: list[str]) -> RoundResult:
        started_at = self._clock()
        self.status.begin_round(connected=True)

        pending = self.log.drain()
        logger.info(
            "Sync round started: %d operations, %d note updates",
            len(pending.operations),
            len(pending.notes),
        )

        try:
            snapshot = self.client.sync(pending)
            return self._commit(pending, snapshot, enabled_keys, started_at)
        except SyncError as e:
            return self._fail(pending, e, started_at)
        except Exception as e:
            logger.exception("Unexpected error during sync round")
            return self._fail(pending, e, started_at)

    def _commit(
        self,
        pending: PendingChanges,
        snapshot: RemoteSnapshot,
        enabled_keys: list[str],
        started_at: int,
    ) -> RoundResult:
        attempted = self._attempted_confirm_values(pending)
        unconfirmed = {
            key: value
            for key, value in attempted.items()
            if snapshot.values.get(key) != value
        }

        applied = self._apply_values(snapshot, enabled_keys, unconfirmed)
        notes_applied = self._apply_notes(snapshot)
        completed_at = self._clock()
        self.settings.update(last_sync=completed_at)

        # The queue changes last so a failure above leaves it as it was.
        self.log.discard(pending)
        requeued = self._requeue_unconfirmed(unconfirmed)

        self.status.set_pending(*self.log.pending_count())
        self.status.succeed(completed_at)

        logger.info(
            "Sync round succeeded: %d keys applied, %d re-queued",
            len(applied),
            len(requeued),
        )
        return RoundResult(
            outcome=RoundOutcome.SUCCESS,
            sent_operations=len(pending.operations),
            sent_notes=len(pending.notes),
            applied_keys=applied,
            requeued=requeued,
            notes_applied=notes_applied,
            started_at=started_at,
            completed_at=completed_at,
        )

    def _requeue_unconfirmed(
        self, unconfirmed: dict[str, str]
    ) -> list[Operation]:
        if not unconfirmed:
            return []
        # A set queued during the round is newer than the one that was lost.
        superseded = {
            op.key
            for op in self.log.drain().operations
            if op.action == OperationAction.SET
        }
        requeued: list[Operation] = []
        for key, value in unconfirmed.items():
            if key in superseded:
                logger.info(
                    "Remote did not confirm update of %s; "
                    "a newer local value is already queued",
                    key,
                )
                continue
            logger.warning(
                "Remote did not confirm update of %s; keeping local value and re-queuing",
                key,
            )
            op = Operation(action=OperationAction.SET, key=key, value=value)
            self.log.enqueue(op)
            requeued.append(op)
        return requeued

    def _fail(
        self, pending: PendingChanges, error: Exception, started_at: int
    ) -> RoundResult:
        kind = getattr(error, "kind", "unexpected")
        message = str(error) or type(error).__name__
        if isinstance(error, ApplicationError):
            logger.error(
                "Sync round failed (%s): %s [%s]",
                kind,
                message,
                error.context(),
            )
        else:
            logger.warning("Sync round failed (%s): %s", kind, message)
        self.status.fail(message)
        return RoundResult(
            outcome=RoundOutcome.FAILED,
            sent_operations=len(pending.operations),
            sent_notes=len(pending.notes),
            error=message,
            error_kind=kind,
            started_at=started_at,
            completed_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Snapshot application
    # ------------------------------------------------------------------

    def _attempted_confirm_values(
        self, pending: PendingChanges
    ) -> dict[str, str]:
        """Last value sent per confirm key."""
        attempted: dict[str, str] = {}
        for op in pending.operations:
            if op.action == OperationAction.SET and op.key in self.confirm_keys:
                attempted[op.key] = op.value
        return attempted

    def _apply_values(
        self,
        snapshot: RemoteSnapshot,
        enabled_keys: list[str],
        keep_local: dict[str, str],
    ) -> list[str]:
        applied: list[str] = []
        enabled = set(enabled_keys)
        for key, value in snapshot.values.items():
            if key not in enabled or is_internal_key(key):
                logger.debug("Ignoring snapshot value for unsynced key %s", key)
                continue
            if key in keep_local:
                continue
            self.store.set(key, value)
            applied.append(key)
        return applied

    def _apply_notes(self, snapshot: RemoteSnapshot) -> bool:
        if snapshot.notes is None:
            return False
        self.store.set(self.notes_key, json.dumps(snapshot.notes))
        return True
