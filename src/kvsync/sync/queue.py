"""Persistent operation log built on the local key-value store.

The log lives as one JSON document under ``PENDING_CHANGES_KEY``.  Every
method re-reads that document, so several ``OperationLog`` instances (or
processes) sharing one store always see the same queue.  Only ``enqueue``,
``enqueue_note``, ``discard`` and ``clear`` write it.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from ..storage.kvs import INTERNAL_PREFIX, KeyValueStore
from .coalescer import coalesce, supersede_note
from .models import NoteUpdate, Operation, PendingChanges

logger = logging.getLogger(__name__)

PENDING_CHANGES_KEY = f"{INTERNAL_PREFIX}pendingChanges"


class OperationLog:
    """Queue of local mutations waiting for the next successful round.

    Args:
        store: Key-value store holding the serialized queue.
        key: Store key for the queue document.
    """

    def __init__(
        self, store: KeyValueStore, key: str = PENDING_CHANGES_KEY
    ) -> None:
        self._store = store
        self._key = key

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def drain(self) -> PendingChanges:
        """Return the current queue without clearing it."""
        raw = self._store.get(self._key)
        if not raw:
            return PendingChanges()
        try:
            return PendingChanges.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error(
                "Discarding unreadable pending changes under %s: %s",
                self._key,
                e,
            )
            return PendingChanges()

    def pending_count(self) -> tuple[int, int]:
        """Return ``(operations, notes)`` waiting to be uploaded."""
        pending = self.drain()
        return len(pending.operations), len(pending.notes)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def enqueue(self, op: Operation) -> bool:
        """Add *op* after applying the coalescing rules.

        Returns:
            True if the stored queue changed.
        """
        pending = self.drain()
        operations, changed = coalesce(pending.operations, op)
        if changed:
            self._save(
                PendingChanges(operations=operations, notes=pending.notes)
            )
            logger.debug(
                "Queued %s %s=%s (%d pending)",
                op.action.value,
                op.key,
                op.value,
                len(operations),
            )
        return changed

    def enqueue_note(self, update: NoteUpdate) -> None:
        """Queue *update*, replacing any pending update for the same entity."""
        pending = self.drain()
        notes = supersede_note(pending.notes, update)
        self._save(PendingChanges(operations=pending.operations, notes=notes))
        logger.debug("Queued note update for %s", update.entity_id)

    def discard(self, sent: PendingChanges) -> None:
        """Remove the entries of *sent* that are still queued.

        Entries queued after *sent* was drained are kept, so writes made
        while a round was in flight go out with the next round.
        """
        pending = self.drain()
        sent_ops = list(sent.operations)
        remaining_ops: list[Operation] = []
        for op in pending.operations:
            if op in sent_ops:
                sent_ops.remove(op)
            else:
                remaining_ops.append(op)
        sent_notes = set(sent.notes)
        remaining_notes = [n for n in pending.notes if n not in sent_notes]
        if remaining_ops or remaining_notes:
            self._save(
                PendingChanges(
                    operations=remaining_ops, notes=remaining_notes
                )
            )
        else:
            self.clear()

    def clear(self) -> None:
        """Empty the queue with a single store write."""
        self._save(PendingChanges())

    def _save(self, pending: PendingChanges) -> None:
        self._store.set(self._key, json.dumps(pending.to_wire()))
