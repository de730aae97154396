"""Queue reduction rules applied when a mutation is enqueued.

Both functions are pure: they take the current queue and return the new
one, leaving persistence to ``OperationLog``.

Operation rules, scanning the queue from newest to oldest:

1. Same key/value and same action -- the new entry is a duplicate and is
   dropped.
2. Same key/value and opposite action (add vs remove) -- the pending
   entry is removed and the new one is dropped; together they are a no-op.
3. A ``set`` replaces any earlier pending ``set`` on the same key, since
   only the last full value matters.
4. Otherwise the new entry is appended.

Note rule: one pending update per entity id; the newest wins.
"""

from __future__ import annotations

import logging

from .models import NoteUpdate, Operation, OperationAction

logger = logging.getLogger(__name__)


def coalesce(
    operations: list[Operation], new_op: Operation
) -> tuple[list[Operation], bool]:
    """Fold *new_op* into *operations*.

    Args:
        operations: Current queue, oldest first.
        new_op: The mutation being enqueued.

    Returns:
        ``(queue, changed)`` where ``changed`` is False when the queue is
        identical to the input.
    """
    result = list(operations)

    if new_op.action == OperationAction.SET:
        return _coalesce_set(result, new_op)

    for index in range(len(result) - 1, -1, -1):
        existing = result[index]
        if not existing.same_target(new_op):
            continue
        if existing.action == new_op.action:
            logger.debug(
                "Dropping duplicate %s %s=%s",
                new_op.action.value,
                new_op.key,
                new_op.value,
            )
            return result, False
        if existing.action.opposite == new_op.action:
            del result[index]
            logger.debug(
                "Cancelled %s against pending %s for %s=%s",
                new_op.action.value,
                existing.action.value,
                new_op.key,
                new_op.value,
            )
            return result, True

    result.append(new_op)
    return result, True


def _coalesce_set(
    operations: list[Operation], new_op: Operation
) -> tuple[list[Operation], bool]:
    # At most one pending set per key survives, so comparing against the
    # newest one is enough to detect a duplicate.
    pending = [
        op
        for op in operations
        if op.action == OperationAction.SET and op.key == new_op.key
    ]
    if pending and pending[-1].value == new_op.value:
        logger.debug("Dropping duplicate set for %s", new_op.key)
        return operations, False

    result = [op for op in operations if op not in pending]
    result.append(new_op)
    return result, True


def supersede_note(
    notes: list[NoteUpdate], update: NoteUpdate
) -> list[NoteUpdate]:
    """Return *notes* with any pending update for the same entity replaced."""
    kept = [n for n in notes if n.entity_id != update.entity_id]
    kept.append(update)
    return kept
