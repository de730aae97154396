"""Pydantic models for the key-value sync engine.

Defines the data contracts shared across the sync modules:

- ``OperationAction`` / ``Operation``: one queued mutation of a synced key.
- ``NoteUpdate``: latest pending text for one note entity.
- ``PendingChanges``: the persisted upload queue.
- ``RemoteSnapshot``: the canonical shape of every remote response.
- ``SyncPhase`` / ``RoundOutcome`` / ``RoundResult``: round bookkeeping.
- ``InitMode`` / ``InitResult``: outcome of bootstrapping a device.
- ``LocalEntry``: one stored key with its sync flag and a value preview.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OperationAction(str, Enum):
    """Mutation kinds understood by the remote."""

    ADD = "add"
    REMOVE = "remove"
    SET = "set"

    @property
    def opposite(self) -> OperationAction | None:
        """The action that cancels this one, if any."""
        if self is OperationAction.ADD:
            return OperationAction.REMOVE
        if self is OperationAction.REMOVE:
            return OperationAction.ADD
        return None


class Operation(BaseModel):
    """A single queued mutation.

    Attributes:
        action: ``add``/``remove`` for delimited-set keys, ``set`` to
            replace the whole value.
        key: The synced key being changed.
        value: Member id for add/remove, full value for set.
    """

    action: OperationAction
    key: str
    value: str

    model_config = {"frozen": True}

    def same_target(self, other: Operation) -> bool:
        return self.key == other.key and self.value == other.value


class NoteUpdate(BaseModel):
    """Latest pending text for a note entity.

    An empty ``text`` means the note was deleted.
    """

    entity_id: str = Field(alias="entityId")
    text: str = ""
    timestamp: int = 0

    model_config = {"frozen": True, "populate_by_name": True}


class PendingChanges(BaseModel):
    """Everything waiting to be uploaded."""

    operations: list[Operation] = []
    notes: list[NoteUpdate] = []

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.operations and not self.notes

    def to_wire(self) -> dict[str, Any]:
        """Return the ``queue`` payload sent with a ``sync`` request."""
        return self.model_dump(mode="json", by_alias=True)


class RemoteSnapshot(BaseModel):
    """Normalised content of a successful remote response.

    Attributes:
        values: Full current value per synced key.  A key that is absent
            is unchanged, never deleted.
        notes: The complete notes map, when the remote returned one.
        initialized: Whether the remote reports it has been bootstrapped.
        enabled_keys: The remote's list of synced keys, when returned.
        message: Optional human-readable message from the remote.
    """

    values: dict[str, str] = {}
    notes: dict[str, Any] | None = None
    initialized: bool | None = None
    enabled_keys: list[str] | None = None
    message: str | None = None

    model_config = {"frozen": True}

    @property
    def has_data(self) -> bool:
        """True when the remote holds keys, values or notes.

        A remote that reports ``initialized`` with nothing in it still
        counts as empty.
        """
        return bool(self.values or self.enabled_keys or self.notes)


class SyncPhase(str, Enum):
    """Lifecycle phases exposed to the presentation layer."""

    OFFLINE = "offline"
    NORMAL = "normal"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class RoundOutcome(str, Enum):
    """How a call to ``Reconciler.run_round`` ended."""

    SKIPPED_NOT_CONFIGURED = "skipped_not_configured"
    SKIPPED_OFFLINE = "skipped_offline"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    SUCCESS = "success"
    FAILED = "failed"


class RoundResult(BaseModel):
    """Report for one reconciliation round.

    Attributes:
        outcome: How the round ended.
        sent_operations: Operations included in the upload.
        sent_notes: Note updates included in the upload.
        applied_keys: Synced keys overwritten from the snapshot.
        requeued: Operations put back because the remote did not confirm them.
        notes_applied: Whether the notes map was replaced.
        error: Error message for failed rounds.
        error_kind: ``SyncError.kind`` for failed rounds.
        started_at: Epoch ms when the round started.
        completed_at: Epoch ms when the round finished.
    """

    outcome: RoundOutcome
    sent_operations: int = 0
    sent_notes: int = 0
    applied_keys: list[str] = []
    requeued: list[Operation] = []
    notes_applied: bool = False
    error: str | None = None
    error_kind: str | None = None
    started_at: int | None = None
    completed_at: int | None = None

    model_config = {"frozen": True}

    @property
    def succeeded(self) -> bool:
        return self.outcome == RoundOutcome.SUCCESS

    @property
    def skipped(self) -> bool:
        return self.outcome in (
            RoundOutcome.SKIPPED_NOT_CONFIGURED,
            RoundOutcome.SKIPPED_OFFLINE,
            RoundOutcome.SKIPPED_IN_FLIGHT,
        )


class InitMode(str, Enum):
    """Which path device bootstrap took."""

    ADOPTED = "adopted"
    SEEDED = "seeded"


class InitResult(BaseModel):
    """Outcome of ``Bootstrapper.initialize``."""

    mode: InitMode
    enabled_keys: list[str]
    applied_keys: list[str] = []
    message: str | None = None

    model_config = {"frozen": True}


PREVIEW_LENGTH = 50


class LocalEntry(BaseModel):
    """One user key in the local store, as listed for inspection."""

    key: str
    synced: bool
    preview: str
    length: int

    model_config = {"frozen": True}

    @classmethod
    def from_value(cls, key: str, value: str, synced: bool) -> LocalEntry:
        preview = value
        if len(value) > PREVIEW_LENGTH:
            preview = value[:PREVIEW_LENGTH] + "..."
        return cls(key=key, synced=synced, preview=preview, length=len(value))
