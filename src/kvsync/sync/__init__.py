"""Key-value sync engine.

Keeps a local key-value store eventually consistent with a remote store
reached only through request/response calls.

Modules:

- ``models``      -- ``Operation``, ``NoteUpdate``, ``PendingChanges``,
  ``RemoteSnapshot``, ``RoundResult`` and the phase/outcome enums.
- ``coalescer``   -- queue reduction rules applied on enqueue.
- ``queue``       -- ``OperationLog``: the persisted upload queue.
- ``settings``    -- ``SyncSettings`` / ``SettingsStore``.
- ``status``      -- ``SyncStatus``: observable lifecycle phase.
- ``reconciler``  -- ``Reconciler``: one upload-then-download round.
- ``scheduler``   -- ``Scheduler``: when rounds run.
- ``initializer`` -- ``Bootstrapper``: adopt-or-seed first contact.
- ``engine``      -- ``SyncEngine``: facade used by the CLI.
- ``reporter``    -- human-readable and JSON output.

Only the dependency-free modules are re-exported here; import
``kvsync.sync.engine`` for the facade.
"""

from .coalescer import coalesce, supersede_note
from .models import (
    InitMode,
    InitResult,
    NoteUpdate,
    Operation,
    OperationAction,
    PendingChanges,
    RemoteSnapshot,
    RoundOutcome,
    RoundResult,
    SyncPhase,
)
from .queue import OperationLog
from .settings import SettingsStore, SyncSettings
from .status import StatusSnapshot, SyncStatus

__all__ = [
    "InitMode",
    "InitResult",
    "NoteUpdate",
    "Operation",
    "OperationAction",
    "OperationLog",
    "PendingChanges",
    "RemoteSnapshot",
    "RoundOutcome",
    "RoundResult",
    "SettingsStore",
    "StatusSnapshot",
    "SyncPhase",
    "SyncSettings",
    "SyncStatus",
    "coalesce",
    "supersede_note",
]
