"""Device bootstrap against the remote store.

A device initializes exactly once (until reset).  The remote is always
checked first:

* If it already holds data, the device **adopts** the remote's enabled
  keys and values.  Nothing is uploaded, so a second device can never
  clobber a populated store.
* If it is empty, the device **seeds** it with its notes map and its
  values for the selected keys, but only when there is something to
  upload.  Seeding nothing would leave the remote "initialized" and empty,
  so that case is refused with ``ConfigError`` instead.  Note updates
  queued after the local data was read stay queued for the first round.

If the remote cannot be read, nothing is uploaded either: the
device cannot tell an empty remote from a populated one it failed to read.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Callable

from ..core.errors import ApplicationError, ConfigError, SyncError
from ..storage.kvs import KeyValueStore, is_internal_key
from .models import InitMode, InitResult, PendingChanges, RemoteSnapshot
from .queue import OperationLog
from .reconciler import epoch_ms
from .settings import SettingsStore

if TYPE_CHECKING:
    from ..core.client import SyncClient

logger = logging.getLogger(__name__)


class Bootstrapper:
    """Runs first-contact initialization and the forced remote reset.

    Args:
        client: Remote protocol client.
        store: Local key-value store.
        log: Pending operation log (cleared once the device is in step).
        settings: Settings store updated on success.
        notes_key: Store key holding the notes map.
        clock: Returns the current time in epoch ms.
    """

    def __init__(
        self,
        client: SyncClient,
        store: KeyValueStore,
        log: OperationLog,
        settings: SettingsStore,
        notes_key: str = "userNotes",
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.log = log
        self.settings = settings
        self.notes_key = notes_key
        self._clock = clock or epoch_ms

    def initialize(self, keys: list[str] | None = None) -> InitResult:
        """Check the remote, then adopt its data or seed it with ours.

        Args:
            keys: Keys to sync when seeding.  Defaults to the keys already
                enabled in settings.

        Raises:
            ConfigError: No keys are selected (or none of them hold data)
                and the remote has nothing to adopt.
            SyncError: Reading or seeding the remote failed.
        """
        settings = self.settings.load()
        if not settings.remote_url:
            raise ConfigError("Remote URL is not configured")

        selected = [
            k
            for k in (keys if keys is not None else settings.enabled_keys)
            if not is_internal_key(k)
        ]

        try:
            found = self._read_remote()
        except SyncError as e:
            if not selected:
                raise ConfigError(
                    "Cannot initialize: no keys selected and the remote "
                    f"could not be checked ({e})"
                ) from e
            logger.error("Initialization could not read the remote: %s", e)
            raise

        if found.has_data:
            return self._adopt(found)
        return self._seed(selected)

    def clear_remote(self) -> RemoteSnapshot:
        """Erase all remote data.  The device must initialize again afterwards."""
        logger.warning("Clearing all remote data (forced initialize)")
        snapshot = self.client.initialize({}, [], force=True)
        self.settings.update(initialized=False, enabled=False)
        return snapshot

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_remote(self) -> RemoteSnapshot:
        try:
            return self.client.get_storage([])
        except ApplicationError as e:
            # Older remotes only understand ``sync``; an empty queue is a
            # read-only request for them.
            logger.info(
                "get_storage rejected (%s), reading with an empty sync", e
            )
            return self.client.sync(PendingChanges())

    def _adopt(self, found: RemoteSnapshot) -> InitResult:
        remote_keys = [
            k
            for k in (found.enabled_keys or list(found.values))
            if not is_internal_key(k)
        ]
        snapshot = found
        if remote_keys and not found.values:
            snapshot = self.client.get_storage(remote_keys)

        applied: list[str] = []
        for key, value in snapshot.values.items():
            if key in remote_keys:
                self.store.set(key, value)
                applied.append(key)
        if snapshot.notes is not None:
            self.store.set(self.notes_key, json.dumps(snapshot.notes))

        self.log.clear()
        self.settings.update(
            enabled_keys=remote_keys,
            initialized=True,
            enabled=True,
            last_sync=self._clock(),
        )
        logger.info(
            "Adopted remote configuration: %d keys, %d values downloaded",
            len(remote_keys),
            len(applied),
        )
        return InitResult(
            mode=InitMode.ADOPTED,
            enabled_keys=remote_keys,
            applied_keys=applied,
            message=(
                f"Downloaded {len(applied)} key(s) from the remote"
            ),
        )

    def _seed(self, selected: list[str]) -> InitResult:
        notes = self._local_notes()
        if not selected and not notes:
            raise ConfigError(
                "Cannot initialize: no keys selected. Enable sync for at "
                "least one key before initializing."
            )

        # Everything queued so far is covered by the values read below.
        covered = self.log.drain()
        init_data: dict[str, str] = {}
        for key in selected:
            value = self.store.get(key)
            if value is not None:
                init_data[key] = value
        if not init_data and not notes:
            raise ConfigError(
                "Cannot initialize: none of the selected keys hold local data"
            )

        logger.info(
            "Remote is empty, seeding it with %d of %d selected keys and %d notes",
            len(init_data),
            len(selected),
            len(notes),
        )
        snapshot = self.client.initialize(
            init_data, selected, notes=notes or None
        )

        self.log.discard(covered)
        self.settings.update(
            enabled_keys=selected,
            initialized=True,
            enabled=True,
            last_sync=self._clock(),
        )
        return InitResult(
            mode=InitMode.SEEDED,
            enabled_keys=selected,
            applied_keys=sorted(init_data),
            message=snapshot.message
            or f"Uploaded {len(init_data)} key(s) and {len(notes)} note(s)",
        )

    def _local_notes(self) -> dict[str, Any]:
        raw = self.store.get(self.notes_key)
        if not raw:
            return {}
        try:
            notes = json.loads(raw)
        except ValueError:
            logger.warning(
                "Notes under %s are not valid JSON, not seeding them",
                self.notes_key,
            )
            return {}
        return notes if isinstance(notes, dict) else {}
