"""Sync engine facade.

``SyncEngine`` wires the store, operation log, remote client, reconciler,
scheduler and status together and is the single entry point for callers
(the CLI, the daemon, importers).  Callers mutate local data only through
it so that every change to a synced key is queued.

Typical lifecycle:

1. Point the device at a remote (``configure_remote``).
2. Bootstrap once (``initialize``): adopt the remote's data or seed it.
3. ``start()`` the scheduler inside an event loop; forward visibility and
   connectivity changes with ``set_visible`` / ``set_online``.
4. Write through ``set_value`` / ``add_member`` / ``remove_member`` /
   ``update_note``; rounds upload them in the background.
5. ``aclose()`` on shutdown; an in-flight round finishes first.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from ..config import Config
from ..core.client import SyncClient
from ..core.errors import ConfigError, SyncError
from ..storage.kvs import KeyValueStore, is_internal_key
from .initializer import Bootstrapper
from .models import (
    InitResult,
    LocalEntry,
    NoteUpdate,
    Operation,
    OperationAction,
    RemoteSnapshot,
    RoundResult,
)
from .queue import OperationLog
from .reconciler import Reconciler, epoch_ms
from .scheduler import Scheduler
from .settings import SettingsStore, SyncSettings
from .status import CallLater, StatusSnapshot, SyncStatus

logger = logging.getLogger(__name__)


class SyncEngine:
    """Orchestrates local writes and sync rounds for one device.

    Args:
        config: Runtime configuration.
        store: Local key-value store.
        client: Remote client; built from *config* when omitted.
        clock: Returns the current time in epoch ms.
        call_later: Scheduling hook for the success-phase revert.
        sleep: Awaitable sleep used by the scheduler.
    """

    def __init__(
        self,
        config: Config,
        store: KeyValueStore,
        client: SyncClient | None = None,
        clock: Callable[[], int] | None = None,
        call_later: CallLater | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self._clock = clock or epoch_ms
        self._online = True

        self.settings = SettingsStore(
            store, default_interval=config.sync_interval
        )
        self.log = OperationLog(store)
        self.status = SyncStatus(
            success_display_s=config.success_display_s,
            call_later=call_later,
        )

        current = self.settings.load()
        self.client = client or SyncClient(
            config, url=current.remote_url or config.remote_url
        )

        self.reconciler = Reconciler(
            client=self.client,
            store=store,
            log=self.log,
            settings=self.settings,
            status=self.status,
            notes_key=config.notes_key,
            confirm_keys=config.confirm_keys,
            is_online=lambda: self._online,
            clock=self._clock,
        )
        self.bootstrapper = Bootstrapper(
            client=self.client,
            store=store,
            log=self.log,
            settings=self.settings,
            notes_key=config.notes_key,
            clock=self._clock,
        )
        self.scheduler = Scheduler(
            run_round=self.reconciler.run_round,
            settings=self.settings,
            status=self.status,
            clock=self._clock,
            sleep=sleep,
        )

        self._adopt_configured_url(current)
        self.status.set_last_sync(current.last_sync)
        self._refresh_pending()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def configure_remote(self, url: str) -> SyncSettings:
        """Point the device at *url*.

        Raises:
            ConfigError: The device is initialized against another URL;
                reset first.
        """
        url = url.strip()
        current = self.settings.load()
        if current.initialized and url != current.remote_url:
            raise ConfigError(
                f"Remote URL is locked to {current.remote_url} while "
                "initialized; reset sync settings to change it"
            )
        updated = self.settings.update(remote_url=url)
        self.client.url = url
        return updated

    def set_interval(self, seconds: int) -> SyncSettings:
        """Change the sync interval (validated against the allowed range)."""
        return self.settings.update(interval=seconds)

    def set_enabled(self, enabled: bool) -> SyncSettings:
        return self.settings.update(enabled=enabled)

    def enable_keys(self, keys: list[str]) -> list[str]:
        """Start syncing *keys*.

        Each newly enabled key queues its current value so the remote
        learns it on the next round.  Once initialized, the remote is told
        about the new key list; failure to do so is logged, not raised.

        Returns:
            The keys that were not already enabled.
        """
        current = self.settings.load()
        added = [
            k
            for k in dict.fromkeys(keys)
            if k not in current.enabled_keys and not is_internal_key(k)
        ]
        if not added:
            return []

        enabled_keys = current.enabled_keys + added
        self.settings.update(enabled_keys=enabled_keys)
        for key in added:
            value = self.store.get(key)
            if value is not None:
                self.log.enqueue(
                    Operation(action=OperationAction.SET, key=key, value=value)
                )
        self._refresh_pending()

        if current.initialized:
            self._push_enabled_keys(enabled_keys)
        return added

    def disable_keys(self, keys: list[str]) -> list[str]:
        """Stop syncing *keys*; returns the keys that were enabled."""
        current = self.settings.load()
        removed = [k for k in current.enabled_keys if k in keys]
        if not removed:
            return []
        enabled_keys = [k for k in current.enabled_keys if k not in removed]
        self.settings.update(enabled_keys=enabled_keys)
        if current.initialized:
            self._push_enabled_keys(enabled_keys)
        return removed

    def reset(self) -> None:
        """Forget all sync settings and pending changes (local only)."""
        self.scheduler.stop()
        self.log.clear()
        self.settings.reset()
        self.client.url = self.config.remote_url
        self.status.set_last_sync(0)
        self._refresh_pending()
        logger.info("Local sync state reset")

    # ------------------------------------------------------------------
    # Local writes
    # ------------------------------------------------------------------

    def get_value(self, key: str) -> str | None:
        return self.store.get(key)

    def set_value(self, key: str, value: str) -> bool:
        """Write *value* under *key*, queueing a ``set`` if the key is synced.

        Returns:
            True if a change was queued for upload.
        """
        self._check_writable(key)
        self.store.set(key, value)
        if not self.is_synced(key):
            return False
        changed = self.log.enqueue(
            Operation(action=OperationAction.SET, key=key, value=value)
        )
        self._refresh_pending()
        return changed

    def add_member(self, key: str, member: str) -> bool:
        """Add *member* to the delimited set under *key*.

        Returns:
            False if *member* was already present.
        """
        return self._change_member(key, member, OperationAction.ADD)

    def remove_member(self, key: str, member: str) -> bool:
        """Remove *member* from the delimited set under *key*.

        Returns:
            False if *member* was not present.
        """
        return self._change_member(key, member, OperationAction.REMOVE)

    def members(self, key: str) -> list[str]:
        raw = self.store.get(key)
        if not raw:
            return []
        return [m for m in raw.split(self.config.member_delimiter) if m]

    def notes(self) -> dict[str, Any]:
        """The local notes map."""
        raw = self.store.get(self.config.notes_key)
        if not raw:
            return {}
        try:
            notes = json.loads(raw)
        except ValueError:
            logger.warning("Notes under %s are not valid JSON", self.config.notes_key)
            return {}
        return notes if isinstance(notes, dict) else {}

    def update_note(self, entity_id: str, text: str) -> NoteUpdate:
        """Set (or with empty *text*, delete) the note for *entity_id*."""
        timestamp = self._clock()
        notes = self.notes()
        if text.strip():
            entry = notes.get(entity_id)
            notes[entity_id] = {
                **(entry if isinstance(entry, dict) else {}),
                "text": text,
                "timestamp": timestamp,
            }
        else:
            text = ""
            notes.pop(entity_id, None)
        self.store.set(self.config.notes_key, json.dumps(notes))

        update = NoteUpdate(entity_id=entity_id, text=text, timestamp=timestamp)
        self.log.enqueue_note(update)
        self._refresh_pending()
        return update

    def is_synced(self, key: str) -> bool:
        if is_internal_key(key):
            return False
        return key in self.settings.load().enabled_keys

    def local_keys(self) -> list[str]:
        """All user keys in the store (engine bookkeeping excluded)."""
        return [k for k in self.store.keys() if not is_internal_key(k)]

    def entries(self, synced_only: bool = False) -> list[LocalEntry]:
        """User keys with their sync flag, a value preview and length."""
        enabled = set(self.settings.load().enabled_keys)
        result: list[LocalEntry] = []
        for key in self.local_keys():
            value = self.store.get(key)
            if value is None:
                continue
            synced = key in enabled
            if synced_only and not synced:
                continue
            result.append(LocalEntry.from_value(key, value, synced))
        return result

    def delete_keys(self, keys: list[str]) -> list[str]:
        """Remove *keys* from the local store.

        Nothing is queued: a synced key comes back from the remote on the
        next round.  Keys that are not stored are ignored.

        Returns:
            The keys that were removed.

        Raises:
            ValueError: A key is reserved for sync bookkeeping.
        """
        for key in keys:
            self._check_writable(key)
        removed = []
        for key in dict.fromkeys(keys):
            if self.store.get(key) is None:
                continue
            self.store.remove(key)
            removed.append(key)
        if removed:
            logger.info(
                "Deleted %d local key(s): %s", len(removed), ", ".join(removed)
            )
        return removed

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        return self.client.ping()

    def initialize(self, keys: list[str] | None = None) -> InitResult:
        result = self.bootstrapper.initialize(keys)
        self.status.set_last_sync(self.settings.load().last_sync)
        self._refresh_pending()
        return result

    def clear_remote(self) -> RemoteSnapshot:
        return self.bootstrapper.clear_remote()

    def sync_once(self) -> RoundResult:
        """Run one round synchronously (no scheduler)."""
        return self.reconciler.run_round()

    async def sync_now(self) -> RoundResult:
        """Run one round from the event loop."""
        return await self.scheduler.trigger()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start periodic sync.  Must be called from a running event loop."""
        self.scheduler.start()

    async def aclose(self) -> None:
        await self.scheduler.aclose()

    def set_visible(self, visible: bool) -> None:
        self.scheduler.set_visible(visible)

    def set_online(self, online: bool) -> None:
        """Forward a connectivity change to the status and the scheduler."""
        self._online = online
        if online:
            self.status.go_online(self.settings.load().enabled)
        else:
            self.status.go_offline()
        self.scheduler.set_online(online)

    @property
    def is_online(self) -> bool:
        return self._online

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status_snapshot(self) -> StatusSnapshot:
        return self.status.snapshot()

    def status_summary(self) -> dict[str, Any]:
        """Counts and timestamps for display."""
        operations, notes = self.log.pending_count()
        settings = self.settings.load()
        return {
            "pending_operations": operations,
            "pending_notes": notes,
            "last_sync": settings.last_sync,
            "is_online": self._online,
            "phase": self.status.phase.value,
            "countdown": self.status.countdown,
            "enabled": settings.enabled,
            "initialized": settings.initialized,
            "remote_url": settings.remote_url,
            "interval": settings.interval,
            "enabled_keys": list(settings.enabled_keys),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _adopt_configured_url(self, current: SyncSettings) -> None:
        url = self.config.remote_url
        if not url or url == current.remote_url:
            return
        try:
            self.configure_remote(url)
        except ConfigError:
            logger.warning(
                "Ignoring configured remote URL %s: device is initialized against %s",
                url,
                current.remote_url,
            )
            self.client.url = current.remote_url

    def _check_writable(self, key: str) -> None:
        if not key:
            raise ValueError("Key cannot be empty")
        if is_internal_key(key):
            raise ValueError(f"Key '{key}' is reserved for sync bookkeeping")

    def _change_member(
        self, key: str, member: str, action: OperationAction
    ) -> bool:
        self._check_writable(key)
        delimiter = self.config.member_delimiter
        if not member or delimiter in member:
            raise ValueError(
                f"Invalid member '{member}': must be non-empty and not contain '{delimiter}'"
            )

        current = self.members(key)
        if action == OperationAction.ADD:
            if member in current:
                return False
            current.append(member)
        else:
            if member not in current:
                return False
            current.remove(member)
        self.store.set(key, delimiter.join(current))

        if self.is_synced(key):
            self.log.enqueue(Operation(action=action, key=key, value=member))
            self._refresh_pending()
        return True

    def _push_enabled_keys(self, keys: list[str]) -> None:
        try:
            self.client.update_enabled_keys(keys)
            logger.info("Remote enabled keys updated (%d keys)", len(keys))
        except SyncError as e:
            logger.error("Failed to update enabled keys on the remote: %s", e)

    def _refresh_pending(self) -> None:
        self.status.set_pending(*self.log.pending_count())
