"""Per-device sync settings with change notification.

``SyncSettings`` is an immutable snapshot.  ``SettingsStore`` persists it
in the local key-value store and is the only way to change it: every
``update()`` validates the new values, writes them, and notifies
subscribers (the scheduler re-arms its timer this way).
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from ..config import MAX_SYNC_INTERVAL, MIN_SYNC_INTERVAL
from ..storage.kvs import INTERNAL_PREFIX, KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = f"{INTERNAL_PREFIX}settings"

SettingsListener = Callable[["SyncSettings", "SyncSettings"], None]


class SyncSettings(BaseModel):
    """Device-local sync settings.

    Attributes:
        remote_url: Endpoint of the remote store.
        enabled: Whether periodic sync runs.
        interval: Seconds between rounds.
        last_sync: Epoch ms of the last successful round (0 = never).
        initialized: Whether this device has bootstrapped against the remote.
        enabled_keys: Keys reconciled with the remote.
    """

    remote_url: str = ""
    enabled: bool = False
    interval: int = Field(
        default=MIN_SYNC_INTERVAL,
        ge=MIN_SYNC_INTERVAL,
        le=MAX_SYNC_INTERVAL,
    )
    last_sync: int = 0
    initialized: bool = False
    enabled_keys: list[str] = []

    model_config = {"frozen": True}

    @property
    def is_configured(self) -> bool:
        return bool(self.remote_url) and self.initialized


class SettingsStore:
    """Load, update and reset ``SyncSettings`` in a key-value store.

    Args:
        store: Key-value store holding the settings document.
        key: Store key for the settings document.
        default_interval: Interval reported until one has been stored.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = SETTINGS_KEY,
        default_interval: int = MIN_SYNC_INTERVAL,
    ) -> None:
        self._store = store
        self._key = key
        self._defaults = SyncSettings(interval=default_interval)
        self._lock = threading.Lock()
        self._listeners: list[SettingsListener] = []

    def load(self) -> SyncSettings:
        """Return the stored settings, or defaults when absent or unreadable."""
        raw = self._store.get(self._key)
        if not raw:
            return self._defaults
        try:
            return SyncSettings.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("Ignoring unreadable sync settings: %s", e)
            return self._defaults

    def update(self, **changes: Any) -> SyncSettings:
        """Apply *changes*, persist them and notify subscribers.

        Raises:
            pydantic.ValidationError: If a value is out of range (for
                example an interval below the minimum).
        """
        with self._lock:
            old = self.load()
            new = SyncSettings.model_validate(
                {**old.model_dump(), **changes}
            )
            self._store.set(self._key, new.model_dump_json())
        if new != old:
            self._notify(old, new)
        return new

    def reset(self) -> SyncSettings:
        """Delete stored settings, returning to defaults."""
        with self._lock:
            old = self.load()
            self._store.remove(self._key)
        new = self._defaults
        logger.info("Sync settings reset to defaults")
        self._notify(old, new)
        return new

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register *listener* for ``(old, new)`` changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, old: SyncSettings, new: SyncSettings) -> None:
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception:
                logger.exception("Settings listener failed")
