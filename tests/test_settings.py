"""Tests for per-device sync settings.

Covers:
- Defaults when nothing is stored or the stored document is unreadable
- update() validates, persists and notifies subscribers
- Interval range enforcement
- reset() and unsubscribe
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from kvsync.storage.kvs import MemoryStore
from kvsync.sync.settings import SETTINGS_KEY, SettingsStore, SyncSettings


class TestLoad:
    def test_defaults(self, store: MemoryStore):
        settings = SettingsStore(store).load()
        assert settings == SyncSettings()
        assert settings.interval == 60
        assert settings.enabled is False
        assert settings.is_configured is False

    def test_unreadable_settings_fall_back_to_defaults(
        self, store: MemoryStore, caplog
    ):
        store.set(SETTINGS_KEY, "[1, 2")
        assert SettingsStore(store).load() == SyncSettings()
        assert "unreadable sync settings" in caplog.text

    def test_is_configured_needs_url_and_initialized(self):
        assert not SyncSettings(remote_url="https://x").is_configured
        assert not SyncSettings(initialized=True).is_configured
        assert SyncSettings(remote_url="https://x", initialized=True).is_configured

    def test_default_interval_used_until_stored(self, store: MemoryStore):
        settings = SettingsStore(store, default_interval=300)
        assert settings.load().interval == 300
        settings.update(interval=120)
        assert SettingsStore(store, default_interval=300).load().interval == 120


class TestUpdate:
    """Tests for SettingsStore.update()."""

    def test_update_persists(self, store: MemoryStore):
        SettingsStore(store).update(interval=300, enabled=True)
        loaded = SettingsStore(store).load()
        assert loaded.interval == 300
        assert loaded.enabled is True

    def test_update_keeps_other_fields(self, store: MemoryStore):
        settings = SettingsStore(store)
        settings.update(remote_url="https://remote.example.com")
        settings.update(enabled_keys=["a"])
        assert settings.load().remote_url == "https://remote.example.com"

    @pytest.mark.parametrize("interval", [0, 59, 86401])
    def test_interval_out_of_range_rejected(self, store: MemoryStore, interval):
        settings = SettingsStore(store)
        with pytest.raises(ValidationError):
            settings.update(interval=interval)
        assert settings.load().interval == 60

    def test_subscribers_receive_old_and_new(self, store: MemoryStore):
        settings = SettingsStore(store)
        seen = []
        settings.subscribe(lambda old, new: seen.append((old.interval, new.interval)))
        settings.update(interval=120)
        assert seen == [(60, 120)]

    def test_no_notification_without_change(self, store: MemoryStore):
        settings = SettingsStore(store)
        seen = []
        settings.subscribe(lambda old, new: seen.append(new))
        settings.update(interval=60)
        assert seen == []

    def test_unsubscribe(self, store: MemoryStore):
        settings = SettingsStore(store)
        seen = []
        unsubscribe = settings.subscribe(lambda old, new: seen.append(new))
        unsubscribe()
        settings.update(enabled=True)
        assert seen == []

    def test_failing_listener_does_not_block_update(self, store: MemoryStore):
        settings = SettingsStore(store)

        def _broken(old, new):
            raise RuntimeError("listener bug")

        seen = []
        settings.subscribe(_broken)
        settings.subscribe(lambda old, new: seen.append(new.enabled))
        settings.update(enabled=True)
        assert seen == [True]
        assert settings.load().enabled is True


class TestReset:
    def test_reset_returns_to_defaults(self, store: MemoryStore):
        settings = SettingsStore(store)
        settings.update(initialized=True, enabled_keys=["a"])
        settings.reset()
        assert store.get(SETTINGS_KEY) is None
        assert settings.load() == SyncSettings()

    def test_reset_notifies(self, store: MemoryStore):
        settings = SettingsStore(store)
        settings.update(enabled=True)
        seen = []
        settings.subscribe(lambda old, new: seen.append((old.enabled, new.enabled)))
        settings.reset()
        assert seen == [(True, False)]
