"""Tests for the unified config schema and its load_config() adapter.

Covers UnifiedConfig and its section models, build_config(), and
yaml_fallbacks().
"""

import pytest
from pydantic import ValidationError

from kvsync.config import load_config
from kvsync.config_schema import (
    RemoteConfig,
    SyncConfig,
    UnifiedConfig,
    build_config,
    yaml_fallbacks,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestUnifiedConfig:
    """Tests for the top-level UnifiedConfig model."""

    def test_zero_config_defaults(self):
        config = UnifiedConfig()
        assert config.remote.url is None
        assert config.remote.interval == 60
        assert config.storage.path is None
        assert config.sync.confirm_keys == ["statusesConfig"]
        assert config.logging.level == "INFO"

    def test_full_config(self):
        config = build_config(
            {
                "remote": {"url": "https://r.example.com", "timeout": 20},
                "storage": {"path": "/data/kv.db"},
                "sync": {"notes_key": "notes", "delimiter": "|"},
                "logging": {"level": "DEBUG", "file": "/tmp/kv.log"},
            }
        )
        assert config.remote.timeout == 20
        assert config.storage.path == "/data/kv.db"
        assert config.sync.delimiter == "|"
        assert config.logging.file == "/tmp/kv.log"

    def test_build_config_empty(self):
        assert build_config({}) == UnifiedConfig()

    def test_frozen(self):
        config = UnifiedConfig()
        with pytest.raises(ValidationError):
            config.remote = RemoteConfig(url="x")


class TestValidation:
    """Range checks on section fields."""

    @pytest.mark.parametrize("timeout", [0, 301])
    def test_timeout_range(self, timeout):
        with pytest.raises(ValidationError):
            RemoteConfig(timeout=timeout)

    @pytest.mark.parametrize("interval", [59, 86401])
    def test_interval_range(self, interval):
        with pytest.raises(ValidationError):
            RemoteConfig(interval=interval)

    def test_empty_delimiter(self):
        with pytest.raises(ValidationError):
            SyncConfig(delimiter="")

    def test_negative_success_display(self):
        with pytest.raises(ValidationError):
            SyncConfig(success_display_s=-1)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class TestYamlFallbacks:
    """Tests for yaml_fallbacks() flattening."""

    def test_none_values_dropped(self):
        flat = yaml_fallbacks(UnifiedConfig())
        assert "url" not in flat
        assert "store_path" not in flat
        assert flat["interval"] == 60
        assert flat["confirm_keys"] == ["statusesConfig"]

    def test_feeds_load_config(self, monkeypatch):
        for name in ("KVSYNC_URL", "KVSYNC_STORE", "KVSYNC_TIMEOUT", "KVSYNC_INTERVAL", "KVSYNC_DEBUG"):
            monkeypatch.delenv(name, raising=False)
        unified = build_config(
            {
                "remote": {"url": "https://r.example.com/exec", "interval": 600},
                "storage": {"path": "/data/kv.db"},
                "sync": {"confirm_keys": [], "notes_key": "notes"},
            }
        )

        config = load_config(yaml_fallbacks=yaml_fallbacks(unified))

        assert config.remote_url == "https://r.example.com/exec"
        assert config.sync_interval == 600
        assert config.store_path == "/data/kv.db"
        assert config.confirm_keys == ()
        assert config.notes_key == "notes"
