"""Unified configuration schema for kvsync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote, local storage, sync behaviour and logging, plus
the adapter that flattens them into ``load_config()`` fallbacks.

Usage:
    from kvsync.config_schema import build_config, yaml_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(url=..., yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from .config import MAX_SYNC_INTERVAL, MIN_SYNC_INTERVAL

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote store connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="Remote endpoint URL")
    timeout: float = Field(
        default=30.0,
        ge=1,
        le=300,
        description="Request timeout in seconds (1-300)",
    )
    ping_timeout: float = Field(
        default=10.0, ge=1, le=300, description="Ping timeout in seconds"
    )
    interval: int = Field(
        default=MIN_SYNC_INTERVAL,
        ge=MIN_SYNC_INTERVAL,
        le=MAX_SYNC_INTERVAL,
        description="Default sync interval in seconds",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Local store location."""

    path: str | None = Field(
        default=None, description="SQLite store file path"
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync behaviour knobs.

    Attributes:
        notes_key: Store key holding the notes map.
        confirm_keys: Keys whose ``set`` must be echoed back by the remote
            before it counts as synced.
        delimiter: Separator for delimited-set values.
        success_display_s: Seconds the success phase stays visible.
    """

    notes_key: str = Field(default="userNotes")
    confirm_keys: list[str] = Field(
        default_factory=lambda: ["statusesConfig"]
    )
    delimiter: str = Field(default=",", min_length=1)
    success_display_s: float = Field(default=2.0, ge=0)

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> load_config() fallbacks
# ---------------------------------------------------------------------------


def yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten *unified* into the fallback dict consumed by ``load_config()``.

    ``None`` values are dropped so they never mask built-in defaults.
    """
    flat: dict[str, Any] = {
        "url": unified.remote.url,
        "timeout": unified.remote.timeout,
        "ping_timeout": unified.remote.ping_timeout,
        "interval": unified.remote.interval,
        "debug": unified.remote.debug,
        "store_path": unified.storage.path,
        "notes_key": unified.sync.notes_key,
        "confirm_keys": list(unified.sync.confirm_keys),
        "delimiter": unified.sync.delimiter,
        "success_display_s": unified.sync.success_display_s,
        "log_level": unified.logging.level,
        "log_file": unified.logging.file,
    }
    return {k: v for k, v in flat.items() if v is not None}
