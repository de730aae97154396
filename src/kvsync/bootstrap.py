"""Engine construction and lifecycle for the CLI and the daemon."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import build_config, yaml_fallbacks
from .storage.kvs import SqliteStore
from .sync.engine import SyncEngine

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback."""
    print(msg, file=sys.stderr, flush=True)


def resolve_config(config_overrides: dict[str, Any] | None = None) -> Config:
    """Load configuration with unified precedence.

    CLI args > env vars (.env loaded first) > YAML config > defaults.

    Raises:
        ValueError: If any source holds an invalid value.
    """
    # Load .env before YAML so ${VAR} interpolation can use .env values
    load_dotenv()

    fallbacks: dict[str, Any] | None = None
    config_files = discover_config_files()
    if config_files:
        unified = build_config(load_hierarchical_config())
        fallbacks = yaml_fallbacks(unified)
        logger.debug("Using config file %s", config_files[0])

    overrides = config_overrides or {}
    return load_config(
        url=overrides.get("url"),
        store=overrides.get("store"),
        debug=overrides.get("debug", False),
        yaml_fallbacks=fallbacks,
    )


def build_engine(config: Config) -> SyncEngine:
    """Open the configured SQLite store and build an engine on it."""
    store = SqliteStore(config.store_path)
    logger.debug("Opened store %s", store.db_path)
    return SyncEngine(config, store)


@asynccontextmanager
async def engine_lifespan(
    config: Config,
) -> AsyncIterator[SyncEngine]:
    """
    Run a started engine for the duration of the context.

    On startup the store is opened and periodic sync starts (a catch-up
    round fires at once if the interval has already elapsed).  On shutdown
    the timer stops and any round in flight is allowed to finish.

    Yields:
        The running SyncEngine.
    """
    engine = build_engine(config)
    summary = engine.status_summary()
    logger.info("kvsync daemon starting (remote: %s)", summary["remote_url"])
    _stderr_print("kvsync daemon starting...")
    _stderr_print(f"  Remote: {summary['remote_url'] or '(not set)'}")
    if not summary["initialized"]:
        _stderr_print(
            "  Device is not initialized; rounds will be skipped until "
            "'kvsync init' succeeds."
        )

    engine.start()
    try:
        yield engine
    finally:
        await engine.aclose()
        logger.info("kvsync daemon stopped")
        _stderr_print("kvsync daemon stopped.")
