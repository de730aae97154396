"""Local key-value stores."""

from .kvs import (
    INTERNAL_PREFIX,
    KeyValueStore,
    MemoryStore,
    SqliteStore,
    is_internal_key,
)

__all__ = [
    "INTERNAL_PREFIX",
    "KeyValueStore",
    "MemoryStore",
    "SqliteStore",
    "is_internal_key",
]
