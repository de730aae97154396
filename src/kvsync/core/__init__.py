"""Remote client functionality shared between the CLI and the daemon."""

from .async_utils import run_sync
from .client import SyncClient
from .errors import (
    ApplicationError,
    ConfigError,
    NetworkError,
    ParseError,
    SyncError,
    SyncTimeoutError,
)

__all__ = [
    "ApplicationError",
    "ConfigError",
    "NetworkError",
    "ParseError",
    "SyncClient",
    "SyncError",
    "SyncTimeoutError",
    "run_sync",
]
