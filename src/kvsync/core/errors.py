"""Error taxonomy for remote sync calls.

Every failure the sync client can report is a ``SyncError`` subclass with
a short ``kind`` tag, so callers can record *what* went wrong without
matching on exception types:

- ``NetworkError`` (``network``) -- the endpoint could not be reached.
- ``SyncTimeoutError`` (``timeout``) -- no response within the bound.
- ``ApplicationError`` (``application``) -- the remote answered with a
  failure envelope or a non-2xx status.
- ``ParseError`` (``parse``) -- the body was not a JSON object.
- ``ConfigError`` (``config``) -- the request was refused locally because
  the engine is not set up for it.

``ParseError`` is an ``ApplicationError``: a malformed body is handled
exactly like a well-formed failure, it just carries a different tag.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync failures."""

    kind = "sync"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NetworkError(SyncError):
    """The remote endpoint could not be reached."""

    kind = "network"


class SyncTimeoutError(SyncError):
    """The remote did not answer within the configured timeout."""

    kind = "timeout"


class ApplicationError(SyncError):
    """The remote answered, but reported failure.

    Attributes:
        status_code: HTTP status of the response, if any.
        response_text: Leading part of the response body for diagnosis.
    """

    kind = "application"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text

    def context(self) -> str:
        """One-line description of the response for log messages."""
        parts = []
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code}")
        if self.response_text:
            parts.append(f"body={self.response_text!r}")
        return ", ".join(parts) or "no response context"


class ParseError(ApplicationError):
    """The response body was not a JSON object."""

    kind = "parse"


class ConfigError(SyncError):
    """Sync was requested in a state that does not allow it."""

    kind = "config"
