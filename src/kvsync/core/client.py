"""HTTP client for the remote key-value store.

All actions go to one endpoint.  ``ping`` is a GET with ``?action=ping``;
everything else is a POST with a JSON body naming the action.  The remote
answers with an envelope::

    {"status": "success", "data": {"success": true, "storage_data": {...}}}
    {"status": "error", "error": {"message": "..."}}

Two remote variants exist: one nests values under ``data.storage_data``,
the other returns ``status_data`` (nested or top-level) and a top-level
``notes`` map.  ``_to_snapshot`` folds both into ``RemoteSnapshot`` so
nothing past this module sees the difference.

The client never retries.  Failures surface as ``SyncError`` subclasses
and the scheduler's next tick is the retry.
"""

import json
import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..sync.models import PendingChanges, RemoteSnapshot
from .errors import (
    ApplicationError,
    ConfigError,
    NetworkError,
    ParseError,
    SyncTimeoutError,
)

logger = logging.getLogger(__name__)

# Response text kept on errors for diagnosis.
_CONTEXT_CHARS = 200


class SyncClient:
    def __init__(self, config: Config, url: str | None = None):
        self.config = config
        self.url = url if url is not None else config.remote_url
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({"Accept": "application/json"})
        return session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _require_url(self) -> str:
        if not self.url:
            raise ConfigError("Remote URL is not configured")
        return self.url

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST *payload* and return the decoded success envelope."""
        url = self._require_url()
        action = payload.get("action")
        logger.debug("Sending %s request to %s", action, url)

        session = self._get_session()
        try:
            response = session.post(
                url,
                data=json.dumps(payload),
                headers={"Content-Type": "application/json"},
                timeout=self.config.request_timeout,
            )
        except requests.Timeout as e:
            raise SyncTimeoutError(
                f"{action} request timed out after {self.config.request_timeout:g}s"
            ) from e
        except requests.RequestException as e:
            raise NetworkError(f"{action} request failed: {e}") from e

        return self._parse_envelope(response)

    def _parse_envelope(self, response: requests.Response) -> dict[str, Any]:
        text = response.text or ""
        context = text[:_CONTEXT_CHARS]

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise ApplicationError(
                f"Remote returned HTTP {response.status_code}",
                status_code=response.status_code,
                response_text=context,
            ) from e

        try:
            body = json.loads(text)
        except ValueError as e:
            raise ParseError(
                "Invalid JSON response",
                status_code=response.status_code,
                response_text=context,
            ) from e
        if not isinstance(body, dict):
            raise ParseError(
                f"Expected a JSON object, got {type(body).__name__}",
                status_code=response.status_code,
                response_text=context,
            )

        if body.get("status") != "success" and body.get("success") is not True:
            error = body.get("error")
            if isinstance(error, dict):
                message = error.get("message")
            else:
                message = error
            raise ApplicationError(
                str(message or "Unknown error"),
                status_code=response.status_code,
                response_text=context,
            )

        data = body.get("data")
        if isinstance(data, dict) and data.get("success") is False:
            raise ApplicationError(
                str(data.get("message") or data.get("error") or "Remote reported failure"),
                status_code=response.status_code,
                response_text=context,
            )

        return body

    @staticmethod
    def _to_snapshot(body: dict[str, Any]) -> RemoteSnapshot:
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}

        raw_values = (
            data.get("storage_data")
            or data.get("status_data")
            or body.get("status_data")
            or {}
        )
        values: dict[str, str] = {}
        if isinstance(raw_values, dict):
            for key, value in raw_values.items():
                if value is None:
                    continue
                values[str(key)] = (
                    value if isinstance(value, str) else json.dumps(value)
                )

        notes = data.get("notes", body.get("notes"))
        enabled_keys = data.get("enabled_keys")
        initialized = data.get("initialized")
        message = data.get("message") or body.get("message")

        return RemoteSnapshot(
            values=values,
            notes=notes if isinstance(notes, dict) else None,
            initialized=(
                bool(initialized) if initialized is not None else None
            ),
            enabled_keys=(
                [str(k) for k in enabled_keys]
                if isinstance(enabled_keys, list)
                else None
            ),
            message=str(message) if message else None,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """
        Check that the endpoint is alive. Returns True on a success envelope.
        """
        url = self._require_url()
        try:
            response = self._get_session().get(
                url,
                params={"action": "ping"},
                timeout=self.config.ping_timeout,
            )
        except requests.Timeout as e:
            raise SyncTimeoutError(
                f"ping timed out after {self.config.ping_timeout:g}s"
            ) from e
        except requests.RequestException as e:
            raise NetworkError(f"ping failed: {e}") from e
        self._parse_envelope(response)
        return True

    def sync(
        self,
        pending: PendingChanges,
        requested_keys: list[str] | None = None,
    ) -> RemoteSnapshot:
        """
        Upload queued changes and return the remote's full snapshot.
        """
        payload: dict[str, Any] = {
            "action": "sync",
            "queue": pending.to_wire(),
        }
        if requested_keys is not None:
            payload["requestedKeys"] = list(requested_keys)
        return self._to_snapshot(self._request(payload))

    def get_storage(self, requested_keys: list[str]) -> RemoteSnapshot:
        """
        Read remote values without mutating anything.

        An empty key list asks only for metadata (``initialized`` and
        ``enabled_keys``).
        """
        return self._to_snapshot(
            self._request(
                {"action": "get_storage", "requestedKeys": list(requested_keys)}
            )
        )

    def initialize(
        self,
        init_data: dict[str, str],
        selected_keys: list[str],
        force: bool = False,
        notes: dict[str, Any] | None = None,
    ) -> RemoteSnapshot:
        """
        Seed the remote with *init_data* and, when given, the *notes* map.

        With ``force=True`` the remote discards everything it holds; this is
        the explicit reset path and is always sent with empty data.
        """
        payload: dict[str, Any] = {
            "action": "initialize",
            "initData": dict(init_data),
            "selectedKeys": list(selected_keys),
        }
        if notes is not None:
            payload["notes"] = dict(notes)
        if force:
            payload["force"] = True
        return self._to_snapshot(self._request(payload))

    def update_enabled_keys(self, keys: list[str]) -> RemoteSnapshot:
        """
        Tell the remote which keys this device syncs from now on.
        """
        return self._to_snapshot(
            self._request(
                {"action": "update_enabled_keys", "enabledKeys": list(keys)}
            )
        )
