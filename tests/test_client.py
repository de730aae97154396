"""Tests for the remote HTTP client.

Covers:
- Request payloads for each action
- Snapshot normalisation for both remote response variants
- Error classification: network, timeout, HTTP status, failure envelope,
  malformed body
- Missing URL is refused before any request
"""

import json
import os
from unittest.mock import Mock, patch

import pytest
import requests

from kvsync.config import Config
from kvsync.core.client import SyncClient
from kvsync.core.errors import (
    ApplicationError,
    ConfigError,
    NetworkError,
    ParseError,
    SyncTimeoutError,
)
from kvsync.sync.models import (
    NoteUpdate,
    Operation,
    OperationAction,
    PendingChanges,
)

URL = "https://remote.example.com/exec"


def make_response(body, status_code=200):
    """Build a mock requests.Response carrying *body*."""
    response = Mock()
    response.status_code = status_code
    response.text = body if isinstance(body, str) else json.dumps(body)
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status_code} Server Error"
        )
    return response


def sent_payload(mock_post):
    return json.loads(mock_post.call_args[1]["data"])


@pytest.fixture
def client():
    return SyncClient(Config(remote_url=URL, request_timeout=12.0))


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequests:
    """Payloads and transport options for each action."""

    @patch("kvsync.core.client.requests.Session.post")
    def test_sync_payload(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        pending = PendingChanges(
            operations=[
                Operation(action=OperationAction.ADD, key="favorites", value="9")
            ],
            notes=[NoteUpdate(entity_id="9", text="hi", timestamp=3)],
        )

        client.sync(pending)

        args, kwargs = mock_post.call_args
        assert args[0] == URL
        assert kwargs["timeout"] == 12.0
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert sent_payload(mock_post) == {
            "action": "sync",
            "queue": {
                "operations": [
                    {"action": "add", "key": "favorites", "value": "9"}
                ],
                "notes": [{"entityId": "9", "text": "hi", "timestamp": 3}],
            },
        }

    @patch("kvsync.core.client.requests.Session.post")
    def test_sync_with_requested_keys(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        client.sync(PendingChanges(), requested_keys=["a"])
        assert sent_payload(mock_post)["requestedKeys"] == ["a"]

    @patch("kvsync.core.client.requests.Session.post")
    def test_get_storage_payload(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        client.get_storage(["a", "b"])
        assert sent_payload(mock_post) == {
            "action": "get_storage",
            "requestedKeys": ["a", "b"],
        }

    @patch("kvsync.core.client.requests.Session.post")
    def test_initialize_payload(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        client.initialize({"a": "1"}, ["a"])
        assert sent_payload(mock_post) == {
            "action": "initialize",
            "initData": {"a": "1"},
            "selectedKeys": ["a"],
        }

    @patch("kvsync.core.client.requests.Session.post")
    def test_initialize_payload_with_notes(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        notes = {"w1": {"text": "hello", "timestamp": 5}}
        client.initialize({}, [], notes=notes)
        assert sent_payload(mock_post)["notes"] == notes

    @patch("kvsync.core.client.requests.Session.post")
    def test_forced_initialize_payload(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        client.initialize({}, [], force=True)
        assert sent_payload(mock_post)["force"] is True

    @patch("kvsync.core.client.requests.Session.post")
    def test_update_enabled_keys_payload(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        client.update_enabled_keys(["a", "b"])
        assert sent_payload(mock_post) == {
            "action": "update_enabled_keys",
            "enabledKeys": ["a", "b"],
        }

    @patch("kvsync.core.client.requests.Session.get")
    def test_ping(self, mock_get):
        mock_get.return_value = make_response({"status": "success"})
        client = SyncClient(Config(remote_url=URL, ping_timeout=5.0))
        assert client.ping() is True
        args, kwargs = mock_get.call_args
        assert args[0] == URL
        assert kwargs["params"] == {"action": "ping"}
        assert kwargs["timeout"] == 5.0

    @patch("kvsync.core.client.requests.Session.post")
    def test_url_override(self, mock_post):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        client = SyncClient(Config(remote_url=URL), url="https://other.example.com")
        client.get_storage([])
        assert mock_post.call_args[0][0] == "https://other.example.com"

    @patch("kvsync.core.client.requests.Session.post")
    def test_missing_url_refused(self, mock_post):
        client = SyncClient(Config())
        with pytest.raises(ConfigError):
            client.sync(PendingChanges())
        mock_post.assert_not_called()

    def test_session_is_thread_local_and_reused(self, client):
        assert client.session is client.session
        assert client.session.headers["Accept"] == "application/json"


# ---------------------------------------------------------------------------
# Snapshot normalisation
# ---------------------------------------------------------------------------


class TestSnapshot:
    """Both response variants fold into one RemoteSnapshot shape."""

    @patch("kvsync.core.client.requests.Session.post")
    def test_storage_data_variant(self, mock_post, client):
        mock_post.return_value = make_response(
            {
                "status": "success",
                "data": {
                    "success": True,
                    "storage_data": {"favorites": "1,2"},
                    "notes": {"1": {"text": "n", "timestamp": 4}},
                    "initialized": True,
                    "enabled_keys": ["favorites"],
                },
            }
        )
        snapshot = client.sync(PendingChanges())
        assert snapshot.values == {"favorites": "1,2"}
        assert snapshot.notes == {"1": {"text": "n", "timestamp": 4}}
        assert snapshot.initialized is True
        assert snapshot.enabled_keys == ["favorites"]

    @patch("kvsync.core.client.requests.Session.post")
    def test_status_data_variant(self, mock_post, client):
        """Top-level status_data and notes are accepted too."""
        mock_post.return_value = make_response(
            {
                "success": True,
                "status_data": {"favorites": "5"},
                "notes": {"5": {"text": "x"}},
            }
        )
        snapshot = client.sync(PendingChanges())
        assert snapshot.values == {"favorites": "5"}
        assert snapshot.notes == {"5": {"text": "x"}}

    @patch("kvsync.core.client.requests.Session.post")
    def test_non_string_values_encoded_as_json(self, mock_post, client):
        mock_post.return_value = make_response(
            {
                "status": "success",
                "data": {
                    "storage_data": {
                        "statusesConfig": {"a": 1},
                        "gone": None,
                    }
                },
            }
        )
        snapshot = client.sync(PendingChanges())
        assert snapshot.values == {"statusesConfig": '{"a": 1}'}

    @patch("kvsync.core.client.requests.Session.post")
    def test_missing_notes_is_none(self, mock_post, client):
        mock_post.return_value = make_response({"status": "success", "data": {}})
        snapshot = client.sync(PendingChanges())
        assert snapshot.notes is None
        assert snapshot.values == {}
        assert not snapshot.has_data

    @patch("kvsync.core.client.requests.Session.post")
    def test_message_passed_through(self, mock_post, client):
        mock_post.return_value = make_response(
            {"status": "success", "data": {"message": "Initialized"}}
        )
        assert client.initialize({"a": "1"}, ["a"]).message == "Initialized"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    """Every failure surfaces as a tagged SyncError subclass."""

    @patch("kvsync.core.client.requests.Session.post")
    def test_connection_error(self, mock_post, client):
        mock_post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(NetworkError) as exc_info:
            client.sync(PendingChanges())
        assert exc_info.value.kind == "network"

    @patch("kvsync.core.client.requests.Session.post")
    def test_timeout(self, mock_post, client):
        mock_post.side_effect = requests.Timeout("slow")
        with pytest.raises(SyncTimeoutError) as exc_info:
            client.sync(PendingChanges())
        assert exc_info.value.kind == "timeout"
        assert "12s" in str(exc_info.value)

    @patch("kvsync.core.client.requests.Session.post")
    def test_http_error_status(self, mock_post, client):
        mock_post.return_value = make_response("Internal error", status_code=500)
        with pytest.raises(ApplicationError) as exc_info:
            client.sync(PendingChanges())
        error = exc_info.value
        assert error.kind == "application"
        assert error.status_code == 500
        assert "HTTP 500" in error.context()

    @patch("kvsync.core.client.requests.Session.post")
    def test_error_envelope(self, mock_post, client):
        mock_post.return_value = make_response(
            {"status": "error", "error": {"message": "Not initialized"}}
        )
        with pytest.raises(ApplicationError, match="Not initialized"):
            client.sync(PendingChanges())

    @patch("kvsync.core.client.requests.Session.post")
    def test_error_envelope_without_message(self, mock_post, client):
        mock_post.return_value = make_response({"status": "error"})
        with pytest.raises(ApplicationError, match="Unknown error"):
            client.sync(PendingChanges())

    @patch("kvsync.core.client.requests.Session.post")
    def test_data_success_false(self, mock_post, client):
        mock_post.return_value = make_response(
            {"status": "success", "data": {"success": False, "message": "Locked"}}
        )
        with pytest.raises(ApplicationError, match="Locked"):
            client.sync(PendingChanges())

    @patch("kvsync.core.client.requests.Session.post")
    def test_non_json_body(self, mock_post, client):
        mock_post.return_value = make_response("<html>login</html>")
        with pytest.raises(ParseError) as exc_info:
            client.sync(PendingChanges())
        assert exc_info.value.kind == "parse"
        assert exc_info.value.response_text == "<html>login</html>"

    @patch("kvsync.core.client.requests.Session.post")
    def test_non_object_body(self, mock_post, client):
        mock_post.return_value = make_response([1, 2])
        with pytest.raises(ParseError, match="Expected a JSON object"):
            client.sync(PendingChanges())

    @patch("kvsync.core.client.requests.Session.post")
    def test_response_context_truncated(self, mock_post, client):
        mock_post.return_value = make_response("x" * 1000)
        with pytest.raises(ParseError) as exc_info:
            client.sync(PendingChanges())
        assert len(exc_info.value.response_text) == 200

    @patch("kvsync.core.client.requests.Session.get")
    def test_ping_connection_error(self, mock_get, client):
        mock_get.side_effect = requests.ConnectionError("down")
        with pytest.raises(NetworkError):
            client.ping()


# ---------------------------------------------------------------------------
# Live
# ---------------------------------------------------------------------------


@pytest.mark.live
def test_live_ping():
    """Ping the endpoint named by KVSYNC_URL."""
    url = os.environ.get("KVSYNC_URL")
    if not url:
        pytest.skip("KVSYNC_URL not set")
    assert SyncClient(Config(remote_url=url)).ping() is True
