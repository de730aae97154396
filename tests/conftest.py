"""Shared pytest fixtures for kvsync tests."""

from __future__ import annotations

from typing import Any, Callable

import pytest
from dotenv import load_dotenv

from kvsync.config import Config
from kvsync.storage.kvs import MemoryStore
from kvsync.sync.models import (
    OperationAction,
    PendingChanges,
    RemoteSnapshot,
)

load_dotenv()

REMOTE_URL = "https://remote.example.com/exec"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live remote endpoint",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live remote endpoint"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRemote:
    """In-memory stand-in for ``SyncClient``.

    Applies uploaded operations to a dict the way the real remote does and
    answers every round with the full value of each enabled key.
    """

    def __init__(
        self,
        values: dict[str, str] | None = None,
        notes: dict[str, Any] | None = None,
        enabled_keys: list[str] | None = None,
        initialized: bool = False,
        delimiter: str = ",",
    ) -> None:
        self.url = REMOTE_URL
        self.values: dict[str, str] = dict(values or {})
        self.notes: dict[str, Any] = dict(notes or {})
        self.enabled_keys: list[str] = list(enabled_keys or [])
        self.initialized = initialized
        self.delimiter = delimiter
        self.calls: list[tuple[str, Any]] = []
        self.fail_with: Exception | None = None
        self.fail_get_storage_with: Exception | None = None
        # Keys whose ``set`` the remote silently ignores (racing writer).
        self.drop_sets: set[str] = set()
        self.on_sync: Callable[[], None] | None = None
        self.init_notes: list[dict[str, Any] | None] = []

    def actions(self) -> list[str]:
        return [name for name, _ in self.calls]

    def _snapshot(self, keys: list[str] | None = None) -> RemoteSnapshot:
        keys = self.enabled_keys if keys is None else keys
        return RemoteSnapshot(
            values={k: self.values[k] for k in keys if k in self.values},
            notes=dict(self.notes),
            initialized=self.initialized,
            enabled_keys=list(self.enabled_keys),
        )

    def ping(self) -> bool:
        self.calls.append(("ping", None))
        if self.fail_with:
            raise self.fail_with
        return True

    def sync(
        self, pending: PendingChanges, requested_keys: list[str] | None = None
    ) -> RemoteSnapshot:
        self.calls.append(("sync", pending))
        if self.on_sync is not None:
            self.on_sync()
        if self.fail_with:
            raise self.fail_with
        for op in pending.operations:
            members = [
                m for m in self.values.get(op.key, "").split(self.delimiter) if m
            ]
            if op.action == OperationAction.ADD and op.value not in members:
                members.append(op.value)
                self.values[op.key] = self.delimiter.join(members)
            elif op.action == OperationAction.REMOVE and op.value in members:
                members.remove(op.value)
                self.values[op.key] = self.delimiter.join(members)
            elif op.action == OperationAction.SET and op.key not in self.drop_sets:
                self.values[op.key] = op.value
        for note in pending.notes:
            if note.text:
                self.notes[note.entity_id] = {
                    "text": note.text,
                    "timestamp": note.timestamp,
                }
            else:
                self.notes.pop(note.entity_id, None)
        return self._snapshot()

    def get_storage(self, requested_keys: list[str]) -> RemoteSnapshot:
        self.calls.append(("get_storage", list(requested_keys)))
        if self.fail_get_storage_with:
            raise self.fail_get_storage_with
        if self.fail_with:
            raise self.fail_with
        if not requested_keys:
            return RemoteSnapshot(
                initialized=self.initialized,
                enabled_keys=list(self.enabled_keys),
            )
        return self._snapshot(requested_keys)

    def initialize(
        self,
        init_data: dict[str, str],
        selected_keys: list[str],
        force: bool = False,
        notes: dict[str, Any] | None = None,
    ) -> RemoteSnapshot:
        self.calls.append(("initialize", (dict(init_data), list(selected_keys), force)))
        self.init_notes.append(notes)
        if self.fail_with:
            raise self.fail_with
        if force:
            self.values.clear()
            self.notes.clear()
            self.enabled_keys = []
            self.initialized = False
            return RemoteSnapshot(message="cleared")
        self.values.update(init_data)
        if notes:
            self.notes = dict(notes)
        self.enabled_keys = list(selected_keys)
        self.initialized = True
        return RemoteSnapshot(message="initialized")

    def update_enabled_keys(self, keys: list[str]) -> RemoteSnapshot:
        self.calls.append(("update_enabled_keys", list(keys)))
        if self.fail_with:
            raise self.fail_with
        self.enabled_keys = list(keys)
        return RemoteSnapshot(enabled_keys=list(keys))


class FakeClock:
    """Settable epoch-ms clock."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


class ManualTimers:
    """``call_later`` replacement that only fires when told to."""

    def __init__(self) -> None:
        self.pending: list[tuple[float, Callable[[], None]]] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> object:
        entry = (delay, callback)
        self.pending.append(entry)
        timers = self

        class _Handle:
            def cancel(self) -> None:
                if entry in timers.pending:
                    timers.pending.remove(entry)

        return _Handle()

    def fire_all(self) -> None:
        pending, self.pending = self.pending, []
        for _, callback in pending:
            callback()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config():
    """A Config pointing at the fake remote."""
    return Config(remote_url=REMOTE_URL, store_path=":memory:")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers():
    return ManualTimers()
