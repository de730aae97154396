"""Observable sync lifecycle for the presentation layer.

``SyncStatus`` tracks one of five phases and rejects transitions that the
table below does not allow::

    normal  -> syncing            round started
    syncing -> success | error    round finished
    success -> normal             after the display delay
    error   -> normal             next round attempt
    *       -> offline            connectivity lost
    offline -> normal             reconnected while sync is enabled, or a
                                  round starts after reconnecting

Subscribers receive a ``StatusSnapshot`` after every change.  The phase,
countdown, pending counts and last error are all the presentation layer
may read; it never touches the queue or the reconciler directly.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from pydantic import BaseModel

from .models import SyncPhase

logger = logging.getLogger(__name__)

StatusListener = Callable[["StatusSnapshot"], None]
CallLater = Callable[[float, Callable[[], None]], Any]

_TRANSITIONS: dict[SyncPhase, frozenset[SyncPhase]] = {
    SyncPhase.NORMAL: frozenset({SyncPhase.SYNCING, SyncPhase.OFFLINE}),
    SyncPhase.SYNCING: frozenset(
        {SyncPhase.SUCCESS, SyncPhase.ERROR, SyncPhase.OFFLINE}
    ),
    SyncPhase.SUCCESS: frozenset({SyncPhase.NORMAL, SyncPhase.OFFLINE}),
    SyncPhase.ERROR: frozenset({SyncPhase.NORMAL, SyncPhase.OFFLINE}),
    SyncPhase.OFFLINE: frozenset({SyncPhase.NORMAL}),
}


class StatusSnapshot(BaseModel):
    """Point-in-time view of the sync status."""

    phase: SyncPhase
    countdown: int | None = None
    pending_operations: int = 0
    pending_notes: int = 0
    last_sync: int = 0
    last_error: str | None = None

    model_config = {"frozen": True}


def _timer_call_later(delay: float, callback: Callable[[], None]) -> Any:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class SyncStatus:
    """Thread-safe phase holder with subscriber notification.

    Args:
        success_display_s: Seconds the ``success`` phase stays visible
            before reverting to ``normal``.
        call_later: ``(delay, callback) -> handle`` used to schedule that
            revert.  The handle may expose ``cancel()``.  Defaults to a
            daemon ``threading.Timer``.
        initial: Starting phase.
    """

    def __init__(
        self,
        success_display_s: float = 2.0,
        call_later: CallLater | None = None,
        initial: SyncPhase = SyncPhase.NORMAL,
    ) -> None:
        self._lock = threading.RLock()
        self._phase = initial
        self._countdown: int | None = None
        self._pending = (0, 0)
        self._last_sync = 0
        self._last_error: str | None = None
        self._success_display_s = success_display_s
        self._call_later = call_later or _timer_call_later
        self._revert_handle: Any = None
        self._listeners: list[StatusListener] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def countdown(self) -> int | None:
        return self._countdown

    def snapshot(self) -> StatusSnapshot:
        with self._lock:
            return StatusSnapshot(
                phase=self._phase,
                countdown=self._countdown,
                pending_operations=self._pending[0],
                pending_notes=self._pending[1],
                last_sync=self._last_sync,
                last_error=self._last_error,
            )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Round lifecycle
    # ------------------------------------------------------------------

    def begin_round(self, connected: bool = False) -> bool:
        """Enter ``syncing``, passing through ``normal`` from success/error.

        A caller that has just confirmed connectivity passes
        ``connected=True``; a stale ``offline`` phase is then left too.
        Otherwise rounds cannot start while ``offline``.
        """
        left = (SyncPhase.SUCCESS, SyncPhase.ERROR)
        if connected:
            left += (SyncPhase.OFFLINE,)
        with self._lock:
            if self._phase in left:
                self._cancel_revert()
                self._transition(SyncPhase.NORMAL)
            return self._transition(SyncPhase.SYNCING)

    def succeed(self, last_sync: int) -> bool:
        """Record a successful round and schedule the return to ``normal``."""
        with self._lock:
            self._last_sync = last_sync
            self._last_error = None
            if not self._transition(SyncPhase.SUCCESS):
                return False
            self._cancel_revert()
            self._revert_handle = self._call_later(
                self._success_display_s, self._settle_success
            )
            return True

    def fail(self, message: str) -> bool:
        with self._lock:
            self._last_error = message
            return self._transition(SyncPhase.ERROR)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    def go_offline(self) -> bool:
        with self._lock:
            if self._phase == SyncPhase.OFFLINE:
                return False
            self._cancel_revert()
            return self._transition(SyncPhase.OFFLINE)

    def go_online(self, sync_enabled: bool) -> bool:
        """Leave ``offline`` if sync is enabled; otherwise stay put."""
        with self._lock:
            if self._phase != SyncPhase.OFFLINE or not sync_enabled:
                return False
            return self._transition(SyncPhase.NORMAL)

    # ------------------------------------------------------------------
    # Display data
    # ------------------------------------------------------------------

    def set_countdown(self, seconds: int | None) -> None:
        with self._lock:
            if seconds == self._countdown:
                return
            self._countdown = seconds
        self._notify()

    def set_pending(self, operations: int, notes: int) -> None:
        with self._lock:
            if (operations, notes) == self._pending:
                return
            self._pending = (operations, notes)
        self._notify()

    def set_last_sync(self, last_sync: int) -> None:
        with self._lock:
            self._last_sync = last_sync

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _transition(self, target: SyncPhase) -> bool:
        current = self._phase
        if target not in _TRANSITIONS[current]:
            logger.debug(
                "Ignoring status transition %s -> %s",
                current.value,
                target.value,
            )
            return False
        self._phase = target
        logger.debug("Sync status %s -> %s", current.value, target.value)
        self._notify()
        return True

    def _settle_success(self) -> None:
        with self._lock:
            self._revert_handle = None
            if self._phase == SyncPhase.SUCCESS:
                self._transition(SyncPhase.NORMAL)

    def _cancel_revert(self) -> None:
        handle = self._revert_handle
        self._revert_handle = None
        cancel = getattr(handle, "cancel", None)
        if cancel is not None:
            cancel()

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Status listener failed")
