"""When sync rounds run.

The scheduler owns two asyncio tasks while it is armed:

* the **timer**, which fires rounds.  On (re)arm it computes
  ``max(0, interval - (now - last_sync))`` from the persisted
  ``last_sync``.  At zero it fires at once (catch-up after a long idle);
  otherwise it waits only the remainder.  After the first fire it repeats
  every ``interval``, scheduling against a fixed monotonic deadline so
  slow rounds do not push later ones back.
* the **countdown**, a 1 Hz tick that publishes the seconds left to
  ``SyncStatus``.  It never starts a round.

Hiding the page or losing connectivity disarms both tasks.  Becoming
visible re-arms from ``last_sync``; reconnecting fires a round at once.
Rounds run in a worker thread and are shielded, so disarming never cancels
a round that has already started.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from typing import Awaitable, Callable

from pydantic import BaseModel

from ..core.async_utils import run_sync
from .models import RoundResult
from .reconciler import epoch_ms
from .settings import SettingsStore, SyncSettings
from .status import SyncStatus

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    WAITING = "waiting"
    PAUSED_HIDDEN = "paused_hidden"
    PAUSED_OFFLINE = "paused_offline"


class SchedulePlan(BaseModel):
    """How the timer arms on (re)start.

    Attributes:
        immediate: Fire a round now (the interval has already elapsed).
        delay_s: Seconds until the first round (0 when immediate).
        interval_s: Seconds between rounds after the first.
    """

    immediate: bool
    delay_s: float
    interval_s: int

    model_config = {"frozen": True}


class Scheduler:
    """Arms and disarms the periodic sync timer.

    Args:
        run_round: Blocking callable running one round (normally
            ``Reconciler.run_round``).
        settings: Source of ``interval``, ``enabled`` and ``last_sync``.
        status: Receives countdown updates.
        clock: Returns the current time in epoch ms.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        run_round: Callable[[], RoundResult],
        settings: SettingsStore,
        status: SyncStatus,
        clock: Callable[[], int] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._run_round = run_round
        self._settings = settings
        self._status = status
        self._clock = clock or epoch_ms
        self._sleep = sleep or asyncio.sleep

        self._loop: asyncio.AbstractEventLoop | None = None
        self._wanted = False
        self._visible = True
        self._online = True
        self._state = SchedulerState.STOPPED
        self._timer: asyncio.Task | None = None
        self._countdown: asyncio.Task | None = None
        self._next_fire: float | None = None
        self._rounds: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def time_until_next_sync(self, now: int | None = None) -> float:
        """Seconds until the next round is due, from the persisted ``last_sync``."""
        settings = self._settings.load()
        now = self._clock() if now is None else now
        elapsed = (now - settings.last_sync) / 1000
        return max(0.0, settings.interval - elapsed)

    def plan(self, now: int | None = None) -> SchedulePlan:
        """Decide how the timer arms at time *now* (epoch ms)."""
        interval = self._settings.load().interval
        remaining = self.time_until_next_sync(now)
        return SchedulePlan(
            immediate=remaining == 0,
            delay_s=remaining,
            interval_s=interval,
        )

    def seconds_until_fire(self) -> float:
        """Seconds until the armed timer fires; falls back to ``time_until_next_sync``."""
        if self._next_fire is not None and self._loop is not None:
            return max(0.0, self._next_fire - self._loop.time())
        return self.time_until_next_sync()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the timer.  Must be called from a running event loop."""
        self._loop = asyncio.get_running_loop()
        self._wanted = True
        if self._unsubscribe is None:
            self._unsubscribe = self._settings.subscribe(self._on_settings)
        self._rearm()

    def stop(self) -> None:
        """Disarm the timer.  A round already in flight runs to completion."""
        self._wanted = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._disarm(SchedulerState.STOPPED)

    async def aclose(self) -> None:
        self.stop()
        await self.wait_for_rounds()

    async def wait_for_rounds(self) -> None:
        """Wait until every round started so far has finished."""
        if self._rounds:
            await asyncio.gather(*list(self._rounds), return_exceptions=True)

    def set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        logger.debug("Visibility changed (visible=%s), re-arming sync timer", visible)
        self._rearm()

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        if online:
            logger.info("Connectivity restored, syncing now")
            self._rearm(immediate=True)
        else:
            logger.info("Connectivity lost, pausing sync timer")
            self._rearm()

    async def trigger(self) -> RoundResult:
        """Run a round now, outside the timer cadence."""
        result = await self._fire()
        if result.succeeded and self._state == SchedulerState.WAITING:
            # The countdown restarts from the new last_sync.
            self._rearm()
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rearm(self, immediate: bool = False) -> None:
        if not self._wanted:
            self._disarm(SchedulerState.STOPPED)
            return
        if not self._visible:
            self._disarm(SchedulerState.PAUSED_HIDDEN)
            return
        if not self._online:
            self._disarm(SchedulerState.PAUSED_OFFLINE)
            return
        settings = self._settings.load()
        if not settings.enabled:
            logger.debug("Sync disabled, timer not armed")
            self._disarm(SchedulerState.STOPPED)
            return

        self._disarm(SchedulerState.WAITING)
        assert self._loop is not None
        loop = self._loop
        self._timer = loop.create_task(self._timer_loop(immediate))
        self._countdown = loop.create_task(self._countdown_loop())

    def _disarm(self, state: SchedulerState) -> None:
        for task in (self._timer, self._countdown):
            if task is not None and not task.done():
                task.cancel()
        self._timer = None
        self._countdown = None
        self._next_fire = None
        self._state = state
        if state != SchedulerState.WAITING:
            self._status.set_countdown(None)

    async def _timer_loop(self, immediate: bool) -> None:
        loop = asyncio.get_running_loop()
        plan = self.plan()
        if immediate or plan.immediate:
            logger.debug("Sync overdue, firing immediately")
            self._next_fire = loop.time()
        else:
            logger.debug("Next sync in %.1fs", plan.delay_s)
            self._next_fire = loop.time() + plan.delay_s

        while True:
            delay = self._next_fire - loop.time()
            if delay > 0:
                await self._sleep(delay)
            try:
                await self._fire()
            except Exception:
                logger.exception("Scheduled sync round raised")

            interval = self._settings.load().interval
            self._next_fire += interval
            now = loop.time()
            if self._next_fire <= now:
                # Rounds overran whole intervals; skip the missed fires.
                self._next_fire = now + interval

    async def _countdown_loop(self) -> None:
        while True:
            self._status.set_countdown(math.ceil(self.seconds_until_fire()))
            await self._sleep(1)

    async def _fire(self) -> RoundResult:
        loop = asyncio.get_running_loop()
        task = loop.create_task(run_sync(self._run_round))
        self._rounds.add(task)
        task.add_done_callback(self._rounds.discard)
        return await asyncio.shield(task)

    def _on_settings(self, old: SyncSettings, new: SyncSettings) -> None:
        if (old.interval, old.enabled, old.initialized) == (
            new.interval,
            new.enabled,
            new.initialized,
        ):
            return
        if self._loop is None or self._loop.is_closed():
            return
        logger.debug("Sync settings changed, re-arming timer")
        self._loop.call_soon_threadsafe(self._rearm)
