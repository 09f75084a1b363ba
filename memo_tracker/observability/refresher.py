from __future__ import annotations

import asyncio
import contextlib
import math
from enum import Enum
from typing import Callable

import structlog

from memo_tracker.observability.metrics import Gauge
from memo_tracker.services.memo_service import DataAccessError


logger = structlog.get_logger("metrics.refresher")


class RefresherState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshOutcome(str, Enum):
    UPDATED = "updated"
    FAILED = "failed"
    SKIPPED = "skipped"


class PeriodicRefresher:
    """Keeps a gauge in step with a blocking data source.

    Ticks once on start and then on a fixed schedule. At most one refresh is
    in flight: a tick that lands while the previous refresh is still running is
    dropped. A failed refresh leaves the gauge at its last good value.
    """

    def __init__(
        self,
        gauge: Gauge,
        fetch: Callable[[], float],
        interval_seconds: float = 30.0,
        name: str = "active_memos",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._gauge = gauge
        self._fetch = fetch
        self._interval = float(interval_seconds)
        self._name = name
        self._state = RefresherState.IDLE
        self._timer: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[RefreshOutcome]] = set()
        self.ticks_skipped = 0
        self.failures = 0

    @property
    def state(self) -> RefresherState:
        return self._state

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def refresh_once(self) -> RefreshOutcome:
        # Check-and-set happens before the first await, so it is atomic on the loop.
        if self._state is RefresherState.REFRESHING:
            self.ticks_skipped += 1
            logger.debug("refresh_skipped", refresher=self._name)
            return RefreshOutcome.SKIPPED

        self._state = RefresherState.REFRESHING
        try:
            value = await asyncio.to_thread(self._fetch)
            self._gauge.set(value=value)
        except DataAccessError as exc:
            self.failures += 1
            logger.warning("refresh_failed", refresher=self._name, error=str(exc))
            return RefreshOutcome.FAILED
        except Exception:  # noqa: BLE001
            self.failures += 1
            logger.exception("refresh_failed", refresher=self._name)
            return RefreshOutcome.FAILED
        finally:
            self._state = RefresherState.IDLE

        logger.debug("refresh_complete", refresher=self._name, value=value)
        return RefreshOutcome.UPDATED

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run(), name=f"refresher:{self._name}")
        logger.info("refresher_started", refresher=self._name, interval_seconds=self._interval)

    async def stop(self) -> None:
        tasks = [t for t in (self._timer, *self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._timer = None
        self._inflight.clear()
        self._state = RefresherState.IDLE
        logger.info("refresher_stopped", refresher=self._name)

    async def trigger(self) -> RefreshOutcome:
        """Refresh outside the schedule, e.g. right after a write.

        The refresh runs as a task owned by the refresher, so `stop()` cancels
        it along with the timer.
        """
        task = self._tick()
        if task is None:
            return RefreshOutcome.SKIPPED
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            return RefreshOutcome.SKIPPED

    def _tick(self) -> asyncio.Task[RefreshOutcome] | None:
        if self._state is RefresherState.REFRESHING:
            self.ticks_skipped += 1
            logger.debug("refresh_skipped", refresher=self._name)
            return None
        task = asyncio.create_task(self.refresh_once())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self._tick()
            next_tick += self._interval
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind; drop the missed ticks instead of bunching them up.
                missed = math.ceil(-delay / self._interval)
                next_tick += missed * self._interval
                delay = next_tick - loop.time()
            await asyncio.sleep(max(delay, 0.0))
