from __future__ import annotations

import asyncio
import threading

import pytest

from memo_tracker.main import create_app
from memo_tracker.observability.metrics import Registry
from memo_tracker.observability.refresher import PeriodicRefresher, RefreshOutcome, RefresherState
from memo_tracker.services.memo_service import DataAccessError


class ScriptedSource:
    """Returns (or raises) scripted results in order, then repeats the last one."""

    def __init__(self, *results: object) -> None:
        self.results = list(results)
        self.calls = 0

    def __call__(self) -> float:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _gauge_value(gauge) -> float:
    return next(iter(gauge.collect())).value


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def _gauge():
    return Registry().gauge("active_memos_count", "Active memos")


async def test_failed_refresh_keeps_last_good_value() -> None:
    gauge = _gauge()
    source = ScriptedSource(5, DataAccessError("db down"), 7)
    refresher = PeriodicRefresher(gauge, source, interval_seconds=30)

    assert await refresher.refresh_once() is RefreshOutcome.UPDATED
    assert _gauge_value(gauge) == 5

    assert await refresher.refresh_once() is RefreshOutcome.FAILED
    assert _gauge_value(gauge) == 5
    assert refresher.state is RefresherState.IDLE

    assert await refresher.refresh_once() is RefreshOutcome.UPDATED
    assert _gauge_value(gauge) == 7
    assert refresher.failures == 1


async def test_unexpected_errors_are_swallowed_too() -> None:
    gauge = _gauge()
    refresher = PeriodicRefresher(gauge, ScriptedSource(RuntimeError("boom")), interval_seconds=30)

    assert await refresher.refresh_once() is RefreshOutcome.FAILED
    assert _gauge_value(gauge) == 0


async def test_overlapping_refresh_is_skipped() -> None:
    gauge = _gauge()
    release = threading.Event()
    calls = []

    def slow_count() -> int:
        calls.append(1)
        release.wait(5)
        return 9

    refresher = PeriodicRefresher(gauge, slow_count, interval_seconds=30)
    first = asyncio.create_task(refresher.refresh_once())
    await asyncio.sleep(0)
    assert refresher.state is RefresherState.REFRESHING

    try:
        assert await refresher.refresh_once() is RefreshOutcome.SKIPPED
        assert refresher.ticks_skipped == 1
    finally:
        release.set()

    assert await first is RefreshOutcome.UPDATED
    assert len(calls) == 1
    assert _gauge_value(gauge) == 9


async def test_start_refreshes_immediately() -> None:
    gauge = _gauge()
    refresher = PeriodicRefresher(gauge, ScriptedSource(3), interval_seconds=60)
    refresher.start()
    try:
        await _wait_for(lambda: _gauge_value(gauge) == 3)
        assert refresher.running
    finally:
        await refresher.stop()
    assert not refresher.running
    assert refresher.state is RefresherState.IDLE


async def test_timer_keeps_ticking_after_a_failure() -> None:
    gauge = _gauge()
    source = ScriptedSource(DataAccessError("db down"), 4, 6)
    refresher = PeriodicRefresher(gauge, source, interval_seconds=0.02)
    refresher.start()
    try:
        await _wait_for(lambda: source.calls >= 3)
        await _wait_for(lambda: _gauge_value(gauge) == 6)
    finally:
        await refresher.stop()
    assert refresher.failures == 1


async def test_slow_refresh_makes_ticks_skip_instead_of_queue() -> None:
    gauge = _gauge()
    release = threading.Event()
    calls = []

    def slow_count() -> int:
        calls.append(1)
        release.wait(5)
        return 1

    refresher = PeriodicRefresher(gauge, slow_count, interval_seconds=0.01)
    refresher.start()
    try:
        await _wait_for(lambda: refresher.ticks_skipped >= 3)
        assert len(calls) == 1
    finally:
        release.set()
        await refresher.stop()


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PeriodicRefresher(_gauge(), ScriptedSource(1), interval_seconds=0)


async def test_app_lifespan_runs_refresher() -> None:
    app = create_app(active_memo_loader=lambda: 4)
    async with app.router.lifespan_context(app):
        assert app.state.refresher.running
        await _wait_for(lambda: _gauge_value(app.state.metrics.active_memos) == 4)
    assert not app.state.refresher.running


async def test_trigger_refreshes_outside_the_schedule() -> None:
    gauge = _gauge()
    refresher = PeriodicRefresher(gauge, ScriptedSource(11), interval_seconds=60)

    assert await refresher.trigger() is RefreshOutcome.UPDATED
    assert _gauge_value(gauge) == 11
    assert not refresher.running


async def test_stop_cancels_a_triggered_refresh() -> None:
    gauge = _gauge()
    release = threading.Event()

    def slow_count() -> int:
        release.wait(5)
        return 8

    refresher = PeriodicRefresher(gauge, slow_count, interval_seconds=30)
    pending = asyncio.create_task(refresher.trigger())
    await _wait_for(lambda: refresher.state is RefresherState.REFRESHING)

    try:
        await refresher.stop()
        assert await pending is RefreshOutcome.SKIPPED
    finally:
        release.set()

    assert refresher.state is RefresherState.IDLE
    assert _gauge_value(gauge) == 0
