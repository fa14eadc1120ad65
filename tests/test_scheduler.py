"""Tests for the periodic scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from stonks.providers.base import FetchRequest
from stonks.streaming.bus import BusClosedError, EventBus, QueueFullPolicy
from stonks.streaming.scheduler import Scheduler, SchedulerState


START = datetime(2020, 7, 2, 19, 30, tzinfo=timezone.utc)


class SteppingClock:
    """Clock that advances one minute on every call."""

    def __init__(self, first: datetime):
        self.current = first - timedelta(minutes=1)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


def drain(sub) -> list[FetchRequest]:
    items = []
    while sub.qsize():
        items.append(sub.queue.get_nowait())
        sub.task_done()
    return items


@pytest.mark.asyncio
async def test_tick_publishes_one_request_per_symbol():
    bus = EventBus()
    sub = bus.subscribe(FetchRequest)
    clock = SteppingClock(datetime(2020, 8, 1, tzinfo=timezone.utc))
    scheduler = Scheduler(bus, ["AAPL", "MSFT"], start=START, interval="1d", clock=clock)

    published = await scheduler.tick()

    requests = drain(sub)
    assert published == 2
    assert [r.symbol for r in requests] == ["AAPL", "MSFT"]
    assert all(r.time_range.start == START for r in requests)
    assert all(r.time_range.end == datetime(2020, 8, 1, tzinfo=timezone.utc) for r in requests)
    assert all(r.time_range.interval == "1d" for r in requests)
    assert all(r.tick == 1 for r in requests)


@pytest.mark.asyncio
async def test_window_widens_each_tick():
    """Start stays fixed while the end advances to 'now'."""
    bus = EventBus()
    sub = bus.subscribe(FetchRequest)
    scheduler = Scheduler(bus, ["AAPL"], start=START, clock=SteppingClock(datetime(2021, 1, 1, tzinfo=timezone.utc)))

    await scheduler.tick()
    await scheduler.tick()

    first, second = drain(sub)
    assert first.time_range.start == second.time_range.start == START
    assert second.time_range.end > first.time_range.end
    assert (first.tick, second.tick) == (1, 2)


@pytest.mark.asyncio
async def test_queue_full_isolated_to_one_request(caplog):
    bus = EventBus(maxsize=1, policy=QueueFullPolicy.REJECT)
    sub = bus.subscribe(FetchRequest)
    scheduler = Scheduler(bus, ["AAPL", "MSFT", "GOOG"], start=START)

    published = await scheduler.tick()

    assert published == 1
    assert sub.qsize() == 1
    assert "MSFT" in caplog.text and "GOOG" in caplog.text


@pytest.mark.asyncio
async def test_run_fires_immediately_and_stops():
    bus = EventBus()
    sub = bus.subscribe(FetchRequest)
    scheduler = Scheduler(bus, ["AAPL"], start=START, period_seconds=60.0)
    assert scheduler.state is SchedulerState.IDLE

    task = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.01)

    assert scheduler.state is SchedulerState.RUNNING
    assert scheduler.ticks == 1
    assert sub.qsize() == 1

    scheduler.stop()
    await asyncio.wait_for(task, timeout=1.0)
    assert scheduler.state is SchedulerState.STOPPED


@pytest.mark.asyncio
async def test_run_ticks_periodically():
    bus = EventBus()
    bus.subscribe(FetchRequest)
    scheduler = Scheduler(bus, ["AAPL"], start=START, period_seconds=0.05)

    task = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.18)
    scheduler.stop()
    await asyncio.wait_for(task, timeout=1.0)

    assert 3 <= scheduler.ticks <= 5


@pytest.mark.asyncio
async def test_closed_bus_is_fatal():
    bus = EventBus()
    bus.subscribe(FetchRequest)
    bus.close()
    scheduler = Scheduler(bus, ["AAPL"], start=START)

    with pytest.raises(BusClosedError):
        await scheduler.run()
    assert scheduler.state is SchedulerState.STOPPED


@pytest.mark.asyncio
async def test_cannot_run_twice():
    bus = EventBus()
    scheduler = Scheduler(bus, ["AAPL"], start=START)
    scheduler.stop()
    await scheduler.run()

    with pytest.raises(RuntimeError):
        await scheduler.run()
