"""
Unit tests for the Aggregator: joint progress, sampling and stop policies.
"""

import asyncio

import pytest

from conftest import MemoryErrorTable, RecordingSink, make_events
from firehose_store.pipeline import (
    Aggregator,
    BatchInserter,
    ErrorSink,
    JointProgress,
    ProgressBus,
    RetryPolicy,
    StreamProgress,
    StreamSupervisor,
    Windower,
)
from firehose_store.sources import iter_source


def supervisor(name, source_factory, stop_event=None, bus=None):
    return StreamSupervisor(
        name,
        source_factory,
        Windower(max_count=5, max_window=0.02),
        BatchInserter(RecordingSink(), name),
        ErrorSink(MemoryErrorTable(), stream=name),
        RetryPolicy(max_attempts=1),
        bus=bus,
        restart_delay=0.01,
        stop_event=stop_event,
    )


async def trickle(n, delay, start=0):
    for e in make_events(n, start):
        await asyncio.sleep(delay)
        yield e


async def idle_until(hold: asyncio.Event):
    await hold.wait()
    if False:
        yield  # pragma: no cover


def test_joint_progress_str_and_total():
    joint = JointProgress(StreamProgress("sample", count=120), StreamProgress("user", count=7))
    assert str(joint) == "{ sample_count = 120, user_count = 7 }"
    assert joint.total == 127
    assert joint.counts() == {"sample": 120, "user": 7}


@pytest.mark.asyncio
async def test_idle_stream_keeps_last_value_while_other_updates():
    hold = asyncio.Event()
    reports = []

    async def reporter(joint):
        reports.append(joint)

    sample = supervisor("sample", lambda: trickle(40, 0.005))
    user = supervisor("user", lambda: idle_until(hold))
    agg = Aggregator(sample, user, sample_interval=0.03, reporter=reporter)

    task = asyncio.create_task(agg.run())

    async def sample_done():
        while not sample.progress.stopped:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(sample_done(), 3.0)
    await asyncio.sleep(0.05)
    agg.stop()
    final = await asyncio.wait_for(task, 2.0)

    live = [r for r in reports if not r.first.stopped]
    assert len(live) >= 2
    assert all(r.second.count == 0 for r in reports)
    sample_counts = [r.first.count for r in live]
    assert sample_counts == sorted(sample_counts)
    assert sample_counts[-1] > sample_counts[0]
    assert final.first.count == 40
    assert final.second.stopped
    hold.set()


@pytest.mark.asyncio
async def test_sample_reports_only_changes():
    reports = []

    async def reporter(joint):
        reports.append(joint)

    sample = supervisor("sample", lambda: iter_source([]))
    user = supervisor("user", lambda: iter_source([]))
    agg = Aggregator(sample, user, sample_interval=10.0, reporter=reporter)

    assert await agg.sample() is None
    await agg._on_progress(StreamProgress("sample", count=5))
    first = await agg.sample()
    assert first is not None and first.first.count == 5
    assert await agg.sample() is None
    assert reports == [first]


@pytest.mark.asyncio
async def test_stop_policy_all_waits_for_both_streams():
    sample = supervisor("sample", lambda: iter_source(make_events(7)))
    user = supervisor("user", lambda: trickle(12, 0.01, start=100))
    agg = Aggregator(sample, user, sample_interval=0.05, stop_policy="all", reporter=_noop)

    final = await asyncio.wait_for(agg.run(), 3.0)

    assert final.first.count == 7
    assert final.second.count == 12
    assert final.first.stopped and final.second.stopped


@pytest.mark.asyncio
async def test_stop_policy_any_stops_the_other_stream():
    hold = asyncio.Event()
    sample = supervisor("sample", lambda: iter_source(make_events(3)))
    user = supervisor("user", lambda: idle_until(hold))
    agg = Aggregator(sample, user, sample_interval=0.05, stop_policy="any", reporter=_noop)

    final = await asyncio.wait_for(agg.run(), 2.0)

    assert final.first.count == 3
    assert final.second.stopped
    hold.set()


@pytest.mark.asyncio
async def test_unrecoverable_error_is_reraised_after_other_stream_finishes():
    async def exhausted():
        yield make_events(1)[0]
        raise MemoryError()

    sample = supervisor("sample", lambda: exhausted())
    user = supervisor("user", lambda: iter_source(make_events(4)))
    agg = Aggregator(sample, user, sample_interval=0.05, reporter=_noop)

    with pytest.raises(MemoryError):
        await asyncio.wait_for(agg.run(), 2.0)
    assert user.progress.count == 4


def test_aggregator_validates_arguments():
    a = supervisor("same", lambda: iter_source([]))
    b = supervisor("same", lambda: iter_source([]))
    with pytest.raises(ValueError):
        Aggregator(a, b)
    c = supervisor("other", lambda: iter_source([]))
    with pytest.raises(ValueError):
        Aggregator(a, c, stop_policy="first")


@pytest.mark.asyncio
async def test_shared_bus_feeds_both_sides():
    bus = ProgressBus()
    a = supervisor("sample", lambda: iter_source([]), bus=bus)
    b = supervisor("user", lambda: iter_source([]), bus=bus)
    agg = Aggregator(a, b)

    await bus.publish(StreamProgress("user", count=3))
    await bus.publish(StreamProgress("sample", count=8))

    assert agg.latest.counts() == {"sample": 8, "user": 3}


async def _noop(joint):
    return None
