"""Update cycles, reload requests and the fixed-period loop."""

import asyncio

import pytest

from hlash.common.scheduler import ScheduledLoop, wait_or_stop
from hlash.services.subscription.scheduler import UpdateScheduler
from hlash.services.subscription.updater import UpdateOutcome

from .fakes import FakeSignaler, FakeUpdater, wait_until


@pytest.mark.asyncio
async def test_commit_requests_reload():
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(FakeUpdater([UpdateOutcome.COMMITTED]), 0, reload_signaler=signaler)

    result = await scheduler.update_now()

    assert result.committed
    assert signaler.requests == 1
    assert scheduler.last_result is result


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [
    UpdateOutcome.SKIPPED,
    UpdateOutcome.DOWNLOAD_FAILED,
    UpdateOutcome.VALIDATION_FAILED,
    UpdateOutcome.SWAP_FAILED,
])
async def test_no_reload_without_commit(outcome):
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(FakeUpdater([outcome]), 0, reload_signaler=signaler)

    result = await scheduler.update_now()

    assert result.outcome == outcome
    assert signaler.requests == 0


@pytest.mark.asyncio
async def test_reload_error_is_absorbed():
    scheduler = UpdateScheduler(FakeUpdater(), 0, reload_signaler=FakeSignaler(fail=True))

    result = await scheduler.update_now()

    assert result.committed


@pytest.mark.asyncio
async def test_cycles_never_overlap():
    updater = FakeUpdater()
    updater.gate = asyncio.Event()
    scheduler = UpdateScheduler(updater, 0)

    first = asyncio.create_task(scheduler.update_now())
    second = asyncio.create_task(scheduler.update_now())
    await asyncio.sleep(0.02)
    assert updater.calls == 1

    updater.gate.set()
    await asyncio.gather(first, second)

    assert updater.calls == 2
    assert updater.max_active == 1


@pytest.mark.asyncio
async def test_startup_update_does_not_reload():
    updater = FakeUpdater()
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(updater, 0, reload_signaler=signaler)
    stop_event = asyncio.Event()

    task = asyncio.create_task(scheduler.run(stop_event))
    await wait_until(lambda: updater.calls == 1)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert signaler.requests == 0
    assert updater.stop_events == [stop_event]
    assert scheduler.next_update_at is None


@pytest.mark.asyncio
async def test_periodic_updates_reload():
    updater = FakeUpdater()
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(updater, 0.05, reload_signaler=signaler)
    stop_event = asyncio.Event()

    task = asyncio.create_task(scheduler.run(stop_event, immediate=False))
    await wait_until(lambda: updater.calls >= 2)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert signaler.requests == updater.calls
    assert scheduler.next_update_at is not None


@pytest.mark.asyncio
async def test_unexpected_updater_error_becomes_failed_result():
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(FakeUpdater([RuntimeError("boom")]), 0, reload_signaler=signaler)

    result = await scheduler.update_now()

    assert result.outcome == UpdateOutcome.FAILED
    assert str(result.error) == "boom"
    assert result.finished_at is not None
    assert scheduler.last_result is result
    assert signaler.requests == 0


@pytest.mark.asyncio
async def test_startup_crash_keeps_schedule_running():
    updater = FakeUpdater([ValueError("bad url"), UpdateOutcome.COMMITTED])
    signaler = FakeSignaler()
    scheduler = UpdateScheduler(updater, 0.05, reload_signaler=signaler)
    stop_event = asyncio.Event()

    task = asyncio.create_task(scheduler.run(stop_event))
    await wait_until(lambda: updater.calls >= 2)
    assert not task.done()

    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert signaler.requests >= 1


@pytest.mark.asyncio
async def test_stop_ends_run_promptly():
    scheduler = UpdateScheduler(FakeUpdater(), 3600)
    stop_event = asyncio.Event()

    task = asyncio.create_task(scheduler.run(stop_event))
    await asyncio.sleep(0.02)
    stop_event.set()

    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_wait_or_stop():
    stop_event = asyncio.Event()
    assert await wait_or_stop(stop_event, 0.01) is False

    stop_event.set()
    assert await wait_or_stop(stop_event, 60) is True
    assert await wait_or_stop(None, 0) is False


def test_loop_rejects_non_positive_interval():
    async def callback():
        pass

    with pytest.raises(ValueError):
        ScheduledLoop(0, callback)


@pytest.mark.asyncio
async def test_loop_survives_callback_errors():
    calls = []

    async def callback():
        calls.append(1)
        raise RuntimeError("boom")

    loop = ScheduledLoop(0.01, callback, name="test")
    stop_event = asyncio.Event()
    task = asyncio.create_task(loop.run(stop_event))

    await wait_until(lambda: len(calls) >= 3)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    stats = loop.get_stats()
    assert stats["error_count"] >= 3
    assert stats["execution_count"] == 0


@pytest.mark.asyncio
async def test_loop_skips_missed_intervals():
    async def slow():
        await asyncio.sleep(0.05)

    loop = ScheduledLoop(0.01, slow, name="slow")
    stop_event = asyncio.Event()
    task = asyncio.create_task(loop.run(stop_event))

    await wait_until(lambda: loop.execution_count >= 2)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert loop.skipped_count > 0
