import asyncio

import pytest
from scam_detector_client.keep_alive import KeepAliveScheduler, keep_alive_scheduler


class CountingPing:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("backend asleep")


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_start_fires_one_immediate_ping():
    ping = CountingPing()
    scheduler = KeepAliveScheduler("http://backend.test", interval=60, ping=ping)

    scheduler.start()
    await settle()

    assert scheduler.is_running() is True
    assert ping.calls == 1
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_start_twice_keeps_a_single_schedule():
    ping = CountingPing()
    scheduler = KeepAliveScheduler("http://backend.test", interval=60, ping=ping)

    scheduler.start()
    task = scheduler._task
    scheduler.start()
    await settle()

    assert scheduler._task is task
    assert ping.calls == 1
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    scheduler = KeepAliveScheduler("http://backend.test", interval=60, ping=CountingPing())

    scheduler.stop()
    scheduler.start()
    scheduler.stop()
    scheduler.stop()

    assert scheduler.is_running() is False
    assert scheduler._task is None


@pytest.mark.asyncio
async def test_rapid_toggling_leaves_one_live_task():
    ping = CountingPing()
    scheduler = KeepAliveScheduler("http://backend.test", interval=60, ping=ping)

    for _ in range(50):
        scheduler.start()
        scheduler.stop()
    scheduler.start()
    await settle()

    live = [
        task for task in asyncio.all_tasks()
        if task.get_name() == "keep-alive" and not task.done()
    ]
    assert live == [scheduler._task]
    assert ping.calls == 1
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_failed_pings_do_not_stop_the_schedule():
    ping = CountingPing(fail=True)
    scheduler = KeepAliveScheduler("http://backend.test", interval=0.02, ping=ping)

    scheduler.start()
    await asyncio.sleep(0.15)

    assert scheduler.is_running() is True
    assert ping.calls >= 3
    assert scheduler.failure_count == ping.calls
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_time_since_last_ping(clock):
    ping = CountingPing()
    scheduler = KeepAliveScheduler(
        "http://backend.test", interval=60, ping=ping, clock=clock
    )
    assert scheduler.time_since_last_ping() is None

    scheduler.start()
    await settle()
    clock.advance(12.5)

    assert scheduler.time_since_last_ping() == pytest.approx(12.5)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_failed_ping_keeps_previous_timestamp(clock):
    scheduler = KeepAliveScheduler(
        "http://backend.test", interval=60, ping=CountingPing(fail=True), clock=clock
    )

    clock.advance(5)
    scheduler.start()
    clock.advance(7)
    await settle()

    assert scheduler.time_since_last_ping() == pytest.approx(7)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_default_ping_hits_backend_root(server):
    server_instance, base_url = server
    scheduler = KeepAliveScheduler(base_url, interval=60)

    scheduler.start()
    for _ in range(50):
        if server_instance.root_requests:
            break
        await asyncio.sleep(0.02)

    assert server_instance.root_requests == 1
    assert scheduler.failure_count == 0
    await scheduler.shutdown()


def test_process_wide_scheduler_starts_inactive():
    assert keep_alive_scheduler.is_running() is False
