import asyncio

import pytest

from ledger_rpc.errors import NoWorkingEndpoint
from ledger_rpc.events import ENDPOINT_ROTATED
from ledger_rpc.pool import EndpointPool, HealthMonitor
from ledger_rpc.probe import EndpointProber

from fakes import ENDPOINTS, FakeTransport, SleepRecorder


def test_pool_requires_endpoints():
    with pytest.raises(ValueError):
        EndpointPool([])
    with pytest.raises(ValueError):
        EndpointPool(["", None])


def test_pool_deduplicates_in_order():
    pool = EndpointPool(["https://b", "https://a", "https://b"])
    assert [e.address for e in pool.endpoints] == ["https://b", "https://a"]
    assert [e.position for e in pool.endpoints] == [0, 1]


def test_advance_wraps_around(pool):
    start = pool.current_endpoint()
    seen = [pool.advance().address for _ in range(len(pool))]
    assert seen == ENDPOINTS[1:] + ENDPOINTS[:1]
    assert pool.current_endpoint() == start
    assert pool.index == 0


def test_advance_emits_rotation_event(pool, bus):
    events = []
    bus.subscribe(ENDPOINT_ROTATED, events.append)
    pool.advance()
    assert len(events) == 1
    assert events[0].data == {"previous": ENDPOINTS[0], "current": ENDPOINTS[1], "index": 1}


@pytest.mark.asyncio
async def test_find_working_skips_timeouts(bus):
    transport = FakeTransport({ENDPOINTS[0]: "timeout", ENDPOINTS[1]: "hang"})
    pool = EndpointPool(ENDPOINTS, prober=EndpointProber(transport, timeout=0.05), bus=bus)
    ep = await pool.find_working()
    assert ep.address == ENDPOINTS[2]
    assert pool.index == 2
    assert pool.current_endpoint().address == ENDPOINTS[2]


@pytest.mark.asyncio
async def test_find_working_starts_from_first_position(pool):
    pool.advance()
    pool.advance()
    ep = await pool.find_working()
    assert ep.position == 0
    assert pool.index == 0


@pytest.mark.asyncio
async def test_find_working_rejects_read_only_nodes(bus):
    transport = FakeTransport({ENDPOINTS[0]: "read_only"})
    pool = EndpointPool(ENDPOINTS, prober=EndpointProber(transport, timeout=0.05), bus=bus)
    assert (await pool.find_working()).address == ENDPOINTS[1]


@pytest.mark.asyncio
async def test_find_working_exhausted(bus):
    transport = FakeTransport(default="timeout")
    pool = EndpointPool(ENDPOINTS, prober=EndpointProber(transport, timeout=0.05), bus=bus)
    pool.advance()
    with pytest.raises(NoWorkingEndpoint) as exc:
        await pool.find_working()
    assert exc.value.tried == 3
    assert pool.index == 1  # untouched on failure


@pytest.mark.asyncio
async def test_find_working_with_custom_probe(pool):
    async def probe(address):
        return address == ENDPOINTS[1]
    assert (await pool.find_working(probe)).address == ENDPOINTS[1]


@pytest.mark.asyncio
async def test_find_working_without_prober():
    pool = EndpointPool(ENDPOINTS)
    with pytest.raises(RuntimeError):
        await pool.find_working()


@pytest.mark.asyncio
async def test_status_snapshot_probes_all_and_keeps_index(bus):
    transport = FakeTransport({ENDPOINTS[1]: "timeout", ENDPOINTS[2]: "read_only"})
    pool = EndpointPool(ENDPOINTS, prober=EndpointProber(transport, timeout=0.05), bus=bus)
    pool.advance()
    status = await pool.status_snapshot()
    assert status == {ENDPOINTS[0]: True, ENDPOINTS[1]: False, ENDPOINTS[2]: False}
    assert pool.index == 1


@pytest.mark.asyncio
async def test_health_snapshot_records_latency(pool):
    records = await pool.health_snapshot()
    assert [r.address for r in records] == ENDPOINTS
    assert all(r.usable and r.latency is not None for r in records)


def test_configuration_info_with_override():
    pool = EndpointPool(["https://mine.example"] + ENDPOINTS, stream_endpoint="wss://s.example",
                        override="https://mine.example")
    info = pool.configuration_info()
    assert info == {
        "custom_rpc": "https://mine.example",
        "wss_endpoint": "wss://s.example",
        "fallback_endpoints": ENDPOINTS,
        "total_endpoints": 4,
    }


def test_configuration_info_without_override(pool):
    info = pool.configuration_info()
    assert info["custom_rpc"] is None
    assert info["fallback_endpoints"] == ENDPOINTS


@pytest.mark.asyncio
async def test_health_monitor_refresh_is_display_only(bus):
    transport = FakeTransport({ENDPOINTS[0]: "timeout"})
    pool = EndpointPool(ENDPOINTS, prober=EndpointProber(transport, timeout=0.05), bus=bus)
    monitor = HealthMonitor(pool, interval=0.01)
    assert monitor.status() == {}
    await monitor.refresh()
    assert monitor.status()[ENDPOINTS[0]] is False
    assert monitor.last_checked is not None
    assert pool.index == 0


async def _until_checked(monitor):
    while monitor.last_checked is None:
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_health_monitor_background_task(pool):
    sleeps = SleepRecorder()
    monitor = HealthMonitor(pool, interval=30.0, sleep=sleeps)
    monitor.start()
    assert monitor.running
    await asyncio.wait_for(_until_checked(monitor), 1.0)
    await monitor.stop()
    assert not monitor.running
    assert monitor.last_checked is not None
    assert sleeps.delays and set(sleeps.delays) == {30.0}
