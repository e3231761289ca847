import pytest

from ledger_rpc.config import RetrySettings, Settings, TxSettings
from ledger_rpc.events import EventBus
from ledger_rpc.pool import EndpointPool
from ledger_rpc.probe import EndpointProber

from fakes import ENDPOINTS, FakeTransport, SleepRecorder


@pytest.fixture
def bus():
    bus = EventBus()
    yield bus
    bus.close()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def pool(transport, bus):
    return EndpointPool(ENDPOINTS, prober=EndpointProber(transport, timeout=0.05), bus=bus)


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.delenv("POLYGON_RPC_URL", raising=False)
    return Settings(
        chain="polygon",
        chain_id=137,
        rpc_endpoints=list(ENDPOINTS),
        wss_endpoint="wss://stream.example",
        probe_timeout=0.05,
        retry=RetrySettings(max_attempts=3, delay=0.0),
        tx=TxSettings(max_retries=3, backoff_base=0.0, backoff_cap=0.0, receipt_interval=0.0, receipt_attempts=3),
    )
