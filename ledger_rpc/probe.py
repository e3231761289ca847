"""
Endpoint capability probing.

A usable endpoint must answer a cheap read (eth_blockNumber) AND must not
reject eth_sendTransaction as unimplemented. The write probe sends a
zero-address transaction that no node will accept; any error other than
"method not found / not implemented / not supported" counts as support.
This is a best-effort compatibility heuristic only: it says nothing about
whether the peer is correctly configured.
"""

from __future__ import annotations
import asyncio, itertools, logging, time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import aiohttp

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40
UNSUPPORTED_PHRASES = ("not implemented", "method not found", "not supported")
DEFAULT_PROBE_TIMEOUT = 5.0


class JsonRpcTransport:
    """Bare JSON-RPC over HTTP POST (one shared aiohttp session)."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._ids = itertools.count(1)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Content-Type": "application/json"})
        return self._session

    async def request(self, endpoint: str, method: str, params: List[Any], timeout: float) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        session = self._get_session()
        async with session.post(endpoint, json=payload, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


@dataclass
class HealthRecord:
    address: str
    reachable: bool
    write_capable: bool = False
    latency: Optional[float] = None  # seconds, read probe only
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.reachable and self.write_capable


class EndpointProber:
    def __init__(self, transport, timeout: float = DEFAULT_PROBE_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        self.transport = transport
        self.timeout = timeout
        self._clock = clock

    async def _request(self, address: str, method: str, params: List[Any]) -> Dict[str, Any]:
        # the outer wait_for bounds transports that ignore their own timeout
        return await asyncio.wait_for(
            self.transport.request(address, method, params, self.timeout), self.timeout)

    async def check_read(self, address: str) -> bool:
        data = await self._request(address, "eth_blockNumber", [])
        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, str):
            return False
        try:
            int(result, 16)
        except ValueError:
            return False
        return True

    async def check_write(self, address: str) -> bool:
        tx = {"from": ZERO_ADDRESS, "to": ZERO_ADDRESS, "value": "0x0"}
        data = await self._request(address, "eth_sendTransaction", [tx])
        err = data.get("error") if isinstance(data, dict) else None
        if not isinstance(err, dict):
            return True
        message = str(err.get("message") or "").lower()
        return not any(p in message for p in UNSUPPORTED_PHRASES)

    async def probe(self, address: str) -> HealthRecord:
        start = self._clock()
        try:
            if not await self.check_read(address):
                return HealthRecord(address, reachable=False, error="invalid eth_blockNumber result")
        except asyncio.TimeoutError:
            logger.warning(f"Probe timed out after {self.timeout}s: {address}")
            return HealthRecord(address, reachable=False, error="timeout")
        except Exception as e:
            logger.warning(f"Probe failed for {address}: {e}")
            return HealthRecord(address, reachable=False, error=str(e))
        latency = self._clock() - start

        try:
            capable = await self.check_write(address)
        except asyncio.TimeoutError:
            logger.warning(f"Write probe timed out after {self.timeout}s: {address}")
            return HealthRecord(address, reachable=True, latency=latency, error="timeout")
        except Exception as e:
            logger.warning(f"Write probe failed for {address}: {e}")
            return HealthRecord(address, reachable=True, latency=latency, error=str(e))
        if not capable:
            return HealthRecord(address, reachable=True, latency=latency,
                                error="eth_sendTransaction not supported")
        return HealthRecord(address, reachable=True, write_capable=True, latency=latency)

    async def is_usable(self, address: str) -> bool:
        return (await self.probe(address)).usable
