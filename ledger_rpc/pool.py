"""
Ordered pool of candidate RPC endpoints with failover.

The pool is never empty and only its current index mutates (advance() and
find_working()). All callers share one index; asyncio runs them one at a
time between awaits, so the index is never torn. Callers sharing a pool
across threads need their own lock around it.
"""

from __future__ import annotations
import asyncio, contextlib, logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from .errors import NoWorkingEndpoint
from .events import ENDPOINT_ROTATED, EventBus
from .probe import EndpointProber, HealthRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Endpoint:
    address: str
    position: int

    def __str__(self) -> str:
        return self.address


class EndpointPool:
    def __init__(self, addresses: Sequence[str], prober: Optional[EndpointProber] = None,
                 stream_endpoint: Optional[str] = None, override: Optional[str] = None,
                 bus: Optional[EventBus] = None):
        # Deduplicate while preserving order
        seen = set(); uniq = []
        for a in addresses:
            if a and a not in seen:
                uniq.append(a); seen.add(a)
        if not uniq:
            raise ValueError("EndpointPool requires at least one endpoint")
        self._endpoints = tuple(Endpoint(a, i) for i, a in enumerate(uniq))
        self._index = 0
        self.prober = prober
        self.stream_endpoint = stream_endpoint
        self.override = override
        self.bus = bus

    @classmethod
    def from_settings(cls, settings, prober: Optional[EndpointProber] = None,
                      bus: Optional[EventBus] = None) -> "EndpointPool":
        return cls(settings.rpc_endpoints, prober=prober, stream_endpoint=settings.wss_endpoint,
                   override=settings.override_endpoint, bus=bus)

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints)

    @property
    def index(self) -> int:
        return self._index

    def current_endpoint(self) -> Endpoint:
        return self._endpoints[self._index]

    def advance(self) -> Endpoint:
        previous = self.current_endpoint()
        self._index = (self._index + 1) % len(self._endpoints)
        current = self.current_endpoint()
        logger.info(f"Switched RPC endpoint: {previous} -> {current}")
        if self.bus is not None:
            self.bus.emit(ENDPOINT_ROTATED, previous=previous.address, current=current.address,
                          index=self._index)
        return current

    def _require_prober(self) -> EndpointProber:
        if self.prober is None:
            raise RuntimeError("EndpointPool has no prober configured")
        return self.prober

    async def find_working(self, probe: Optional[Callable[[str], Awaitable[bool]]] = None) -> Endpoint:
        """First endpoint (scanning from position 0) that is reachable and write-capable."""
        check = probe or self._require_prober().is_usable
        for ep in self._endpoints:
            logger.info(f"Testing RPC endpoint: {ep}")
            if await check(ep.address):
                self._index = ep.position
                logger.info(f"Found working RPC endpoint: {ep}")
                return ep
            logger.info(f"RPC endpoint failed: {ep}")
        raise NoWorkingEndpoint(len(self._endpoints))

    async def health_snapshot(self) -> List[HealthRecord]:
        """Probe every endpoint. Never changes the current selection."""
        prober = self._require_prober()
        return list(await asyncio.gather(*(prober.probe(ep.address) for ep in self._endpoints)))

    async def status_snapshot(self) -> Dict[str, bool]:
        return {rec.address: rec.usable for rec in await self.health_snapshot()}

    def configuration_info(self) -> Dict[str, Any]:
        addresses = [ep.address for ep in self._endpoints]
        fallbacks = addresses[1:] if self.override else addresses
        return {
            "custom_rpc": self.override,
            "wss_endpoint": self.stream_endpoint,
            "fallback_endpoints": fallbacks,
            "total_endpoints": len(addresses),
        }


class HealthMonitor:
    """Refreshes a pool health snapshot on a fixed interval, for display only."""

    def __init__(self, pool: EndpointPool, interval: float = 30.0,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.pool = pool
        self.interval = interval
        self.latest: List[HealthRecord] = []
        self.last_checked: Optional[datetime] = None
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> List[HealthRecord]:
        records = await self.pool.health_snapshot()
        self.latest = records
        self.last_checked = datetime.now(timezone.utc)
        healthy = sum(1 for r in records if r.usable)
        logger.debug(f"Health refresh: {healthy}/{len(records)} endpoints usable")
        return records

    def status(self) -> Dict[str, bool]:
        return {r.address: r.usable for r in self.latest}

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("Health refresh failed")
            await self._sleep(self.interval)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
