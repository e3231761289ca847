"""
Client for the external biometric verification device (HTTP or WebSocket).

The gate fails closed: with no device URL configured every verification is
refused. A device that answers "no" raises BiometricRejected; a device that
cannot answer (error, timeout, closed socket) raises BiometricUnavailable.
"""

from __future__ import annotations
import asyncio, json, logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
import aiohttp

from .errors import BiometricError, BiometricRejected, BiometricUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000


@dataclass
class BiometricResult:
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)


class BiometricGate:
    def __init__(self, http_url: Optional[str] = None, ws_url: Optional[str] = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession):
        self.http_url = http_url
        self.ws_url = ws_url
        self.timeout_ms = timeout_ms
        self._session_factory = session_factory

    @classmethod
    def from_settings(cls, settings) -> "BiometricGate":
        return cls(http_url=settings.biometric_http_url, ws_url=settings.biometric_ws_url)

    @property
    def configured(self) -> bool:
        return bool(self.http_url or self.ws_url)

    def config(self) -> Dict[str, Optional[str]]:
        return {"http_url": self.http_url, "ws_url": self.ws_url}

    async def _verify_http(self, subject_id: str) -> BiometricResult:
        async with self._session_factory() as session:
            async with session.post(self.http_url, json={"voterId": subject_id}) as resp:
                if resp.status >= 400:
                    raise BiometricUnavailable(f"Biometric HTTP error {resp.status}")
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    raise BiometricUnavailable("Biometric device returned invalid response") from None
        data = data if isinstance(data, dict) else {}
        return BiometricResult(bool(data.get("success")), data)

    async def _verify_ws(self, subject_id: str) -> BiometricResult:
        async with self._session_factory() as session:
            async with session.ws_connect(self.ws_url) as ws:
                await ws.send_json({"type": "verify", "voterId": subject_id})
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        raise BiometricUnavailable("Biometric WebSocket error")
                    if msg.type != aiohttp.WSMsgType.TEXT:
                        continue
                    try:
                        data = json.loads(msg.data)
                    except ValueError:
                        continue  # non-JSON frame
                    if (isinstance(data, dict) and data.get("type") == "verification_result"
                            and data.get("voterId") == subject_id):
                        return BiometricResult(bool(data.get("success")), data)
        raise BiometricUnavailable("Biometric WebSocket closed before result")

    async def verify(self, subject_id: str, timeout_ms: Optional[int] = None) -> BiometricResult:
        if not subject_id or not subject_id.strip():
            raise ValueError("Subject ID is required for biometric verification")
        # WebSocket preferred when both are configured
        if self.ws_url:
            pending = self._verify_ws(subject_id)
        elif self.http_url:
            pending = self._verify_http(subject_id)
        else:
            raise BiometricUnavailable(
                "Biometric endpoints not configured. Set BIOMETRIC_HTTP_URL or BIOMETRIC_WS_URL.")
        timeout = (timeout_ms or self.timeout_ms) / 1000.0
        try:
            return await asyncio.wait_for(pending, timeout)
        except asyncio.TimeoutError:
            raise BiometricUnavailable("Biometric verification timed out") from None

    async def require(self, subject_id: str, timeout_ms: Optional[int] = None) -> BiometricResult:
        """verify() and raise unless the subject was positively verified."""
        try:
            result = await self.verify(subject_id, timeout_ms)
        except BiometricError:
            raise
        except (aiohttp.ClientError, OSError) as e:
            raise BiometricUnavailable(f"Biometric device error: {e}") from e
        if not result.success:
            logger.warning(f"Biometric verification rejected for {subject_id}")
            raise BiometricRejected(f"Biometric verification failed for {subject_id}")
        logger.info(f"Biometric verification passed for {subject_id}")
        return result
