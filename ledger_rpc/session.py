"""
LedgerSession: the surface handed to a presentation layer.

Wires pool, prober, executor, ledger, pipeline, wallet, biometric gate and
event bus together from Settings, and owns their lifetimes.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .biometric import BiometricGate
from .config import Settings, load_settings
from .errors import LedgerRPCError
from .events import EventBus, Subscription
from .ledger import MethodCall, Web3Ledger
from .pipeline import TransactionPipeline, TxOptions
from .pool import EndpointPool, HealthMonitor
from .probe import EndpointProber, JsonRpcTransport
from .retry import ExponentialCappedBackoff, LinearBackoff, RetryExecutor, RetryPolicy
from .wallet import NodeSigner, Signer, WalletSession

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    chain: str
    current_endpoint: str
    stream_endpoint: Optional[str]
    account: Optional[str]
    connected: bool
    endpoint_status: Dict[str, bool] = field(default_factory=dict)
    last_checked: Optional[datetime] = None


class LedgerSession:
    def __init__(self, settings: Settings, signer: Optional[Signer] = None,
                 transport=None, ledger=None, biometric: Optional[BiometricGate] = None,
                 bus: Optional[EventBus] = None):
        self.settings = settings
        self.bus = bus or EventBus()
        self.transport = transport or JsonRpcTransport()
        self.prober = EndpointProber(self.transport, timeout=settings.probe_timeout)
        self.pool = EndpointPool.from_settings(settings, prober=self.prober, bus=self.bus)
        self.executor = RetryExecutor(self.pool, RetryPolicy(
            max_attempts=settings.retry.max_attempts, backoff=LinearBackoff(settings.retry.delay),
            timeout=settings.retry.timeout))
        self.ledger = ledger or Web3Ledger(self.pool)
        if signer is None and isinstance(self.ledger, Web3Ledger):
            signer = NodeSigner(self.ledger)
        if isinstance(self.ledger, Web3Ledger) and self.ledger.signer is None:
            self.ledger.signer = signer
        self.wallet = WalletSession(signer, bus=self.bus)
        self.pipeline = TransactionPipeline(self.ledger, self.executor, bus=self.bus,
                                            defaults=TxOptions.from_settings(settings.tx),
                                            outer_backoff=ExponentialCappedBackoff(settings.tx.backoff_base,
                                                                                   settings.tx.backoff_cap))
        self.biometric = biometric or BiometricGate.from_settings(settings)
        self.monitor = HealthMonitor(self.pool, interval=settings.health_interval)
        self.contract_address: Optional[str] = None

    @classmethod
    def for_chain(cls, chain: str = "polygon", **kwargs) -> "LedgerSession":
        return cls(load_settings(chain), **kwargs)

    # ---- lifecycle ----

    async def initialize(self, contract_address: Optional[str] = None) -> SessionSummary:
        endpoint = await self.pool.find_working()
        logger.info(f"Using RPC endpoint for reads: {endpoint}")
        await self.wallet.connect()
        if contract_address:
            await self.verify_contract(contract_address)
            self.contract_address = contract_address
        await self.monitor.refresh()
        return self.summary()

    async def verify_contract(self, address: str) -> None:
        code = await self.executor.execute_with_retry(lambda: self.ledger.get_code(address))
        if not code or code in (b"", b"\x00"):
            raise LedgerRPCError(f"No contract found at {address} on {self.settings.chain}. Check the address.")

    def start_monitoring(self) -> None:
        self.monitor.start()

    def disconnect(self) -> None:
        self.wallet.disconnect()
        self.contract_address = None

    async def close(self) -> None:
        await self.monitor.stop()
        self.bus.close()
        await self.transport.close()
        if isinstance(self.ledger, Web3Ledger):
            await self.ledger.close()

    async def __aenter__(self) -> "LedgerSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- wallet notifications ----

    def on_accounts_changed(self, accounts: List[str]) -> None:
        self.wallet.accounts_changed(accounts)
        if not accounts:
            self.disconnect()

    def on_chain_changed(self, chain_id: Any) -> None:
        self.wallet.chain_changed(chain_id)

    # ---- presentation surface ----

    def subscribe(self, name: str, callback: Callable) -> Subscription:
        return self.bus.subscribe(name, callback)

    async def current_endpoint_status(self) -> Dict[str, bool]:
        if self.monitor.last_checked is None:
            await self.monitor.refresh()
        return self.monitor.status()

    def summary(self) -> SessionSummary:
        return SessionSummary(
            chain=self.settings.chain,
            current_endpoint=self.pool.current_endpoint().address,
            stream_endpoint=self.pool.stream_endpoint,
            account=self.wallet.account,
            connected=self.wallet.connected,
            endpoint_status=self.monitor.status(),
            last_checked=self.monitor.last_checked,
        )

    async def refresh(self) -> SessionSummary:
        await self.monitor.refresh()
        return self.summary()

    async def read(self, call: MethodCall) -> Any:
        return await self.executor.execute_with_retry(lambda: self.ledger.call(call, self.wallet.account))

    async def submit(self, call: MethodCall, options: Optional[TxOptions] = None,
                     biometric_subject: Optional[str] = None) -> Any:
        """Submit a write as the connected account; gated writes verify the subject first."""
        sender = self.wallet.require_account()
        if biometric_subject is not None:
            await self.biometric.require(biometric_subject)
        return await self.pipeline.submit(call, sender, options)
