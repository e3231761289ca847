"""
State-changing transaction submission.

    1. simulate  - eth_call as the sender; a revert shows up before gas is spent
    2. estimate  - eth_estimateGas
    3. margin    - gas = floor(estimate * gas_multiplier)
    4. price     - eth_gasPrice
    5. submit    - build with a freshly read nonce, sign and broadcast
    6. confirm   - poll for the receipt

Every step runs through the RetryExecutor. Steps 1-5 are additionally
retried as a whole (outer retry): a retried attempt starts again at step 1
so price, estimate and nonce are always re-read. A transport failure at
step 5 rotates the pool like any other step; the broadcast re-reads the
nonce on every attempt. Confirmation is outside the outer retry; once a
hash exists nothing is resubmitted.

There is no idempotency key. Calling submit() twice for the same intent
sends two transactions.
"""

from __future__ import annotations
import asyncio, logging, math
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from .errors import ClassifiedError, TransactionUnconfirmed
from .events import PIPELINE_OUTCOME, PIPELINE_RETRY, EventBus
from .ledger import MethodCall
from .retry import ExponentialCappedBackoff, RetryExecutor

logger = logging.getLogger(__name__)


@dataclass
class TxOptions:
    max_retries: int = 3          # outer attempts over steps 1-5
    gas_multiplier: float = 1.2
    extra_params: Dict[str, Any] = field(default_factory=dict)
    receipt_interval: float = 2.0
    receipt_attempts: int = 50
    confirm: bool = True          # False: submit() returns the PendingWrite once a hash exists

    @classmethod
    def from_settings(cls, tx_settings, **overrides) -> "TxOptions":
        values = dict(
            max_retries=tx_settings.max_retries,
            gas_multiplier=tx_settings.gas_multiplier,
            receipt_interval=tx_settings.receipt_interval,
            receipt_attempts=tx_settings.receipt_attempts,
        )
        values.update(overrides)
        return cls(**values)


@dataclass
class PendingWrite:
    call: MethodCall
    sender: str
    simulate_result: Any = None
    estimated_gas: Optional[int] = None
    gas: Optional[int] = None
    gas_price: Optional[int] = None
    tx_hash: Optional[str] = None
    receipt: Optional[Dict[str, Any]] = None
    attempts: int = 0

    def reset(self) -> None:
        self.simulate_result = None
        self.estimated_gas = self.gas = self.gas_price = None
        self.tx_hash = None
        self.receipt = None


def apply_gas_margin(estimate: int, multiplier: float) -> int:
    if multiplier <= 0:
        raise ValueError("gas multiplier must be positive")
    return math.floor(int(estimate) * multiplier)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ClassifiedError) and exc.retryable


class TransactionPipeline:
    def __init__(self, ledger, executor: RetryExecutor, bus: Optional[EventBus] = None,
                 defaults: Optional[TxOptions] = None, outer_backoff=None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.ledger = ledger
        self.executor = executor
        self.bus = bus
        self.defaults = defaults or TxOptions()
        self.outer_backoff = outer_backoff or ExponentialCappedBackoff(base=1.0, cap=10.0)
        self._sleep = sleep

    def _emit(self, name: str, **data: Any) -> None:
        if self.bus is not None:
            self.bus.emit(name, **data)

    def _outcome(self, status: str, pending: PendingWrite, error: Optional[BaseException] = None) -> None:
        kind = error.kind.value if isinstance(error, ClassifiedError) else None
        self._emit(PIPELINE_OUTCOME, status=status, tx_hash=pending.tx_hash, attempts=pending.attempts,
                   method=pending.call.name, kind=kind, error=error)

    async def _run_steps(self, pending: PendingWrite, options: TxOptions) -> PendingWrite:
        run = self.executor.execute_with_retry
        call, sender = pending.call, pending.sender
        pending.reset()

        pending.simulate_result = await run(lambda: self.ledger.call(call, sender))
        pending.estimated_gas = int(await run(lambda: self.ledger.estimate_gas(call, sender)))
        pending.gas = apply_gas_margin(pending.estimated_gas, options.gas_multiplier)
        pending.gas_price = int(await run(self.ledger.gas_price))
        gas, price = pending.gas, pending.gas_price
        pending.tx_hash = await run(
            lambda: self.ledger.send(call, sender, gas, price, dict(options.extra_params)))
        return pending

    def _before_outer_retry(self, pending: PendingWrite, retry_state: RetryCallState) -> None:
        err = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Transaction attempt {retry_state.attempt_number} failed ({err.kind.value}) "
            f"for {pending.call.name}: {err}; retrying in {delay:.1f}s"
        )
        self._emit(PIPELINE_RETRY, attempt=retry_state.attempt_number, delay=delay,
                   kind=err.kind.value, method=pending.call.name, error=err)

    async def send(self, call: MethodCall, sender: str, options: Optional[TxOptions] = None) -> PendingWrite:
        """Steps 1-5 with outer retry. Returns the PendingWrite carrying tx_hash."""
        options = options or self.defaults
        pending = PendingWrite(call=call, sender=sender)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, options.max_retries)),
            wait=self.outer_backoff,
            retry=retry_if_exception(_is_retryable),
            before_sleep=partial(self._before_outer_retry, pending),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    pending.attempts = attempt.retry_state.attempt_number
                    await self._run_steps(pending, options)
        except Exception as e:
            logger.error(f"Transaction {call.name} failed after {pending.attempts} attempt(s): {e}")
            self._outcome("failed", pending, error=e)
            raise
        logger.info(f"Transaction {call.name} submitted: {pending.tx_hash} (gas={pending.gas}, "
                    f"gasPrice={pending.gas_price})")
        return pending

    async def confirm(self, tx_hash: str, interval: Optional[float] = None,
                      max_attempts: Optional[int] = None) -> Dict[str, Any]:
        interval = self.defaults.receipt_interval if interval is None else interval
        max_attempts = max_attempts or self.defaults.receipt_attempts
        for n in range(1, max_attempts + 1):
            try:
                receipt = await self.executor.execute_with_retry(
                    lambda: self.ledger.get_transaction_receipt(tx_hash))
            except ClassifiedError as e:
                if not e.retryable:
                    raise
                logger.warning(f"Receipt check {n} for {tx_hash} failed: {e}")
            else:
                if receipt:
                    return receipt
            if n < max_attempts:
                await self._sleep(interval)
        raise TransactionUnconfirmed(tx_hash, max_attempts)

    async def submit(self, call: MethodCall, sender: str,
                     options: Optional[TxOptions] = None) -> Union[Dict[str, Any], PendingWrite]:
        """send() then confirm(). Returns the receipt, or the PendingWrite when options.confirm is off."""
        options = options or self.defaults
        pending = await self.send(call, sender, options)
        if not options.confirm:
            self._outcome("submitted", pending)
            return pending
        try:
            pending.receipt = await self.confirm(pending.tx_hash, options.receipt_interval,
                                                 options.receipt_attempts)
        except TransactionUnconfirmed as e:
            logger.warning(str(e))
            self._outcome("unconfirmed", pending, error=e)
            raise
        except Exception as e:
            self._outcome("failed", pending, error=e)
            raise
        status = "reverted" if pending.receipt.get("status") == 0 else "confirmed"
        self._outcome(status, pending)
        return pending.receipt

    # ---- single-step helpers ----

    async def estimate_gas_with_retry(self, call: MethodCall, sender: str) -> int:
        return int(await self.executor.execute_with_retry(lambda: self.ledger.estimate_gas(call, sender)))

    async def get_gas_price_with_retry(self) -> int:
        return int(await self.executor.execute_with_retry(self.ledger.gas_price))

    async def get_nonce_with_retry(self, address: str) -> int:
        return int(await self.executor.execute_with_retry(lambda: self.ledger.get_nonce(address)))
