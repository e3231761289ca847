from __future__ import annotations
import asyncio, logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .errors import ClassifiedError, get_retry_delay

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------- Backoff policies ----------------
# Per-call RPC retries back off linearly,
# whole-transaction retries back off exponentially with a cap.

class LinearBackoff(wait_base):
    """delay = base * attempt (1s, 2s, 3s, ...)"""

    def __init__(self, base: float = 1.0):
        self.base = base

    def delay(self, attempt: int) -> float:
        return self.base * max(0, attempt)

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay(retry_state.attempt_number)


class ExponentialCappedBackoff(wait_base):
    """delay = min(base * 2**attempt, cap)"""

    def __init__(self, base: float = 1.0, cap: float = 10.0):
        self.base = base
        self.cap = cap

    def delay(self, attempt: int) -> float:
        return get_retry_delay(attempt, base_ms=int(self.base * 1000), cap_ms=int(self.cap * 1000)) / 1000.0

    def __call__(self, retry_state: RetryCallState) -> float:
        # after attempt n: 2s, 4s, 8s, ... for base 1s
        return self.delay(retry_state.attempt_number)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff: wait_base = field(default_factory=LinearBackoff)
    timeout: Optional[float] = None  # per attempt, seconds

    def __post_init__(self):
        if int(self.max_attempts) < 1:
            raise ValueError("max_attempts must be >= 1")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ClassifiedError) and exc.retryable


# ---------------- Executor ----------------

class RetryExecutor:
    """
    Runs an operation with retries. Failures are classified on the spot;
    non-retryable ones propagate at once, transport failures rotate the
    endpoint pool before the next attempt. The operation is opaque: it is
    a zero-argument coroutine factory, re-invoked on every attempt.
    """

    def __init__(self, pool=None, policy: Optional[RetryPolicy] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.pool = pool
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def _attempt(self, operation: Callable[[], Awaitable[T]], policy: RetryPolicy, number: int) -> T:
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(operation(), policy.timeout)
            return await operation()
        except Exception as e:
            err = ClassifiedError.of(e)
            err.attempts = number
            if err is e:
                raise
            raise err from e

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        err = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed ({err.kind.value}): {err}; "
            f"retrying in {delay:.1f}s"
        )
        if err.classification.is_transport and self.pool is not None:
            self.pool.advance()

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]],
                                 policy: Optional[RetryPolicy] = None) -> T:
        policy = policy or self.policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.backoff,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(operation, policy, attempt.retry_state.attempt_number)
        return result
