import asyncio

import pytest

from ledger_rpc.errors import ClassifiedError, ErrorKind, classify
from ledger_rpc.events import ENDPOINT_ROTATED
from ledger_rpc.retry import ExponentialCappedBackoff, LinearBackoff, RetryExecutor, RetryPolicy

from fakes import ENDPOINTS


class Flaky:
    """Raises the scripted errors in order, then returns `result`."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.asyncio
async def test_two_transport_failures_then_success_rotates_twice(pool, bus, sleeps):
    rotations = []
    bus.subscribe(ENDPOINT_ROTATED, rotations.append)
    op = Flaky(ConnectionError("connection reset"), asyncio.TimeoutError())
    executor = RetryExecutor(pool, RetryPolicy(max_attempts=3), sleep=sleeps)

    assert await executor.execute_with_retry(op) == "ok"
    assert op.calls == 3
    assert len(rotations) == 2
    assert pool.current_endpoint().address == ENDPOINTS[2]
    assert sleeps.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_user_rejection_is_not_retried(pool, sleeps):
    op = Flaky(ValueError({"code": 4001, "message": "User rejected the request."}))
    executor = RetryExecutor(pool, sleep=sleeps)

    with pytest.raises(ClassifiedError) as exc:
        await executor.execute_with_retry(op)
    assert exc.value.user_rejected
    assert exc.value.attempts == 1
    assert op.calls == 1
    assert pool.index == 0
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_nonce_conflict_retried_up_to_max_without_rotation(pool, sleeps):
    op = Flaky(*[ValueError("nonce too low")] * 5)
    executor = RetryExecutor(pool, RetryPolicy(max_attempts=4), sleep=sleeps)

    with pytest.raises(ClassifiedError) as exc:
        await executor.execute_with_retry(op)
    assert exc.value.kind is ErrorKind.NONCE_CONFLICT
    assert exc.value.attempts == 4
    assert op.calls == 4
    assert pool.index == 0


@pytest.mark.asyncio
async def test_exhausted_transport_error_keeps_cause(pool, sleeps):
    cause = ConnectionError("network unreachable")
    op = Flaky(*[cause] * 3)
    executor = RetryExecutor(pool, sleep=sleeps)

    with pytest.raises(ClassifiedError) as exc:
        await executor.execute_with_retry(op)
    assert exc.value.cause is cause
    assert exc.value.__cause__ is cause
    assert exc.value.classification.is_transport
    # rotated before attempts 2 and 3, not after the last one
    assert pool.index == 2


@pytest.mark.asyncio
async def test_already_classified_errors_are_not_reclassified(pool, sleeps):
    tagged = ClassifiedError(classify("insufficient funds"), RuntimeError("rpc connection lost"))
    op = Flaky(tagged)
    executor = RetryExecutor(pool, sleep=sleeps)

    with pytest.raises(ClassifiedError) as exc:
        await executor.execute_with_retry(op)
    assert exc.value is tagged
    assert op.calls == 1
    assert pool.index == 0


@pytest.mark.asyncio
async def test_each_attempt_gets_its_own_timeout(pool, sleeps):
    calls = []

    async def slow_then_fast():
        calls.append(1)
        if len(calls) == 1:
            await asyncio.sleep(3600)
        return 42

    executor = RetryExecutor(pool, RetryPolicy(max_attempts=2, timeout=0.05), sleep=sleeps)
    assert await executor.execute_with_retry(slow_then_fast) == 42
    assert len(calls) == 2
    assert pool.index == 1  # the timeout counted as a transport failure


@pytest.mark.asyncio
async def test_policy_override_per_call(pool, sleeps):
    executor = RetryExecutor(pool, RetryPolicy(max_attempts=1), sleep=sleeps)
    op = Flaky(ConnectionError("down"))
    assert await executor.execute_with_retry(op, RetryPolicy(max_attempts=2)) == "ok"


@pytest.mark.asyncio
async def test_executor_without_pool(sleeps):
    executor = RetryExecutor(None, sleep=sleeps)
    assert await executor.execute_with_retry(Flaky(ConnectionError("down"))) == "ok"


def test_policy_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_linear_backoff():
    assert [LinearBackoff(1.5).delay(n) for n in (1, 2, 3)] == [1.5, 3.0, 4.5]


def test_exponential_capped_backoff():
    backoff = ExponentialCappedBackoff(base=1.0, cap=10.0)
    assert [backoff.delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


@pytest.mark.asyncio
async def test_exponential_backoff_waits_double_after_each_attempt(pool, sleeps):
    op = Flaky(*[ValueError("nonce too low")] * 3)
    executor = RetryExecutor(pool, RetryPolicy(max_attempts=4, backoff=ExponentialCappedBackoff()), sleep=sleeps)
    assert await executor.execute_with_retry(op) == "ok"
    assert sleeps.delays == [2.0, 4.0, 8.0]
