import pytest

from timetrack.client.retry import RetryPolicy
from timetrack.exceptions import ConflictError, NetworkError


def test_delays_double_and_cap():
    policy = RetryPolicy(max_attempts=8, base_delay=1.0, max_delay=30.0)

    assert [policy.delay_for(n) for n in range(7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_jitter_stays_under_cap():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, jitter=0.5)

    assert 1.0 <= policy.delay_for(0) <= 1.5
    assert policy.delay_for(10) == 30.0


async def test_network_errors_are_retried_until_success(sleeps):
    outcomes = [NetworkError("down"), NetworkError("down"), {"ok": True}]

    async def operation():
        result = outcomes.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    result = await RetryPolicy(max_attempts=3).run(operation, sleep=sleeps)

    assert result == {"ok": True}
    assert sleeps.delays == [1.0, 2.0]


async def test_exhausted_retries_raise_last_error(sleeps):
    calls = []

    async def operation():
        calls.append(1)
        raise NetworkError("still down")

    with pytest.raises(NetworkError, match="still down"):
        await RetryPolicy(max_attempts=3).run(operation, sleep=sleeps)
    assert len(calls) == 3


async def test_business_errors_are_not_retried(sleeps):
    calls = []

    async def operation():
        calls.append(1)
        raise ConflictError("Cannot check out while paused.")

    with pytest.raises(ConflictError):
        await RetryPolicy(max_attempts=3).run(operation, sleep=sleeps)
    assert len(calls) == 1
    assert sleeps.delays == []
