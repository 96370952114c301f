from __future__ import annotations

import pytest

from core.domain.errors import RateLimitError
from core.services.request_executor import (
    RPC_ENDPOINT,
    EndpointLimits,
    RequestExecutor,
    is_rate_limit_error,
    retry_hint_ms,
)
from fakes import FakeClock, RateLimited, fast_executor


def _executor(clock: FakeClock, limits: EndpointLimits, rand=lambda: 0.0) -> RequestExecutor:
    return RequestExecutor({RPC_ENDPOINT: limits}, clock=clock, sleep=clock.sleep, rand=rand)


class Flaky:
    """Raises the queued errors first, then returns `result`."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


async def test_token_bucket_admits_burst_then_paces_at_rate():
    clock = FakeClock(start=0.0)
    executor = _executor(clock, EndpointLimits(requests_per_second=2.0, burst_capacity=3))
    issued = []

    async def call():
        issued.append(clock.now)
        return None

    for _ in range(7):
        await executor.execute(RPC_ENDPOINT, call)

    assert issued == pytest.approx([0.0, 0.0, 0.0, 0.5, 1.0, 1.5, 2.0])
    # never more than burst + rate * 1s inside any one-second window
    for t in issued:
        assert sum(1 for x in issued if t <= x < t + 1.0) <= 3 + 2


async def test_tokens_refill_while_idle():
    clock = FakeClock(start=0.0)
    executor = _executor(clock, EndpointLimits(requests_per_second=1.0, burst_capacity=2))

    async def call():
        return clock.now

    await executor.execute(RPC_ENDPOINT, call)
    await executor.execute(RPC_ENDPOINT, call)
    clock.now += 10.0
    before = len(clock.sleeps)
    await executor.execute(RPC_ENDPOINT, call)
    await executor.execute(RPC_ENDPOINT, call)
    assert len(clock.sleeps) == before


def test_backoff_grows_geometrically_and_is_capped():
    clock = FakeClock()
    limits = EndpointLimits(base_backoff_ms=100, max_backoff_ms=1000, backoff_multiplier=2.0, jitter_fraction=0.3)
    low = _executor(clock, limits, rand=lambda: 0.0)
    high = _executor(clock, limits, rand=lambda: 0.999999)

    previous = 0.0
    for n in range(1, 8):
        base = min(1000.0, 100.0 * 2.0**n)
        lo = low.compute_backoff_ms(RPC_ENDPOINT, n)
        hi = high.compute_backoff_ms(RPC_ENDPOINT, n)
        assert lo == pytest.approx(base)
        assert base <= hi <= base * 1.3
        assert lo >= previous
        previous = lo

    assert low.compute_backoff_ms(RPC_ENDPOINT, 20) == pytest.approx(1000.0)


async def test_rate_limited_call_is_retried_after_backoff(clock):
    executor = fast_executor(clock, base_backoff_ms=10, max_backoff_ms=1000)
    call = Flaky([RateLimited(), RateLimited()])

    assert await executor.execute(RPC_ENDPOINT, call) == "ok"
    assert call.calls == 3
    # consecutive errors 1 then 2: 10 * 2^1, 10 * 2^2 ms
    assert clock.sleeps == pytest.approx([0.02, 0.04])
    assert executor.status()[RPC_ENDPOINT]["consecutive_errors"] == 0


async def test_retries_are_bounded_and_surface_rate_limit_error(clock):
    executor = fast_executor(clock, max_retries=3)
    original = RateLimited()
    call = Flaky([original] * 10)

    with pytest.raises(RateLimitError) as info:
        await executor.execute(RPC_ENDPOINT, call)

    assert call.calls == 4
    assert info.value.__cause__ is original
    assert info.value.endpoint == RPC_ENDPOINT


async def test_non_rate_limit_error_propagates_untouched(clock):
    executor = fast_executor(clock)
    boom = ValueError("execution reverted")
    call = Flaky([boom])

    with pytest.raises(ValueError) as info:
        await executor.execute(RPC_ENDPOINT, call)

    assert info.value is boom
    assert call.calls == 1
    assert clock.sleeps == []


async def test_retry_after_header_overrides_computed_backoff(clock):
    executor = fast_executor(clock)
    call = Flaky([RateLimited(retry_after="2")])

    await executor.execute(RPC_ENDPOINT, call)

    assert clock.sleeps == pytest.approx([2.0])


async def test_endpoints_are_paced_independently():
    clock = FakeClock(start=0.0)
    executor = RequestExecutor(
        {"a": EndpointLimits(requests_per_second=1.0, burst_capacity=1)},
        default=EndpointLimits(requests_per_second=1.0, burst_capacity=1),
        clock=clock,
        sleep=clock.sleep,
    )

    async def call():
        return None

    await executor.execute("a", call)
    await executor.execute("b", call)
    assert clock.sleeps == []

    await executor.execute("a", call)
    assert clock.sleeps == pytest.approx([1.0])


def test_rate_limit_classification():
    assert is_rate_limit_error(RateLimited())
    assert is_rate_limit_error(Exception("Too Many Requests"))
    assert is_rate_limit_error(Exception({"code": -32005, "message": "limit"}))
    assert is_rate_limit_error(Exception("daily request limit reached"))

    class ThrottledError(Exception):
        pass

    assert is_rate_limit_error(ThrottledError("slow down"))
    assert is_rate_limit_error(Exception("please retry after 3 seconds"))

    assert not is_rate_limit_error(ValueError("execution reverted"))
    assert not is_rate_limit_error(Exception("block 4290 not found"))


def test_retry_hint_parsing():
    assert retry_hint_ms(RateLimited(retry_after="1.5")) == 1500
    assert retry_hint_ms(Exception("retry after 4")) == 4000
    assert retry_hint_ms(RateLimitError("x", retry_after_ms=250)) == 250
    assert retry_hint_ms(Exception("nope")) is None
