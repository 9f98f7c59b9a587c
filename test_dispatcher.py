"""
Tests for query dispatch: isolation, retries, cancellation and the circuit breaker.
"""

import asyncio
import random
import time

import pytest

from conftest import FakeSource, make_query, make_record
from monitor.context import RunCancelled, RunContext
from monitor.dispatcher import CircuitBreaker, QueryDispatcher, RetryPolicy
from monitor.exceptions import APIError, CircuitOpenError, QueryDisabledError
from monitor.models import AdvancedFilter, ErrorKind
from monitor.query_builder import QueryBuilder


def fast_retry(max_retries=2):
    return RetryPolicy(max_retries=max_retries, base_delay=0.0, jitter=0.0)


def dispatcher_for(source, **kwargs):
    kwargs.setdefault("concurrency", 3)
    retry = kwargs.pop("retry", None) or fast_retry()
    return QueryDispatcher(source, QueryBuilder(7), retry, **kwargs)


# ---------------------------------------------- #
# Retry policy
def test_retry_delay_grows_and_caps():
    policy = RetryPolicy(base_delay=1.0, max_delay=30.0, backoff_factor=2.0, jitter=0.0)
    assert [policy.delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]


def test_retry_jitter_is_bounded_and_non_negative():
    policy = RetryPolicy(base_delay=1.0, jitter=0.1, rng=random.Random(7))
    for attempt in range(4):
        base = min(2.0 ** attempt, 30.0)
        for _ in range(20):
            delay = policy.delay(attempt)
            assert base <= delay <= base * 1.1


# ---------------------------------------------- #
# Circuit breaker
def test_circuit_breaker_transitions():
    now = [0.0]
    breaker = CircuitBreaker(max_failures=2, reset_timeout=60.0, clock=lambda: now[0])

    breaker.before_call()
    breaker.record_failure()
    assert breaker.state == CircuitBreaker.CLOSED
    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN

    with pytest.raises(CircuitOpenError):
        breaker.before_call()

    now[0] = 60.0
    breaker.before_call()
    assert breaker.state == CircuitBreaker.HALF_OPEN

    breaker.record_failure()
    assert breaker.state == CircuitBreaker.OPEN

    now[0] = 120.0
    breaker.before_call()
    breaker.record_success()
    assert breaker.state == CircuitBreaker.CLOSED


@pytest.mark.asyncio
async def test_open_breaker_fails_fast():
    now = [0.0]
    breaker = CircuitBreaker(max_failures=1, reset_timeout=60.0, clock=lambda: now[0])
    source = FakeSource({"q": [OSError("connection reset")]})
    dispatcher = dispatcher_for(source, retry=fast_retry(0), breaker=breaker)

    first = await dispatcher.run_one(make_query("q"), RunContext())
    second = await dispatcher.run_one(make_query("q"), RunContext())

    assert first.error_kind == ErrorKind.NETWORK
    assert isinstance(second.error, CircuitOpenError)
    assert source.calls_for("q") == 1


# ---------------------------------------------- #
# Dispatch
@pytest.mark.asyncio
async def test_one_failure_does_not_affect_others():
    """Five queries, one with a persistent network error: four succeed untouched."""
    names = ["alpha", "bravo", "charlie", "delta", "echo"]
    script = {name: [[make_record(f"{name}-1"), make_record(f"{name}-2")]] for name in names}
    script["charlie"] = [OSError("connection refused")]
    source = FakeSource(script)

    results = await dispatcher_for(source).run_all([make_query(n) for n in names], RunContext())

    assert [r.query_name for r in results] == names
    for result in results:
        if result.query_name == "charlie":
            assert not result.success
            assert result.error_kind == ErrorKind.NETWORK
            assert result.retry_count == 2
            assert result.records == []
        else:
            assert result.success
            assert result.retry_count == 0
            assert len(result.records) == 2
    assert source.calls_for("charlie") == 3
    assert source.calls_for("alpha") == 1


@pytest.mark.asyncio
async def test_transient_failure_recovers_within_retries():
    source = FakeSource({"q": [APIError(503), APIError(429), [make_record("N1")]]})
    result = await dispatcher_for(source).run_one(make_query("q"), RunContext())

    assert result.success
    assert result.retry_count == 2
    assert result.error is None and result.error_kind is None
    assert [r.notice_id for r in result.records] == ["N1"]


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried():
    source = FakeSource({"q": [APIError(401, "Unauthorized")]})
    result = await dispatcher_for(source).run_one(make_query("q"), RunContext())

    assert not result.success
    assert result.error_kind == ErrorKind.AUTH
    assert result.retry_count == 0
    assert source.calls_for("q") == 1


@pytest.mark.asyncio
async def test_disabled_query_is_not_executed():
    source = FakeSource()
    results = await dispatcher_for(source).run_all([make_query("off", enabled=False)], RunContext())

    assert not results[0].success
    assert isinstance(results[0].error, QueryDisabledError)
    assert results[0].error_kind == ErrorKind.VALIDATION
    assert source.calls == []


@pytest.mark.asyncio
async def test_invalid_parameters_fail_without_calling():
    source = FakeSource()
    query = make_query("bad")
    # Bypasses model validation, as a hand-built query could
    query.parameters["weird"] = {"nested": "map"}
    result = await dispatcher_for(source).run_one(query, RunContext())

    assert not result.success
    assert result.error_kind == ErrorKind.VALIDATION
    assert source.calls == []


@pytest.mark.asyncio
async def test_results_keep_input_order_and_concurrency_bound():
    names = ["slow", "medium", "fast", "instant", "last"]
    delays = {"slow": 0.08, "medium": 0.05, "fast": 0.02, "instant": 0.0, "last": 0.01}
    source = FakeSource({n: [[make_record(n)]] for n in names}, delays=delays)

    results = await dispatcher_for(source, concurrency=2).run_all([make_query(n) for n in names], RunContext())

    assert [r.query_name for r in results] == names
    assert source.max_in_flight <= 2


@pytest.mark.asyncio
async def test_slow_call_times_out():
    source = FakeSource({"q": [[make_record("N1")]]}, delays={"q": 5.0})
    dispatcher = dispatcher_for(source, retry=fast_retry(0), call_timeout=0.05)

    result = await dispatcher.run_one(make_query("q"), RunContext())
    assert not result.success
    assert result.error_kind == ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_cancellation_stops_in_flight_queries():
    source = FakeSource({n: [[make_record(n)]] for n in ("a", "b")}, delays={"a": 10.0, "b": 10.0})
    ctx = RunContext()
    asyncio.get_running_loop().call_later(0.05, ctx.cancel, "shutdown")

    start = time.monotonic()
    results = await dispatcher_for(source).run_all([make_query("a"), make_query("b")], ctx)

    assert time.monotonic() - start < 1.0
    for result in results:
        assert not result.success
        assert isinstance(result.error, RunCancelled)
        assert result.error_kind == ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff():
    source = FakeSource({"q": [APIError(503)]})
    retry = RetryPolicy(max_retries=3, base_delay=10.0, jitter=0.0)
    dispatcher = dispatcher_for(source, retry=retry)
    ctx = RunContext()
    asyncio.get_running_loop().call_later(0.05, ctx.cancel)

    start = time.monotonic()
    result = await dispatcher.run_one(make_query("q"), ctx)

    assert time.monotonic() - start < 1.0
    assert isinstance(result.error, RunCancelled)
    assert source.calls_for("q") == 1


@pytest.mark.asyncio
async def test_advanced_filters_applied():
    source = FakeSource(
        {"q": [[make_record("KEEP", title="AI research"), make_record("DROP", title="Road construction")]]}
    )
    query = make_query("q", advanced=AdvancedFilter(exclude=["construction"]))
    result = await dispatcher_for(source).run_one(query, RunContext())

    assert [r.notice_id for r in result.records] == ["KEEP"]
    assert result.total == 2
