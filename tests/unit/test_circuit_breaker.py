"""Tests for the RPC circuit breaker"""
import asyncio

import pytest

from confirmwatch.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from confirmwatch.core.exceptions import CircuitBreakerOpenError, TransportError


@pytest.fixture
def circuit_breaker():
    config = CircuitBreakerConfig(
        failure_threshold=3,
        success_threshold=2,
        timeout_seconds=0.1,
        expected_exceptions=(TransportError,),
    )
    return CircuitBreaker("test", config)


async def succeed():
    return "ok"


async def fail():
    raise TransportError("node down")


async def open_breaker(circuit_breaker):
    for _ in range(3):
        with pytest.raises(TransportError):
            await circuit_breaker.call(fail)


@pytest.mark.asyncio
async def test_stays_closed_on_success(circuit_breaker):
    """Successes keep the breaker closed"""
    assert await circuit_breaker.call(succeed) == "ok"
    assert circuit_breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_opens_after_consecutive_failures(circuit_breaker):
    await open_breaker(circuit_breaker)
    assert circuit_breaker.is_open


@pytest.mark.asyncio
async def test_success_resets_failure_count(circuit_breaker):
    for _ in range(2):
        with pytest.raises(TransportError):
            await circuit_breaker.call(fail)
    await circuit_breaker.call(succeed)
    with pytest.raises(TransportError):
        await circuit_breaker.call(fail)

    assert circuit_breaker.is_closed


@pytest.mark.asyncio
async def test_rejects_when_open(circuit_breaker):
    await open_breaker(circuit_breaker)

    with pytest.raises(CircuitBreakerOpenError):
        await circuit_breaker.call(succeed)
    assert circuit_breaker.get_stats()["rejected_calls"] == 1


@pytest.mark.asyncio
async def test_half_open_after_timeout_then_closes(circuit_breaker):
    """After the open period, successful probes close the breaker"""
    await open_breaker(circuit_breaker)
    await asyncio.sleep(0.15)

    assert await circuit_breaker.call(succeed) == "ok"
    assert circuit_breaker.state == CircuitState.HALF_OPEN
    await circuit_breaker.call(succeed)
    assert circuit_breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_probe_reopens(circuit_breaker):
    await open_breaker(circuit_breaker)
    await asyncio.sleep(0.15)

    with pytest.raises(TransportError):
        await circuit_breaker.call(fail)
    assert circuit_breaker.is_open


@pytest.mark.asyncio
async def test_unexpected_exceptions_do_not_count(circuit_breaker):
    async def bug():
        raise KeyError("result")

    for _ in range(5):
        with pytest.raises(KeyError):
            await circuit_breaker.call(bug)

    assert circuit_breaker.is_closed
    assert circuit_breaker.get_stats()["failed_calls"] == 0


@pytest.mark.asyncio
async def test_protect_decorator_and_reset(circuit_breaker):
    protected = circuit_breaker.protect(fail)
    for _ in range(3):
        with pytest.raises(TransportError):
            await protected()
    assert circuit_breaker.is_open

    circuit_breaker.reset()
    assert circuit_breaker.is_closed
    assert await circuit_breaker.protect(succeed)() == "ok"


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
