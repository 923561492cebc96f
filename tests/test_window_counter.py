"""Unit tests for the window counter's failure containment."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from admission.adapters.counter_store import (
    AbstractCounterStore,
    CounterResult,
    LocalCounterStore,
    WindowSpec,
)
from admission.core.errors import BackendUnavailableError, ErrorKind
from admission.services.circuit_breaker import CircuitBreakerRegistry, CircuitState
from admission.services.window_counter import WindowCounter


NOW = 1_700_000_000.0
SPEC = WindowSpec(limit=5, window_seconds=60)


def _primary(**methods) -> MagicMock:
    store = MagicMock(spec=AbstractCounterStore)
    store.name = "redis"
    for name, mock in methods.items():
        setattr(store, name, mock)
    return store


def _counter(store, clock, *, threshold: int = 2, timeout: float = 0.05) -> WindowCounter:
    return WindowCounter(
        store,
        fallback=LocalCounterStore(),
        breakers=CircuitBreakerRegistry(
            error_threshold=threshold, open_duration_seconds=60, clock=clock
        ),
        timeout_seconds=timeout,
    )


@pytest.mark.asyncio
async def test_success_uses_primary(clock) -> None:
    result = CounterResult(count=1, limit=5, remaining=4, reset_at=int(NOW + 60), limited=False)
    store = _primary(hit=AsyncMock(return_value=result))
    counter = _counter(store, clock)

    outcome = await counter.count("login", "rl:login:ip:1", SPEC, now=NOW)

    assert outcome.result == result
    assert outcome.degraded is False
    assert outcome.breaker_open is False


@pytest.mark.asyncio
async def test_backend_error_falls_back_to_local(clock) -> None:
    store = _primary(hit=AsyncMock(side_effect=BackendUnavailableError()))
    counter = _counter(store, clock)

    outcome = await counter.count("login", "rl:login:ip:1", SPEC, now=NOW)

    assert outcome.degraded is True
    assert outcome.error_kind is ErrorKind.BACKEND_UNAVAILABLE
    assert outcome.result.count == 1
    assert await counter.fallback.count("rl:login:ip:1", SPEC, now=NOW) == 1


@pytest.mark.asyncio
async def test_timeout_counts_as_backend_failure(clock) -> None:
    async def slow_hit(*args, **kwargs):
        await asyncio.sleep(1)

    store = _primary(hit=AsyncMock(side_effect=slow_hit))
    counter = _counter(store, clock, threshold=1, timeout=0.01)

    outcome = await counter.count("login", "k", SPEC, now=NOW)

    assert outcome.degraded is True
    assert counter._breakers.state("login") is CircuitState.OPEN


@pytest.mark.asyncio
async def test_open_breaker_skips_backend(clock) -> None:
    store = _primary(hit=AsyncMock(side_effect=BackendUnavailableError()))
    counter = _counter(store, clock, threshold=2)

    await counter.count("login", "k", SPEC, now=NOW)
    await counter.count("login", "k", SPEC, now=NOW)
    outcome = await counter.count("login", "k", SPEC, now=NOW)

    assert outcome.breaker_open is True
    assert outcome.result is None
    assert store.hit.await_count == 2


@pytest.mark.asyncio
async def test_local_primary_failure_has_no_result(clock) -> None:
    local = LocalCounterStore()
    local.hit = AsyncMock(side_effect=BackendUnavailableError())
    counter = WindowCounter(
        local,
        fallback=local,
        breakers=CircuitBreakerRegistry(clock=clock),
    )

    outcome = await counter.count("login", "k", SPEC, now=NOW)

    assert outcome.result is None
    assert outcome.degraded is True


@pytest.mark.asyncio
async def test_current_count_falls_back_on_error(clock) -> None:
    store = _primary(count=AsyncMock(side_effect=BackendUnavailableError()))
    counter = _counter(store, clock)
    counter.fallback.hit_sync("k", SPEC, now=NOW)

    assert await counter.current_count("login", "k", SPEC, now=NOW) == 1


@pytest.mark.asyncio
async def test_reset_clears_fallback_and_primary(clock) -> None:
    store = _primary(reset=AsyncMock())
    counter = _counter(store, clock)
    counter.fallback.hit_sync("k", SPEC, now=NOW)

    await counter.reset("k", SPEC, now=NOW)

    store.reset.assert_awaited_once_with("k", SPEC, now=NOW)
    assert len(counter.fallback) == 0


@pytest.mark.asyncio
async def test_reset_propagates_backend_failure(clock) -> None:
    store = _primary(reset=AsyncMock(side_effect=BackendUnavailableError()))
    counter = _counter(store, clock)

    with pytest.raises(BackendUnavailableError):
        await counter.reset("k", SPEC, now=NOW)
