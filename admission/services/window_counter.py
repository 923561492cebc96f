"""Window counting with failure containment.

Every count goes to the primary store under a timeout. A timeout or backend
error is reported to the limit key's circuit breaker and that single call is
answered by the in-process fallback store instead. While a breaker is open
the backend is not touched at all and the caller is told to admit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from admission.adapters.counter_store.base import (
    AbstractCounterStore,
    CounterResult,
    WindowSpec,
)
from admission.adapters.counter_store.in_memory import LocalCounterStore
from admission.core.errors import BackendUnavailableError, ErrorKind
from admission.core.logging import hash_identity
from admission.services.circuit_breaker import CircuitBreakerRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountOutcome:
    """Result of one counting attempt.

    Attributes:
        result: Window state, or None when the breaker bypassed counting.
        breaker_open: Whether the breaker short-circuited the call.
        degraded: Whether the local fallback store answered.
        error_kind: Set when the primary store failed.
    """

    result: CounterResult | None
    breaker_open: bool = False
    degraded: bool = False
    error_kind: ErrorKind | None = None


class WindowCounter:
    """Increment-and-check against the primary store, with local fallback."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        fallback: LocalCounterStore,
        breakers: CircuitBreakerRegistry,
        timeout_seconds: float = 0.05,
    ) -> None:
        """Initialize the counter.

        Args:
            store: Primary store (shared Redis store or the local store).
            fallback: In-process store answering when the primary fails.
            breakers: Circuit breaker registry keyed by limit key.
            timeout_seconds: Upper bound on each primary store call.
        """
        self._store = store
        self._fallback = fallback
        self._breakers = breakers
        self._timeout = timeout_seconds

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    @property
    def fallback(self) -> LocalCounterStore:
        return self._fallback

    async def count(
        self,
        limit_key: str,
        scope_key: str,
        spec: WindowSpec,
        *,
        now: float,
    ) -> CountOutcome:
        """Count one request for ``scope_key``. Never raises on backend failure."""

        if not self._breakers.allow_request(limit_key):
            return CountOutcome(result=None, breaker_open=True)

        try:
            result = await asyncio.wait_for(
                self._store.hit(scope_key, spec, now=now),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, BackendUnavailableError) as exc:
            self._breakers.record_failure(limit_key)
            logger.warning(
                "window_counter.backend_failed",
                extra={
                    "limit_key": limit_key,
                    "scope_key_hash": hash_identity(scope_key),
                    "store": self._store.name,
                    "error_type": type(exc).__name__,
                    "timeout_s": self._timeout,
                    "breaker_state": self._breakers.state(limit_key).value,
                },
            )
            if self._store is self._fallback:
                return CountOutcome(
                    result=None, degraded=True, error_kind=ErrorKind.BACKEND_UNAVAILABLE
                )
            result = await self._fallback.hit(scope_key, spec, now=now)
            return CountOutcome(
                result=result, degraded=True, error_kind=ErrorKind.BACKEND_UNAVAILABLE
            )

        self._breakers.record_success(limit_key)
        return CountOutcome(result=result)

    async def current_count(
        self,
        limit_key: str,
        scope_key: str,
        spec: WindowSpec,
        *,
        now: float,
    ) -> int:
        """Read the count without incrementing (introspection only)."""

        if self._breakers.allow_request(limit_key) and self._store is not self._fallback:
            try:
                return await asyncio.wait_for(
                    self._store.count(scope_key, spec, now=now),
                    timeout=self._timeout,
                )
            except (asyncio.TimeoutError, BackendUnavailableError) as exc:
                logger.warning(
                    "window_counter.count_lookup_failed",
                    extra={
                        "limit_key": limit_key,
                        "store": self._store.name,
                        "error_type": type(exc).__name__,
                    },
                )
        return await self._fallback.count(scope_key, spec, now=now)

    async def reset(self, scope_key: str, spec: WindowSpec, *, now: float) -> None:
        """Clear ``scope_key`` in the primary store and the fallback store.

        Raises:
            BackendUnavailableError: If the primary store cannot be reached.
        """

        await self._fallback.reset(scope_key, spec, now=now)
        if self._store is not self._fallback:
            try:
                await asyncio.wait_for(
                    self._store.reset(scope_key, spec, now=now),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                raise BackendUnavailableError(
                    message=f"Counter reset timed out after {self._timeout}s"
                ) from exc

    def sweep(self, now: float) -> int:
        removed = self._fallback.sweep(now)
        if isinstance(self._store, LocalCounterStore) and self._store is not self._fallback:
            removed += self._store.sweep(now)
        return removed

    async def close(self) -> None:
        await self._store.close()
        if self._store is not self._fallback:
            await self._fallback.close()
