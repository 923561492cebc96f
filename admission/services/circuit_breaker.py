"""Per-limit-key circuit breaker around counter backend calls.

States:
- closed: backend calls proceed; consecutive failures are counted and
  reaching ``error_threshold`` opens the breaker.
- open: checks for the limit key are answered without touching the backend
  (``limited=False``) until ``open_until`` has passed.
- half_open: exactly one probe call reaches the backend. Success closes the
  breaker, failure re-opens it for a fresh ``open_duration_seconds``.

State is process-local and created lazily on the first failure. The registry
lock is only held for bookkeeping, never across a backend call.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Backend bypassed
    HALF_OPEN = "half_open"  # Probing the backend


@dataclass
class CircuitBreakerState:
    """Mutable breaker state for one limit key (guarded by the registry lock)."""

    error_threshold: int
    open_duration_seconds: float
    state: CircuitState = CircuitState.CLOSED
    consecutive_errors: int = 0
    open_until: float = 0.0
    probe_started_at: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutive_errors": self.consecutive_errors,
            "open_until": self.open_until,
            "error_threshold": self.error_threshold,
            "open_duration_seconds": self.open_duration_seconds,
        }


class CircuitBreakerRegistry:
    """Holds one breaker per limit key."""

    def __init__(
        self,
        *,
        error_threshold: int = 5,
        open_duration_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if error_threshold < 1:
            raise ValueError("error_threshold must be >= 1")
        if open_duration_seconds <= 0:
            raise ValueError("open_duration_seconds must be > 0")

        self._error_threshold = error_threshold
        self._open_duration = open_duration_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreakerState] = {}

    def _open_locked(self, limit_key: str, breaker: CircuitBreakerState, now: float) -> None:
        previous = breaker.state
        breaker.state = CircuitState.OPEN
        breaker.open_until = now + breaker.open_duration_seconds
        breaker.probe_started_at = None
        logger.warning(
            "circuit_breaker.opened",
            extra={
                "limit_key": limit_key,
                "from_state": previous.value,
                "consecutive_errors": breaker.consecutive_errors,
                "open_seconds": breaker.open_duration_seconds,
            },
        )

    def allow_request(self, limit_key: str) -> bool:
        """Return whether a backend call may be attempted for ``limit_key``.

        When the open period has elapsed this transitions to half-open and
        admits the caller as the single probe.
        """

        with self._lock:
            breaker = self._breakers.get(limit_key)
            if breaker is None or breaker.state is CircuitState.CLOSED:
                return True

            now = self._clock()

            if breaker.state is CircuitState.OPEN:
                if now <= breaker.open_until:
                    return False
                breaker.state = CircuitState.HALF_OPEN
                breaker.probe_started_at = now
                logger.info("circuit_breaker.half_open", extra={"limit_key": limit_key})
                return True

            # Half-open: one probe at a time. A probe that never reported back
            # is abandoned after one open period.
            if (
                breaker.probe_started_at is not None
                and now - breaker.probe_started_at <= breaker.open_duration_seconds
            ):
                return False
            breaker.probe_started_at = now
            return True

    def record_success(self, limit_key: str) -> None:
        with self._lock:
            breaker = self._breakers.get(limit_key)
            if breaker is None:
                return
            if breaker.state is CircuitState.HALF_OPEN:
                breaker.state = CircuitState.CLOSED
                breaker.consecutive_errors = 0
                breaker.open_until = 0.0
                breaker.probe_started_at = None
                logger.info("circuit_breaker.closed", extra={"limit_key": limit_key})
            elif breaker.state is CircuitState.CLOSED:
                breaker.consecutive_errors = 0

    def record_failure(self, limit_key: str) -> None:
        with self._lock:
            breaker = self._breakers.get(limit_key)
            if breaker is None:
                breaker = CircuitBreakerState(
                    error_threshold=self._error_threshold,
                    open_duration_seconds=self._open_duration,
                )
                self._breakers[limit_key] = breaker

            now = self._clock()
            breaker.consecutive_errors += 1

            if breaker.state is CircuitState.HALF_OPEN:
                self._open_locked(limit_key, breaker, now)
            elif (
                breaker.state is CircuitState.CLOSED
                and breaker.consecutive_errors >= breaker.error_threshold
            ):
                self._open_locked(limit_key, breaker, now)

    def state(self, limit_key: str) -> CircuitState:
        with self._lock:
            breaker = self._breakers.get(limit_key)
            return breaker.state if breaker else CircuitState.CLOSED

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {key: breaker.as_dict() for key, breaker in self._breakers.items()}

    def reset(self, limit_key: str | None = None) -> None:
        with self._lock:
            if limit_key is None:
                self._breakers.clear()
            else:
                self._breakers.pop(limit_key, None)
