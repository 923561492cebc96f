"""Counter store interfaces.

The window counter depends on this abstraction (not on a concrete store) so
the shared Redis store and the in-process store are interchangeable.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

# Seconds added to every counter's expiry so entries outlive their window.
EXPIRY_BUFFER_SECONDS = 1


@dataclass(frozen=True)
class WindowSpec:
    """Counting algorithm parameters taken from a policy.

    Attributes:
        limit: Max requests per window.
        window_seconds: Window size in seconds.
        sliding: Sliding log when True, fixed buckets when False.
    """

    limit: int
    window_seconds: int
    sliding: bool = True

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

    def window_start(self, now: float) -> int:
        """Start of the fixed bucket containing ``now``."""
        return int(now // self.window_seconds) * self.window_seconds

    @property
    def ttl_seconds(self) -> int:
        return self.window_seconds + EXPIRY_BUFFER_SECONDS


@dataclass(frozen=True)
class CounterResult:
    """Result of a counting operation.

    Attributes:
        count: Requests counted in the window, including this one.
        limit: Max requests per window.
        remaining: Requests left in the window (0 when limited).
        reset_at: UNIX epoch seconds when the window frees up.
        limited: Whether ``count`` exceeds ``limit``.
    """

    count: int
    limit: int
    remaining: int
    reset_at: int
    limited: bool

    @classmethod
    def from_count(cls, count: int, spec: WindowSpec, reset_at: float) -> "CounterResult":
        return cls(
            count=count,
            limit=spec.limit,
            remaining=max(0, spec.limit - count),
            reset_at=int(math.ceil(reset_at)),
            limited=count > spec.limit,
        )


class AbstractCounterStore(ABC):
    """Interface for counter stores."""

    name: str = "abstract"

    @abstractmethod
    async def hit(self, key: str, spec: WindowSpec, *, now: float) -> CounterResult:
        """Record one request under ``key`` and return the window state.

        Args:
            key: Scope key derived from the policy and request context.
            spec: Counting algorithm parameters.
            now: Current UNIX time in seconds.

        Returns:
            CounterResult including this request.

        Raises:
            BackendUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    async def count(self, key: str, spec: WindowSpec, *, now: float) -> int:
        """Return the number of requests counted in the current window."""
        raise NotImplementedError

    @abstractmethod
    async def reset(self, key: str, spec: WindowSpec, *, now: float) -> None:
        """Drop the counter(s) held for ``key``."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
