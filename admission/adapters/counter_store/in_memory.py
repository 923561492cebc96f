"""In-process counter store.

Notes:
- Per-process only: running N instances multiplies the effective aggregate
  limit by N. Operators relying on it must size policies accordingly.
- Thread-safe: uses a lock around shared state.
- Bounded: holds at most ``max_keys`` live counters; the oldest-inserted one
  is evicted first (approximate, not strict LRU). ``sweep`` drops counters
  that are idle or whose window has fully elapsed.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field

from admission.adapters.counter_store.base import (
    AbstractCounterStore,
    CounterResult,
    WindowSpec,
)

logger = logging.getLogger(__name__)


@dataclass
class _SlidingState:
    window_seconds: int
    last_access: float
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()

    def expired(self, now: float) -> bool:
        return not self.timestamps or self.timestamps[-1] <= now - self.window_seconds


@dataclass
class _FixedState:
    window_seconds: int
    window_start: int
    last_access: float
    count: int = 0

    def expired(self, now: float) -> bool:
        return now >= self.window_start + self.window_seconds


_State = _SlidingState | _FixedState


class LocalCounterStore(AbstractCounterStore):
    """Counter store kept in a bounded in-process map."""

    name = "local"

    def __init__(
        self,
        *,
        max_keys: int = 10_000,
        idle_grace_seconds: float = 300.0,
    ) -> None:
        """Initialize the in-process store.

        Args:
            max_keys: Maximum number of live counters.
            idle_grace_seconds: Idle time after which ``sweep`` drops a counter.

        Raises:
            ValueError: If max_keys is invalid.
        """
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")

        self._max_keys = max_keys
        self._idle_grace = idle_grace_seconds
        self._lock = threading.Lock()
        self._states: OrderedDict[tuple[str, bool], _State] = OrderedDict()
        self._evictions = 0

    @property
    def max_keys(self) -> int:
        return self._max_keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._states),
                "max_keys": self._max_keys,
                "evictions": self._evictions,
            }

    def _make_room_locked(self) -> None:
        while len(self._states) >= self._max_keys:
            self._states.popitem(last=False)
            self._evictions += 1
            logger.debug("counter_store.local_evicted", extra={"entries": len(self._states)})

    def _hit_sliding_locked(self, key: str, spec: WindowSpec, now: float) -> CounterResult:
        map_key = (key, True)
        state = self._states.get(map_key)
        if state is None:
            self._make_room_locked()
            state = _SlidingState(window_seconds=spec.window_seconds, last_access=now)
            self._states[map_key] = state

        state.window_seconds = spec.window_seconds
        state.prune(now)
        state.timestamps.append(now)
        state.last_access = now

        reset_at = state.timestamps[0] + spec.window_seconds
        return CounterResult.from_count(len(state.timestamps), spec, reset_at)

    def _hit_fixed_locked(self, key: str, spec: WindowSpec, now: float) -> CounterResult:
        map_key = (key, False)
        window_start = spec.window_start(now)
        state = self._states.get(map_key)
        if state is None:
            self._make_room_locked()
        if not isinstance(state, _FixedState) or state.window_start != window_start:
            state = _FixedState(
                window_seconds=spec.window_seconds,
                window_start=window_start,
                last_access=now,
            )
            self._states[map_key] = state

        state.count += 1
        state.last_access = now
        return CounterResult.from_count(state.count, spec, window_start + spec.window_seconds)

    def hit_sync(self, key: str, spec: WindowSpec, *, now: float) -> CounterResult:
        """Synchronous variant of ``hit`` for callers outside an event loop."""
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            if spec.sliding:
                return self._hit_sliding_locked(key, spec, now)
            return self._hit_fixed_locked(key, spec, now)

    async def hit(self, key: str, spec: WindowSpec, *, now: float) -> CounterResult:
        return self.hit_sync(key, spec, now=now)

    async def count(self, key: str, spec: WindowSpec, *, now: float) -> int:
        with self._lock:
            state = self._states.get((key, spec.sliding))
            if state is None:
                return 0
            if isinstance(state, _SlidingState):
                cutoff = now - spec.window_seconds
                return sum(1 for ts in state.timestamps if ts > cutoff)
            if state.window_start != spec.window_start(now):
                return 0
            return state.count

    async def reset(self, key: str, spec: WindowSpec, *, now: float) -> None:
        with self._lock:
            self._states.pop((key, True), None)
            self._states.pop((key, False), None)

    def sweep(self, now: float) -> int:
        """Drop counters idle beyond the grace period or past their window.

        Args:
            now: Current UNIX time in seconds.

        Returns:
            Number of counters removed.
        """
        with self._lock:
            stale = [
                map_key
                for map_key, state in self._states.items()
                if now - state.last_access > self._idle_grace or state.expired(now)
            ]
            for map_key in stale:
                del self._states[map_key]

        if stale:
            logger.debug(
                "counter_store.local_swept",
                extra={"removed": len(stale), "entries": len(self._states)},
            )
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
