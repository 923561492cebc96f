"""Counter store adapters.

Window counting runs against one of two interchangeable stores chosen at
construction time: a shared Redis store for multi-instance deployments, or an
in-process store (also used as the per-call fallback when Redis fails).
"""

from admission.adapters.counter_store.base import (
    AbstractCounterStore,
    CounterResult,
    WindowSpec,
)
from admission.adapters.counter_store.in_memory import LocalCounterStore
from admission.adapters.counter_store.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "CounterResult",
    "LocalCounterStore",
    "RedisCounterStore",
    "WindowSpec",
]
