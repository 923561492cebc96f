"""Redis-backed counter store shared by every instance.

Each count is one non-transactional pipeline (a single round trip):
- sliding: ZREMRANGEBYSCORE + ZADD + ZCARD + ZRANGE 0 0 + EXPIRE on a sorted
  set of request timestamps;
- fixed: INCR + EXPIRE on a counter keyed by the bucket start.

The pipeline is not a MULTI/EXEC transaction. Under heavy contention on one
key a few concurrent requests may be admitted beyond ``limit``.
"""

from __future__ import annotations

import logging
import uuid

from redis.asyncio import Redis
from redis.exceptions import RedisError

from admission.adapters.counter_store.base import (
    AbstractCounterStore,
    CounterResult,
    WindowSpec,
)
from admission.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


class RedisCounterStore(AbstractCounterStore):
    """Counter store using a shared Redis instance."""

    name = "redis"

    def __init__(self, client: Redis, *, key_prefix: str = "rate_limit:") -> None:
        """Initialize the store.

        Args:
            client: Async Redis client (injected; owned by the store afterwards).
            key_prefix: Prefix applied to every counter key.
        """
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        key_prefix: str = "rate_limit:",
        socket_timeout: float = 0.25,
        socket_connect_timeout: float = 0.25,
    ) -> "RedisCounterStore":
        client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _sliding_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _fixed_key(self, key: str, window_start: int) -> str:
        return f"{self._prefix}{key}:{window_start}"

    def _unavailable(self, operation: str, exc: Exception) -> BackendUnavailableError:
        return BackendUnavailableError(
            message=f"Redis {operation} failed: {exc}",
            details={"hint": type(exc).__name__},
        )

    async def hit(self, key: str, spec: WindowSpec, *, now: float) -> CounterResult:
        if spec.sliding:
            return await self._hit_sliding(key, spec, now)
        return await self._hit_fixed(key, spec, now)

    async def _hit_sliding(self, key: str, spec: WindowSpec, now: float) -> CounterResult:
        redis_key = self._sliding_key(key)
        member = f"{now:.6f}-{uuid.uuid4().hex[:12]}"

        try:
            async with self._client.pipeline(transaction=False) as pipe:
                pipe.zremrangebyscore(redis_key, 0, now - spec.window_seconds)
                pipe.zadd(redis_key, {member: now})
                pipe.zcard(redis_key)
                pipe.zrange(redis_key, 0, 0, withscores=True)
                pipe.expire(redis_key, spec.ttl_seconds)
                results = await pipe.execute()
        except (RedisError, OSError) as exc:
            raise self._unavailable("sliding window count", exc) from exc

        count = int(results[2])
        oldest = results[3]
        oldest_ts = float(oldest[0][1]) if oldest else now
        return CounterResult.from_count(count, spec, oldest_ts + spec.window_seconds)

    async def _hit_fixed(self, key: str, spec: WindowSpec, now: float) -> CounterResult:
        window_start = spec.window_start(now)
        redis_key = self._fixed_key(key, window_start)

        try:
            async with self._client.pipeline(transaction=False) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, spec.ttl_seconds)
                results = await pipe.execute()
        except (RedisError, OSError) as exc:
            raise self._unavailable("fixed window count", exc) from exc

        return CounterResult.from_count(
            int(results[0]), spec, window_start + spec.window_seconds
        )

    async def count(self, key: str, spec: WindowSpec, *, now: float) -> int:
        try:
            if spec.sliding:
                return int(
                    await self._client.zcount(
                        self._sliding_key(key), f"({now - spec.window_seconds}", "+inf"
                    )
                )
            value = await self._client.get(self._fixed_key(key, spec.window_start(now)))
        except (RedisError, OSError) as exc:
            raise self._unavailable("count lookup", exc) from exc
        return int(value or 0)

    async def reset(self, key: str, spec: WindowSpec, *, now: float) -> None:
        try:
            await self._client.delete(
                self._sliding_key(key),
                self._fixed_key(key, spec.window_start(now)),
            )
        except (RedisError, OSError) as exc:
            raise self._unavailable("reset", exc) from exc

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("counter_store.redis_close_failed", extra={"error_type": type(exc).__name__})
