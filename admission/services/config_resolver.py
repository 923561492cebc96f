"""Policy resolution.

Finds the single effective policy for a limit key and request context:
the active row with the highest priority among those scoped to the request's
environment or to all environments, preferring the environment-specific row
on a priority tie.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from admission.adapters.policy_store.base import AbstractPolicyStore
from admission.schemas.context import RequestContext
from admission.schemas.policy import Policy
from admission.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)

_MISSING = object()


def select_policy(candidates: list[Policy], environment: str | None) -> Policy | None:
    """Pick the effective policy among ``candidates``.

    Args:
        candidates: Active policies for one limit key.
        environment: Request environment.

    Returns:
        Highest-priority applicable policy, or None.
    """

    applicable = [
        p for p in candidates
        if p.is_active and (p.environment is None or p.environment == environment)
    ]
    if not applicable:
        return None
    return max(applicable, key=lambda p: (p.priority, p.environment is not None))


class ConfigResolver:
    """Resolves and caches the effective policy per ``(limit_key, environment)``."""

    def __init__(
        self,
        store: AbstractPolicyStore,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        cache_kwargs: dict[str, Any] = {"name": "policies"}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self._cache = SimpleTTLCache(ttl_seconds=ttl_seconds, max_entries=max_entries, **cache_kwargs)

    @property
    def store(self) -> AbstractPolicyStore:
        return self._store

    async def resolve(self, limit_key: str, context: RequestContext) -> Policy | None:
        """Return the effective policy, or None when no limiting applies.

        Args:
            limit_key: Rule family identifier.
            context: Request context (only ``environment`` is used).

        Returns:
            Frozen Policy shared with the cache, or None.
        """

        environment = context.environment
        cache_key = (limit_key, environment)

        cached = self._cache.get(cache_key, _MISSING)
        if cached is not _MISSING:
            return cached

        candidates = await self._store.find_active(limit_key, environment)
        policy = select_policy(candidates, environment)

        tags: list[Any] = [("limit_key", limit_key)]
        if policy is not None:
            tags.append(("policy", policy.id))
        self._cache.set(cache_key, policy, tags=tags)

        logger.debug(
            "policy.resolved",
            extra={
                "limit_key": limit_key,
                "environment": environment,
                "policy_id": policy.id if policy else None,
                "candidates": len(candidates),
            },
        )
        return policy

    def invalidate(self, *, limit_key: str | None = None, policy_id: str | None = None) -> int:
        """Drop cached resolutions for a limit key and/or policy id."""

        removed = 0
        if limit_key is not None:
            removed += self._cache.invalidate_tag(("limit_key", limit_key))
        if policy_id is not None:
            removed += self._cache.invalidate_tag(("policy", policy_id))
        return removed

    def stats(self) -> dict[str, Any]:
        return self._cache.stats()
