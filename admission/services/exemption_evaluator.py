"""Exemption evaluation.

Rules are checked in a fixed order (role, user, IP, API key) and the first
match wins. A malformed exemption list is treated as empty: bad configuration
means the request is still evaluated for limiting.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from admission.core.errors import ConfigMalformedError
from admission.schemas.context import RequestContext
from admission.schemas.policy import Policy
from admission.utils.simple_cache import SimpleTTLCache, build_cache_key

logger = logging.getLogger(__name__)

_EMPTY: frozenset[str] = frozenset()


def parse_exemption_list(raw: Any) -> frozenset[str]:
    """Interpret a stored exemption list.

    Args:
        raw: ``None``, a collection of strings, or JSON text of an array.

    Returns:
        The exempt identities.

    Raises:
        ConfigMalformedError: If the value cannot be read as a list of strings.
    """

    if raw is None:
        return _EMPTY
    if isinstance(raw, str):
        if not raw.strip():
            return _EMPTY
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigMalformedError(message=f"Exemption list is not valid JSON: {exc.msg}") from exc
        if raw is None:
            return _EMPTY
    if isinstance(raw, (list, tuple, set, frozenset)) and all(isinstance(v, str) for v in raw):
        return frozenset(raw)
    raise ConfigMalformedError(message="Exemption list must be an array of strings")


class ExemptionEvaluator:
    """Decides whether a context is exempt from a policy; results are cached."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 60.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] | None = None,
    ) -> None:
        cache_kwargs: dict[str, Any] = {"name": "exemptions"}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self._cache = SimpleTTLCache(ttl_seconds=ttl_seconds, max_entries=max_entries, **cache_kwargs)

    def _exemptions(self, policy: Policy, field: str) -> frozenset[str]:
        try:
            return parse_exemption_list(getattr(policy, field))
        except ConfigMalformedError as exc:
            logger.warning(
                "exemption.config_malformed",
                extra={
                    "limit_key": policy.limit_key,
                    "policy_id": policy.id,
                    "field": field,
                    "error_kind": exc.kind.value if exc.kind else None,
                    "error_msg": exc.message,
                },
            )
            return _EMPTY

    def _evaluate(self, policy: Policy, context: RequestContext) -> bool:
        if context.user_roles:
            roles = self._exemptions(policy, "exempt_roles")
            if roles and any(role in roles for role in context.user_roles):
                return True

        if context.user_id and context.user_id in self._exemptions(policy, "exempt_users"):
            return True

        if context.ip and context.ip in self._exemptions(policy, "exempt_ips"):
            return True

        if context.api_key and context.api_key in self._exemptions(policy, "exempt_api_keys"):
            return True

        return False

    def is_exempt(self, policy: Policy, context: RequestContext) -> bool:
        """Return whether ``context`` is exempt from ``policy``.

        Args:
            policy: Effective policy.
            context: Request context.

        Returns:
            True if a role, user, IP or API key exemption matches.
        """

        identity = build_cache_key(
            context.user_id,
            ",".join(context.user_roles),
            context.ip,
            context.api_key,
        )
        cache_key = (policy.id, identity)

        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        exempt = self._evaluate(policy, context)
        self._cache.set(cache_key, exempt, tags=(policy.id,))
        return exempt

    def invalidate_policy(self, policy_id: str) -> int:
        return self._cache.invalidate_tag(policy_id)

    def stats(self) -> dict[str, Any]:
        return self._cache.stats()
