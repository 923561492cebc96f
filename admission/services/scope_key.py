"""Scope key derivation.

Maps a policy and a request context to the counter key the request is
counted under: ``rl:<limit_key>:<dimension>[:pattern:<hash>]``.
"""

from __future__ import annotations

import hashlib
import logging
import re
from functools import lru_cache

from admission.schemas.context import RequestContext
from admission.schemas.policy import Policy, ScopeType

logger = logging.getLogger(__name__)

KEY_PREFIX = "rl"


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as exc:
        logger.warning(
            "scope_key.pattern_malformed",
            extra={"error_kind": "config_malformed", "error_msg": str(exc)},
        )
        return None


def _dimension(policy: Policy, context: RequestContext) -> list[str]:
    scope = policy.scope_type
    if scope is ScopeType.USER:
        return ["user", context.user_id or "anonymous"]
    if scope is ScopeType.IP:
        return ["ip", context.ip or "unknown"]
    if scope is ScopeType.API_KEY:
        return ["key", context.api_key or "none"]
    if scope is ScopeType.ENDPOINT:
        return ["endpoint", context.endpoint or "unknown"]
    if scope is ScopeType.ROLE:
        return ["role", context.user_roles[0] if context.user_roles else "norole"]
    if scope is ScopeType.SERVICE:
        return ["service", context.service or "default"]
    return ["global"]


def pattern_bucket(pattern: str | None, endpoint: str | None) -> str | None:
    """Return the endpoint sub-bucket when ``pattern`` matches ``endpoint``.

    An uncompilable pattern never matches; the coarse scope still applies.
    """

    if not pattern or not endpoint:
        return None
    compiled = _compile(pattern)
    if compiled is None or not compiled.search(endpoint):
        return None
    return hashlib.md5(endpoint.encode()).hexdigest()[:8]


def build_scope_key(policy: Policy, context: RequestContext) -> str:
    """Compose the counter key for ``context`` under ``policy``.

    Args:
        policy: Effective policy.
        context: Request context.

    Returns:
        Deterministic scope key string.

    Examples:
        >>> build_scope_key(Policy(limit_key="login", max_requests=1,
        ...     time_window_seconds=1, scope_type="ip"), RequestContext(ip="1.2.3.4"))
        'rl:login:ip:1.2.3.4'
    """

    parts = [KEY_PREFIX, policy.limit_key, *_dimension(policy, context)]

    bucket = pattern_bucket(policy.scope_pattern, context.endpoint)
    if bucket:
        parts.extend(["pattern", bucket])

    return ":".join(parts)
