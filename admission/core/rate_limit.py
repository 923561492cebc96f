"""Admission control in the HTTP layer.

Two ways to put a route behind a limit key:
- ``Depends(rate_limited("login"))`` on any FastAPI route, and
- the forward-auth check route, for proxies that ask before forwarding.

Both build a ``RequestContext`` from the request, run the engine and apply
the enforcement: informational ``X-RateLimit-*`` headers on every response,
and a 429 (``RateLimitExceededError``) when the action denies the request.

Identity sources differ. The check route is called by the proxy, so it reads
the proxy headers. Rate-limited routes are called by clients, so they take
the IP from the socket peer and the user from ``request.state.user`` (set by
the application's authentication layer: an object with ``id`` and ``roles``),
unless ``APP_TRUST_PROXY_HEADERS`` is enabled.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import Request, Response

from admission.core.config import settings
from admission.core.errors import RateLimitExceededError
from admission.core.logging import hash_identity
from admission.schemas.context import RequestContext
from admission.schemas.decision import Decision, Enforcement, EvaluateResponse
from admission.services.admission_engine import AdmissionEngine

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_ROLES_HEADER = "X-User-Roles"
API_KEY_HEADER = "X-API-Key"
FORWARDED_FOR_HEADER = "X-Forwarded-For"
ORIGINAL_URI_HEADER = "X-Original-URI"
ORIGINAL_METHOD_HEADER = "X-Original-Method"
SERVICE_HEADER = "X-Service"


def get_engine(request: Request) -> AdmissionEngine:
    """Return the engine owned by the running application."""
    return request.app.state.engine


def _peer_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _forwarded_ip(request: Request) -> str | None:
    forwarded = request.headers.get(FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return _peer_ip(request)


def _roles(raw: Any) -> tuple[str, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = raw.split(",")
    return tuple(str(role).strip() for role in raw if str(role).strip())


def _authenticated_user(request: Request) -> tuple[str | None, tuple[str, ...]]:
    user = getattr(request.state, "user", None)
    if user is None:
        return None, ()
    user_id = getattr(user, "id", None)
    return (str(user_id) if user_id is not None else None), _roles(getattr(user, "roles", None))


def context_from_request(
    request: Request,
    *,
    trust_proxy_headers: bool = False,
) -> RequestContext:
    """Build the admission context for ``request``.

    Args:
        request: Incoming request.
        trust_proxy_headers: Read IP, user, roles, service and the original
            URI/method from proxy headers. Only for callers that are the
            proxy itself; otherwise any client could pick its identity.

    Returns:
        Context with ``environment`` set to ``ENGINE_DEFAULT_ENVIRONMENT``.
    """

    headers = request.headers
    api_key = headers.get(API_KEY_HEADER) or None
    user_agent = headers.get("User-Agent") or None
    environment = settings.engine.default_environment

    if trust_proxy_headers:
        return RequestContext(
            user_id=headers.get(USER_ID_HEADER) or None,
            user_roles=_roles(headers.get(USER_ROLES_HEADER)),
            ip=_forwarded_ip(request),
            api_key=api_key,
            endpoint=headers.get(ORIGINAL_URI_HEADER) or request.url.path,
            method=headers.get(ORIGINAL_METHOD_HEADER) or request.method,
            environment=environment,
            service=headers.get(SERVICE_HEADER) or None,
            user_agent=user_agent,
        )

    user_id, roles = _authenticated_user(request)
    return RequestContext(
        user_id=user_id,
        user_roles=roles,
        ip=_peer_ip(request),
        api_key=api_key,
        endpoint=request.url.path,
        method=request.method,
        environment=environment,
        user_agent=user_agent,
    )


def apply_enforcement(
    response: Response,
    decision: Decision,
    enforcement: Enforcement,
) -> None:
    """Attach rate limit headers, or raise the 429 for a denial.

    Raises:
        RateLimitExceededError: If ``enforcement`` does not allow the request.
    """

    if not enforcement.allowed:
        logger.info(
            "rate_limit.denied",
            extra={
                "limit_key": decision.policy.limit_key if decision.policy else None,
                "action": enforcement.action.value if enforcement.action else None,
                "scope_key_hash": hash_identity(decision.scope_key),
                "status_code": enforcement.status_code,
            },
        )
        raise RateLimitExceededError(
            status_code=enforcement.status_code,
            body=enforcement.body or {"error": "Rate limit exceeded"},
            headers=enforcement.headers,
        )

    for name, value in enforcement.headers.items():
        response.headers[name] = value


def rate_limited(limit_key: str) -> Callable[[Request, Response], Awaitable[EvaluateResponse]]:
    """Create a FastAPI dependency enforcing ``limit_key`` on a route.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limited("login"))])

    or, when the route needs the outcome (e.g. ``should_queue``):

        async def export(admission: EvaluateResponse = Depends(rate_limited("export"))):
            if admission.enforcement.should_queue: ...

    Args:
        limit_key: Limit key whose policy applies to the route.

    Returns:
        Dependency returning the decision and the enforcement applied. The
        same value is stored on ``request.state.admission``.
    """

    async def dependency(request: Request, response: Response) -> EvaluateResponse:
        engine = get_engine(request)
        context = context_from_request(
            request, trust_proxy_headers=settings.app.trust_proxy_headers
        )
        decision, enforcement = await engine.enforce(limit_key, context)
        apply_enforcement(response, decision, enforcement)
        outcome = EvaluateResponse(decision=decision, enforcement=enforcement)
        request.state.admission = outcome
        return outcome

    dependency.__name__ = f"rate_limited_{limit_key}"
    return dependency
