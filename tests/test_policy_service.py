"""Unit tests for policy administration."""

import pytest

from admission.adapters.policy_store import InMemoryPolicyStore
from admission.core.errors import ErrorKind, ValidationAppError
from admission.schemas.context import RequestContext
from admission.schemas.policy import LimitAction, PolicyUpsert
from admission.services.factory import build_engine
from admission.services.policy_service import PolicyService


@pytest.fixture
def engine(clock):
    return build_engine(policy_store=InMemoryPolicyStore(), clock=clock)


@pytest.fixture
def service(engine) -> PolicyService:
    return PolicyService(engine)


@pytest.mark.asyncio
async def test_configure_from_mapping(service) -> None:
    policy = await service.configure(
        {
            "limit_key": " login ",
            "max_requests": 10,
            "time_window_seconds": 900,
            "scope_type": "ip",
            "action_on_limit": "captcha",
            "exempt_ips": ["10.0.0.1"],
        }
    )

    assert policy.limit_key == "login"
    assert policy.action_on_limit is LimitAction.CAPTCHA
    assert policy.exempt_ips == frozenset({"10.0.0.1"})
    assert policy.created_at is not None


@pytest.mark.parametrize(
    "payload",
    [
        {"max_requests": 10, "time_window_seconds": 60},
        {"limit_key": "k", "max_requests": 0, "time_window_seconds": 60},
        {"limit_key": "k", "max_requests": 1, "time_window_seconds": -1},
        {"limit_key": "k", "max_requests": 1, "time_window_seconds": 60, "scope_type": "planet"},
        {"limit_key": "k", "max_requests": 1, "time_window_seconds": 60, "priority": 1001},
        {"limit_key": "k", "max_requests": 1, "time_window_seconds": 60, "scope_pattern": "(["},
        {"limit_key": "   ", "max_requests": 1, "time_window_seconds": 60},
        {"limit_key": "k", "max_requests": 1, "time_window_seconds": 60, "unknown": True},
    ],
)
@pytest.mark.asyncio
async def test_configure_rejects_invalid_payloads(service, payload) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        await service.configure(payload)

    assert exc_info.value.code == "invalid_policy"
    assert exc_info.value.details["errors"]


@pytest.mark.asyncio
async def test_configure_invalidates_cached_resolution(service, engine) -> None:
    context = RequestContext(ip="1.2.3.4")
    assert (await engine.evaluate("login", context)).policy is None

    await service.configure(
        PolicyUpsert(limit_key="login", max_requests=1, time_window_seconds=60, scope_type="ip")
    )

    decision = await engine.evaluate("login", context)
    assert decision.policy is not None
    assert decision.remaining == 0


@pytest.mark.asyncio
async def test_update_keeps_policy_identity(service) -> None:
    first = await service.configure({"limit_key": "api_ip", "max_requests": 100, "time_window_seconds": 3600})
    second = await service.configure({"limit_key": "api_ip", "max_requests": 50, "time_window_seconds": 3600})

    assert second.id == first.id
    assert second.max_requests == 50
    assert len(await service.list_policies()) == 1


@pytest.mark.asyncio
async def test_deactivate_stops_limiting(service, engine) -> None:
    await service.configure({"limit_key": "login", "max_requests": 1, "time_window_seconds": 60})
    context = RequestContext(ip="1.2.3.4")
    await engine.evaluate("login", context)

    deactivated = await service.deactivate("login")

    assert deactivated.is_active is False
    assert (await engine.evaluate("login", context)).policy is None
    assert await service.list_policies() == []
    assert len(await service.list_policies(include_inactive=True)) == 1


@pytest.mark.asyncio
async def test_deactivate_unknown_policy(service) -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        await service.deactivate("missing", "production")

    assert exc_info.value.code == "policy_not_found"
    assert exc_info.value.kind is ErrorKind.POLICY_NOT_FOUND


@pytest.mark.asyncio
async def test_get_is_exact_on_environment(service) -> None:
    await service.configure(
        {"limit_key": "login", "max_requests": 1, "time_window_seconds": 60, "environment": "staging"}
    )

    assert await service.get("login") is None
    assert (await service.get("login", "staging")).environment == "staging"
