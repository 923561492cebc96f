from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status

from admission.core.auth import verify_api_key
from admission.core.errors import ErrorKind, ValidationAppError
from admission.core.rate_limit import get_engine
from admission.schemas.policy import Policy, PolicySummary, PolicyUpsert
from admission.services.policy_service import PolicyService

router = APIRouter(
    prefix="/policies",
    tags=["Policies"],
    dependencies=[Depends(verify_api_key)],
)


def get_policy_service(request: Request) -> PolicyService:
    return PolicyService(get_engine(request))


@router.post("", response_model=Policy, status_code=status.HTTP_200_OK)
async def configure_policy(
    payload: PolicyUpsert,
    service: PolicyService = Depends(get_policy_service),
) -> Policy:
    """Create or update the policy for ``(limit_key, environment)``.

    Cached resolutions for the limit key are dropped, so the next evaluation
    sees the new rule.
    """
    return await service.configure(payload)


@router.get("", response_model=list[PolicySummary])
async def list_policies(
    include_inactive: bool = Query(False, description="Include deactivated policies"),
    service: PolicyService = Depends(get_policy_service),
) -> list[PolicySummary]:
    policies = await service.list_policies(include_inactive=include_inactive)
    return [PolicySummary.from_policy(p) for p in policies]


@router.get("/{limit_key}", response_model=Policy)
async def get_policy(
    limit_key: str,
    environment: str | None = Query(None, description="Environment scope (all when omitted)"),
    service: PolicyService = Depends(get_policy_service),
) -> Policy:
    policy = await service.get(limit_key, environment)
    if policy is None:
        raise ValidationAppError(
            code="policy_not_found",
            message=f"No policy for '{limit_key}'",
            details={"limit_key": limit_key, "environment": environment},
            kind=ErrorKind.POLICY_NOT_FOUND,
        )
    return policy


@router.delete("/{limit_key}", response_model=Policy)
async def deactivate_policy(
    limit_key: str,
    environment: str | None = Query(None, description="Environment scope (all when omitted)"),
    service: PolicyService = Depends(get_policy_service),
) -> Policy:
    """Deactivate a policy; counters are left to expire on their own."""
    return await service.deactivate(limit_key, environment)
