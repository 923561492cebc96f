from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from admission.core.auth import verify_api_key
from admission.core.errors import ErrorKind, ValidationAppError
from admission.core.rate_limit import apply_enforcement, context_from_request, get_engine
from admission.schemas.decision import (
    EvaluateRequest,
    EvaluateResponse,
    MetricsReport,
    PolicyStatus,
    PublicDecision,
    ResetResponse,
)
from admission.services.admission_engine import AdmissionEngine

router = APIRouter(prefix="/admission", tags=["Admission"])


@router.post(
    "/evaluate",
    response_model=EvaluateResponse,
    dependencies=[Depends(verify_api_key)],
)
async def evaluate(
    payload: EvaluateRequest,
    engine: AdmissionEngine = Depends(get_engine),
) -> EvaluateResponse:
    """Evaluate one request and return the decision with its enforcement.

    The request is counted, but a denial is reported in the body rather than
    applied: callers decide how to respond.
    """
    decision, enforcement = await engine.enforce(payload.limit_key, payload.context)
    return EvaluateResponse(decision=decision, enforcement=enforcement)


@router.post(
    "/status",
    response_model=PolicyStatus,
    dependencies=[Depends(verify_api_key)],
)
async def status(
    payload: EvaluateRequest,
    engine: AdmissionEngine = Depends(get_engine),
) -> PolicyStatus:
    result = await engine.status(payload.limit_key, payload.context)
    if result is None:
        raise ValidationAppError(
            code="policy_not_found",
            message=f"No rate limit configured for '{payload.limit_key}'",
            details={"limit_key": payload.limit_key},
            kind=ErrorKind.POLICY_NOT_FOUND,
        )
    return result


@router.post(
    "/reset",
    response_model=ResetResponse,
    dependencies=[Depends(verify_api_key)],
)
async def reset(
    payload: EvaluateRequest,
    engine: AdmissionEngine = Depends(get_engine),
) -> ResetResponse:
    reset_key = await engine.reset_counters(payload.limit_key, payload.context)
    return ResetResponse(success=True, reset_key=reset_key)


@router.get(
    "/metrics",
    response_model=MetricsReport,
    dependencies=[Depends(verify_api_key)],
)
async def metrics(
    limit_key: str | None = Query(None, description="Restrict to one limit key"),
    time_range: str = Query("1h", description="One of 1h, 24h, 7d"),
    engine: AdmissionEngine = Depends(get_engine),
) -> MetricsReport:
    return engine.metrics(limit_key=limit_key, time_range=time_range)


@router.get("/check/{limit_key}", response_model=PublicDecision)
async def check(
    limit_key: str,
    request: Request,
    response: Response,
    engine: AdmissionEngine = Depends(get_engine),
) -> PublicDecision:
    """Forward-auth check for reverse proxies.

    Identity comes from the proxy headers (``X-User-Id``, ``X-User-Roles``,
    ``X-API-Key``, ``X-Forwarded-For``, ``X-Original-URI``,
    ``X-Original-Method``, ``X-Service``), so this route must only be
    reachable by the proxy. Allowed requests get 200 with the rate limit
    headers; denied ones get the 429 enforcement response. The body carries
    the policy summary only.
    """
    context = context_from_request(request, trust_proxy_headers=True)
    decision, enforcement = await engine.enforce(limit_key, context)
    apply_enforcement(response, decision, enforcement)
    return PublicDecision.from_decision(decision)
