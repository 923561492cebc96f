"""Pydantic schemas for admission decisions, enforcement and introspection."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from admission.core.errors import ErrorKind
from admission.schemas.context import RequestContext
from admission.schemas.policy import LimitAction, Policy


class Decision(BaseModel):
    """Outcome of evaluating one request against a limit key."""

    limited: bool = Field(..., description="Whether the quota is exhausted")
    policy: Policy | None = Field(None, description="Effective policy, if any")
    reason: str | None = Field(None, description="Why the engine short-circuited")
    remaining: int = Field(0, ge=0, description="Requests left in the current window")
    reset_at: int = Field(0, description="UNIX epoch seconds when the window resets")
    current_count: int = Field(0, ge=0, description="Requests counted in the window")
    scope_key: str | None = Field(None, description="Counter key the request was counted under")
    exempt: bool = Field(False, description="Whether an exemption rule matched")
    degraded: bool = Field(
        False,
        description="Whether the count came from the local fallback store",
    )
    error_kind: ErrorKind | None = Field(None, description="Error category, if any")


class PublicDecision(BaseModel):
    """Decision as shown to unauthenticated callers.

    Carries the policy summary only: exemption lists and identity-derived
    scope keys stay server-side.
    """

    limited: bool
    remaining: int
    reset_at: int
    current_count: int
    reason: str | None = None
    exempt: bool = False
    degraded: bool = False
    policy: dict[str, Any] | None = None

    @classmethod
    def from_decision(cls, decision: Decision) -> "PublicDecision":
        return cls(
            limited=decision.limited,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
            current_count=decision.current_count,
            reason=decision.reason,
            exempt=decision.exempt,
            degraded=decision.degraded,
            policy=decision.policy.summary() if decision.policy else None,
        )


class Enforcement(BaseModel):
    """Concrete effect of a decision, applied by the HTTP layer."""

    allowed: bool = Field(..., description="Whether the request may proceed")
    action: LimitAction | None = Field(None, description="Action that was applied")
    status_code: int = Field(200, description="HTTP status to respond with when denied")
    headers: dict[str, str] = Field(default_factory=dict)
    body: dict[str, Any] | None = Field(None, description="JSON body of a denial")
    delay_seconds: float = Field(0.0, ge=0, description="Artificial delay applied")
    should_queue: bool = Field(False, description="Caller should queue the request")
    challenge_required: bool = Field(False, description="A challenge must be solved first")


class EvaluateRequest(BaseModel):
    """Body of evaluate/status/reset calls."""

    limit_key: str = Field(..., min_length=1)
    context: RequestContext = Field(default_factory=RequestContext)


class EvaluateResponse(BaseModel):
    """Decision plus the enforcement it maps to."""

    decision: Decision
    enforcement: Enforcement


class PolicyStatus(BaseModel):
    """Counter state of one scope key, for debugging/admin UIs."""

    limit_key: str
    scope_key: str
    current_count: int
    remaining: int
    exempt: bool
    policy_summary: dict[str, Any]
    circuit_state: str


class ResetResponse(BaseModel):
    success: bool
    reset_key: str


class MetricsSummary(BaseModel):
    """Aggregated outcomes for one limit key over a time range."""

    limit_key: str
    total: int
    limited: int
    avg_latency_ms: float
    max_latency_ms: float


class MetricsReport(BaseModel):
    time_range: str
    start: float
    end: float
    metrics: list[MetricsSummary]
