"""Pydantic schemas for rate limit policies."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScopeType(str, Enum):
    """Dimension along which a policy's quota is tracked."""

    GLOBAL = "global"
    USER = "user"
    IP = "ip"
    API_KEY = "api_key"
    ENDPOINT = "endpoint"
    ROLE = "role"
    SERVICE = "service"


class LimitAction(str, Enum):
    """Enforcement applied once a policy's quota is exhausted."""

    BLOCK = "block"
    THROTTLE = "throttle"
    QUEUE = "queue"
    CAPTCHA = "captcha"
    LOG = "log"


# Exemption lists as they may come out of a store: a proper collection, or
# the raw JSON text of a column. Parsed by the exemption evaluator.
ExemptionList = frozenset[str] | str | None


class Policy(BaseModel):
    """A persisted rate limit rule, as read by the engine.

    Instances are frozen so cached copies can be shared between concurrent
    evaluations without readers ever observing a partial update.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    limit_key: str = Field(..., min_length=1, max_length=100)
    limit_name: str | None = None
    description: str | None = None

    max_requests: int = Field(..., gt=0)
    time_window_seconds: int = Field(..., gt=0)

    scope_type: ScopeType = ScopeType.GLOBAL
    scope_pattern: str | None = None
    action_on_limit: LimitAction = LimitAction.BLOCK
    sliding_window: bool = True

    is_active: bool = True
    priority: int = 100
    environment: str | None = None

    exempt_roles: ExemptionList = None
    exempt_users: ExemptionList = None
    exempt_ips: ExemptionList = None
    exempt_api_keys: ExemptionList = None

    alert_threshold_percentage: float = 0
    retry_after_header: bool = True
    custom_error_message: str | None = None

    last_triggered: datetime | None = None
    trigger_count: int = Field(0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator(
        "exempt_roles", "exempt_users", "exempt_ips", "exempt_api_keys", mode="before"
    )
    @classmethod
    def normalize_exemptions(cls, value: Any) -> Any:
        if value is None or isinstance(value, (str, frozenset)):
            return value
        if isinstance(value, Iterable):
            return frozenset(value)
        return value

    def summary(self) -> dict[str, Any]:
        """Return the fields exposed by status/introspection views."""

        return {
            "id": self.id,
            "limit_key": self.limit_key,
            "max_requests": self.max_requests,
            "time_window_seconds": self.time_window_seconds,
            "scope_type": self.scope_type.value,
            "action_on_limit": self.action_on_limit.value,
            "sliding_window": self.sliding_window,
            "priority": self.priority,
            "environment": self.environment,
        }


class PolicyUpsert(BaseModel):
    """Payload accepted when creating or updating a policy.

    Stricter than ``Policy``: exemption lists must be real string lists,
    the scope pattern must compile, and priority/threshold ranges are enforced.
    """

    model_config = ConfigDict(extra="forbid")

    limit_key: str = Field(..., min_length=1, max_length=100)
    limit_name: str | None = Field(None, max_length=255)
    description: str | None = Field(None, max_length=500)
    max_requests: int = Field(..., gt=0)
    time_window_seconds: int = Field(..., gt=0)
    scope_type: ScopeType = ScopeType.GLOBAL
    scope_pattern: str | None = Field(None, max_length=255)
    action_on_limit: LimitAction = LimitAction.BLOCK
    sliding_window: bool = True
    is_active: bool = True
    priority: int = Field(100, ge=1, le=1000)
    environment: str | None = Field(None, max_length=20)
    exempt_roles: list[str] = Field(default_factory=list)
    exempt_users: list[str] = Field(default_factory=list)
    exempt_ips: list[str] = Field(default_factory=list)
    exempt_api_keys: list[str] = Field(default_factory=list)
    alert_threshold_percentage: float = Field(0, ge=0, le=100)
    retry_after_header: bool = True
    custom_error_message: str | None = Field(None, max_length=500)

    @field_validator("limit_key")
    @classmethod
    def strip_limit_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("limit_key must not be blank")
        return value

    @field_validator("scope_pattern")
    @classmethod
    def check_pattern(cls, value: str | None) -> str | None:
        if not value:
            return None
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"scope_pattern is not a valid regular expression: {exc}") from exc
        return value


class PolicySummary(BaseModel):
    """Compact policy view returned by admin listings."""

    id: str
    limit_key: str
    environment: str | None
    max_requests: int
    time_window_seconds: int
    scope_type: ScopeType
    action_on_limit: LimitAction
    sliding_window: bool
    is_active: bool
    priority: int
    trigger_count: int
    last_triggered: datetime | None = None

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicySummary":
        return cls(
            id=policy.id,
            limit_key=policy.limit_key,
            environment=policy.environment,
            max_requests=policy.max_requests,
            time_window_seconds=policy.time_window_seconds,
            scope_type=policy.scope_type,
            action_on_limit=policy.action_on_limit,
            sliding_window=policy.sliding_window,
            is_active=policy.is_active,
            priority=policy.priority,
            trigger_count=policy.trigger_count,
            last_triggered=policy.last_triggered,
        )
