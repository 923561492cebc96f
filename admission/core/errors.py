"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Failure policy:
- Failures of the protection mechanism itself (counter backend down or slow)
  fail toward availability: the request is allowed.
- Failures of configuration correctness (malformed exemption list, bad scope
  pattern) fail toward safety: the rule is applied, the broken part ignored.
- Only validation errors on policy configuration reach the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NotRequired, TypedDict


class ErrorKind(str, Enum):
    """Error categories attached to decisions and raised errors."""

    BACKEND_UNAVAILABLE = "backend_unavailable"
    CONFIG_MALFORMED = "config_malformed"
    POLICY_NOT_FOUND = "policy_not_found"
    VALIDATION_ERROR = "validation_error"


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    limit_key: str
    environment: str | None
    field: str
    errors: list[dict[str, Any]]
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    kind: ErrorKind | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


@dataclass
class ValidationAppError(AppError):
    """Raised when policy input/config validation fails."""

    kind: ErrorKind | None = ErrorKind.VALIDATION_ERROR


@dataclass
class BackendUnavailableError(AppError):
    """Raised by counter stores when the backend is unreachable or failing.

    Never surfaces to callers of the engine: the window counter converts it
    into a circuit breaker failure and a local fallback count.
    """

    code: str = "backend_unavailable"
    message: str = "Counter backend unavailable"
    kind: ErrorKind | None = ErrorKind.BACKEND_UNAVAILABLE


@dataclass
class ConfigMalformedError(AppError):
    """Raised when a stored policy field cannot be interpreted."""

    code: str = "config_malformed"
    message: str = "Malformed policy configuration"
    kind: ErrorKind | None = ErrorKind.CONFIG_MALFORMED


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


@dataclass
class RateLimitExceededError(Exception):
    """Raised by the HTTP layer to apply a denying enforcement.

    Attributes:
        status_code: HTTP status to return (429).
        body: JSON body of the denial.
        headers: Rate limit headers to attach.
    """

    status_code: int
    body: dict[str, Any]
    headers: dict[str, str]

    def __post_init__(self) -> None:
        super().__init__(self.body.get("message", "Rate limit exceeded"))
