"""Policy administration (configure, deactivate, inspect).

Writes go to the policy store; every write invalidates the engine caches for
the touched limit key and policy id so the next evaluation sees the change.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError

from admission.core.errors import ErrorKind, ValidationAppError
from admission.schemas.policy import Policy, PolicyUpsert
from admission.services.admission_engine import AdmissionEngine

logger = logging.getLogger(__name__)


def _validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]


class PolicyService:
    """Validates and persists policies on behalf of the admin API."""

    def __init__(self, engine: AdmissionEngine) -> None:
        self._engine = engine
        self._store = engine.policy_store

    async def configure(self, data: PolicyUpsert | Mapping[str, Any]) -> Policy:
        """Create or update the policy for ``(limit_key, environment)``.

        Args:
            data: Validated payload or a raw mapping to validate.

        Returns:
            The stored policy.

        Raises:
            ValidationAppError: If the payload is invalid.
        """

        if isinstance(data, PolicyUpsert):
            payload = data
        else:
            try:
                payload = PolicyUpsert.model_validate(dict(data))
            except ValidationError as exc:
                raise ValidationAppError(
                    code="invalid_policy",
                    message="Policy configuration is invalid",
                    details={"errors": _validation_errors(exc)},
                ) from exc

        values = payload.model_dump()
        for field in ("exempt_roles", "exempt_users", "exempt_ips", "exempt_api_keys"):
            values[field] = frozenset(values[field])

        stored = await self._store.save(Policy(**values))
        self._engine.invalidate(limit_key=stored.limit_key, policy_id=stored.id)

        logger.info(
            "policy.configured",
            extra={
                "limit_key": stored.limit_key,
                "policy_id": stored.id,
                "environment": stored.environment,
                "max_requests": stored.max_requests,
                "time_window_seconds": stored.time_window_seconds,
                "is_active": stored.is_active,
            },
        )
        return stored

    async def deactivate(self, limit_key: str, environment: str | None = None) -> Policy:
        """Mark the policy stored under ``(limit_key, environment)`` inactive.

        Raises:
            ValidationAppError: If no such policy exists.
        """

        existing = await self._store.get(limit_key, environment)
        if existing is None:
            raise ValidationAppError(
                code="policy_not_found",
                message=f"No policy for '{limit_key}' in environment {environment!r}",
                details={"limit_key": limit_key, "environment": environment},
                kind=ErrorKind.POLICY_NOT_FOUND,
            )

        stored = await self._store.save(existing.model_copy(update={"is_active": False}))
        self._engine.invalidate(limit_key=limit_key, policy_id=stored.id)

        logger.info(
            "policy.deactivated",
            extra={"limit_key": limit_key, "policy_id": stored.id, "environment": environment},
        )
        return stored

    async def get(self, limit_key: str, environment: str | None = None) -> Policy | None:
        return await self._store.get(limit_key, environment)

    async def list_policies(self, *, include_inactive: bool = False) -> list[Policy]:
        return await self._store.list_policies(include_inactive=include_inactive)
