"""Policy store interface.

Policies are owned by an external system of record (typically a relational
table). The engine only needs keyed lookup and a couple of best-effort writes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from admission.schemas.policy import Policy


class AbstractPolicyStore(ABC):
    """Interface for policy persistence."""

    @abstractmethod
    async def find_active(self, limit_key: str, environment: str | None) -> list[Policy]:
        """Return active policies for ``limit_key`` applicable to ``environment``.

        Matches rows whose environment equals ``environment`` or is null.

        Args:
            limit_key: Rule family identifier.
            environment: Request environment, or None.

        Returns:
            Matching active policies, in no particular order.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, limit_key: str, environment: str | None) -> Policy | None:
        """Return the policy stored under exactly ``(limit_key, environment)``."""
        raise NotImplementedError

    @abstractmethod
    async def list_policies(self, *, include_inactive: bool = False) -> list[Policy]:
        raise NotImplementedError

    @abstractmethod
    async def save(self, policy: Policy) -> Policy:
        """Insert or replace the policy stored under its ``(limit_key, environment)``."""
        raise NotImplementedError

    @abstractmethod
    async def record_trigger(self, policy_id: str, triggered_at: datetime) -> None:
        """Bump ``trigger_count`` and set ``last_triggered`` for a policy."""
        raise NotImplementedError
