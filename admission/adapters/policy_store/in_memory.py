"""In-memory policy store.

Suitable for tests, single-node deployments and the built-in policy set.
Rows are frozen models; every write replaces the stored object.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Iterable

from admission.adapters.policy_store.base import AbstractPolicyStore
from admission.schemas.policy import Policy


class InMemoryPolicyStore(AbstractPolicyStore):
    """Policy store keyed by ``(limit_key, environment)``."""

    def __init__(self, policies: Iterable[Policy] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, str | None], Policy] = {}
        for policy in policies:
            self._rows[(policy.limit_key, policy.environment)] = policy

    async def find_active(self, limit_key: str, environment: str | None) -> list[Policy]:
        with self._lock:
            candidates = [self._rows.get((limit_key, None))]
            if environment is not None:
                candidates.append(self._rows.get((limit_key, environment)))
        return [p for p in candidates if p is not None and p.is_active]

    async def get(self, limit_key: str, environment: str | None) -> Policy | None:
        with self._lock:
            return self._rows.get((limit_key, environment))

    async def list_policies(self, *, include_inactive: bool = False) -> list[Policy]:
        with self._lock:
            rows = list(self._rows.values())
        if not include_inactive:
            rows = [p for p in rows if p.is_active]
        return sorted(rows, key=lambda p: (p.limit_key, p.environment or ""))

    async def save(self, policy: Policy) -> Policy:
        now = datetime.now(timezone.utc)
        key = (policy.limit_key, policy.environment)
        with self._lock:
            existing = self._rows.get(key)
            if existing is None:
                stored = policy.model_copy(
                    update={"created_at": policy.created_at or now, "updated_at": now}
                )
            else:
                stored = policy.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": now,
                        "trigger_count": existing.trigger_count,
                        "last_triggered": existing.last_triggered,
                    }
                )
            self._rows[key] = stored
        return stored

    async def record_trigger(self, policy_id: str, triggered_at: datetime) -> None:
        with self._lock:
            for key, policy in self._rows.items():
                if policy.id == policy_id:
                    self._rows[key] = policy.model_copy(
                        update={
                            "trigger_count": policy.trigger_count + 1,
                            "last_triggered": triggered_at,
                        }
                    )
                    return
