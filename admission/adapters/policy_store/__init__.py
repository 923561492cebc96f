"""Policy store adapters."""

from admission.adapters.policy_store.base import AbstractPolicyStore
from admission.adapters.policy_store.in_memory import InMemoryPolicyStore

__all__ = [
    "AbstractPolicyStore",
    "InMemoryPolicyStore",
]
