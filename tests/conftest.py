"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets TESTING so no .env file is loaded and pins the settings every test
relies on, before anything imports ``admission.core.config``.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("ENGINE_COUNTER_BACKEND", "local")
os.environ.setdefault("ENGINE_SEED_DEFAULT_POLICIES", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from admission.schemas.policy import Policy  # noqa: E402


class FakeClock:
    """Manually advanced time source (UNIX seconds)."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_policy():
    """Factory for policies with sensible test defaults."""

    def _make(**overrides) -> Policy:
        values = {
            "limit_key": "login",
            "max_requests": 10,
            "time_window_seconds": 900,
            "scope_type": "ip",
            "action_on_limit": "block",
        }
        values.update(overrides)
        return Policy(**values)

    return _make
