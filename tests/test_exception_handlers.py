"""Tests for global exception handlers.

Validates that every exception type maps to the right HTTP status, the
error format stays consistent and nothing internal leaks to clients.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from admission.core.errors import (
    AppError,
    AuthenticationAppError,
    BackendUnavailableError,
    ConfigMalformedError,
    RateLimitExceededError,
    ValidationAppError,
)
from admission.core.exception_handlers import general_exception_handler, setup_exception_handlers


class _Body(BaseModel):
    max_requests: int


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/validation")
    async def validation():
        raise ValidationAppError(
            code="invalid_policy",
            message="Policy configuration is invalid",
            details={"errors": [{"field": "max_requests", "message": "must be > 0"}]},
        )

    @app.get("/auth")
    async def auth():
        raise AuthenticationAppError(code="invalid_api_key", message="Invalid or missing API key")

    @app.get("/backend")
    async def backend():
        raise BackendUnavailableError()

    @app.get("/config")
    async def config():
        raise ConfigMalformedError()

    @app.get("/limited")
    async def limited():
        raise RateLimitExceededError(
            status_code=429,
            body={"error": "Rate limit exceeded", "message": "Too many requests", "retry_after": 60},
            headers={"Retry-After": "60", "X-RateLimit-Remaining": "0"},
        )

    @app.post("/body")
    async def body(payload: _Body):
        return payload

    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_validation_error_returns_400_with_details(self, client: TestClient):
        response = client.get("/validation")

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "invalid_policy"
        assert data["error"]["details"]["errors"][0]["field"] == "max_requests"
        assert "request_id" in data["error"]

    def test_authentication_error_returns_403(self, client: TestClient):
        response = client.get("/auth")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "invalid_api_key"

    def test_backend_unavailable_returns_503(self, client: TestClient):
        response = client.get("/backend")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "backend_unavailable"

    def test_other_app_errors_return_500(self, client: TestClient):
        response = client.get("/config")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "config_malformed"


class TestRateLimitHandler:
    def test_denial_uses_enforcement_body_and_headers(self, client: TestClient):
        response = client.get("/limited")

        assert response.status_code == 429
        assert response.json() == {
            "error": "Rate limit exceeded",
            "message": "Too many requests",
            "retry_after": 60,
        }
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"


class TestRequestValidationHandler:
    def test_body_validation_returns_400(self, client: TestClient):
        response = client.post("/body", json={"max_requests": "many"})

        assert response.status_code == 400
        data = response.json()
        assert data["error"]["code"] == "validation_error"
        assert data["error"]["details"]["errors"][0]["field"] == "body.max_requests"


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_general_exception_handler_does_not_leak(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("redis password=hunter2 rejected")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "hunter2" not in json.dumps(data)
        assert "RuntimeError" not in json.dumps(data)
        assert "request_id" in data["error"]

    def test_setup_registers_all_handlers(self, app_with_handlers: FastAPI):
        assert AppError in app_with_handlers.exception_handlers
        assert RateLimitExceededError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers
