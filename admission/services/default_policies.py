"""Built-in policy set covering authentication and general API traffic."""

from __future__ import annotations

from admission.schemas.policy import LimitAction, Policy, ScopeType

_AUTH_MESSAGE = "Too many attempts, please try again later."


def default_policies() -> list[Policy]:
    """Return fresh copies of the built-in policies (all environments)."""

    return [
        Policy(
            limit_key="login",
            limit_name="Login attempts",
            max_requests=10,
            time_window_seconds=900,
            scope_type=ScopeType.IP,
            action_on_limit=LimitAction.BLOCK,
            custom_error_message="Too many login attempts, please try again later.",
        ),
        Policy(
            limit_key="register",
            limit_name="Registrations",
            max_requests=5,
            time_window_seconds=900,
            scope_type=ScopeType.IP,
            custom_error_message=_AUTH_MESSAGE,
        ),
        Policy(
            limit_key="password_reset",
            limit_name="Password reset requests",
            max_requests=3,
            time_window_seconds=3600,
            scope_type=ScopeType.IP,
            custom_error_message=_AUTH_MESSAGE,
        ),
        Policy(
            limit_key="token_refresh",
            limit_name="Token refreshes",
            max_requests=30,
            time_window_seconds=900,
            scope_type=ScopeType.USER,
        ),
        Policy(
            limit_key="api_user",
            limit_name="API requests per user",
            max_requests=1000,
            time_window_seconds=3600,
            scope_type=ScopeType.USER,
        ),
        Policy(
            limit_key="api_ip",
            limit_name="API requests per IP",
            max_requests=100,
            time_window_seconds=3600,
            scope_type=ScopeType.IP,
        ),
        Policy(
            limit_key="api_global",
            limit_name="API requests, all clients",
            max_requests=10000,
            time_window_seconds=3600,
            scope_type=ScopeType.GLOBAL,
        ),
    ]
