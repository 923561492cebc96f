"""Pydantic schema for the per-request evaluation context."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RequestContext(BaseModel):
    """Identity and routing attributes of one inbound request.

    Constructed by the caller for every evaluation. Every attribute is
    optional; scope keys fall back to placeholders when one is missing.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str | None = Field(None, description="Authenticated user identifier")
    user_roles: tuple[str, ...] = Field(
        default_factory=tuple,
        description="Roles of the authenticated user, most significant first",
    )
    ip: str | None = Field(None, description="Client IP address")
    api_key: str | None = Field(None, description="API key presented by the client")
    endpoint: str | None = Field(None, description="Request path")
    method: str | None = Field(None, description="HTTP method or RPC verb")
    environment: str | None = Field(None, description="Deployment environment")
    service: str | None = Field(None, description="Calling or target service name")
    user_agent: str | None = Field(None, description="Client user agent")
