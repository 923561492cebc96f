"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- tags metadata
- the API Key security scheme (``X-API-Key``) with per-path overrides

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

PUBLIC_PATH_MARKERS = ("/health", "/v1/admission/check/")

TAGS_METADATA = [
    {
        "name": "Policies",
        "description": "Create, update, inspect and deactivate rate limit policies.",
    },
    {
        "name": "Admission",
        "description": (
            "Evaluate requests against policies, inspect and reset counters, "
            "read aggregated metrics, and the forward-auth check."
        ),
    },
    {
        "name": "Health",
        "description": "Liveness checks.",
    },
]


def _is_public(path: str) -> bool:
    return any(marker in path for marker in PUBLIC_PATH_MARKERS)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and security.

    All operations require the API key by default; health and the
    forward-auth check are marked public with ``security: []``.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key (one of APP_API_KEYS).",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in TAGS_METADATA:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if _is_public(path):
                for method_obj in methods.values():
                    if isinstance(method_obj, dict):
                        method_obj["security"] = []

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
