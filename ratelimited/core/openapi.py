"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- An ``ApiKeyAuth`` security scheme required by the admin policy routes
- A shared ``RateLimitError`` response, attached as ``429`` to every operation
  guarded by a :class:`~ratelimited.core.rate_limit.RateLimitDependency`

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI
from fastapi.routing import APIRoute

from ratelimited.core.auth import verify_api_key
from ratelimited.core.rate_limit import RateLimitDependency

RATE_LIMIT_RESPONSE: Dict[str, Any] = {
    "description": "Rate limit exceeded for the resolved key.",
    "headers": {
        "Retry-After": {
            "description": "Seconds until the current window closes.",
            "schema": {"type": "integer"},
        },
        "X-RateLimit-Limit": {
            "description": "Maximum requests admitted per window.",
            "schema": {"type": "integer"},
        },
        "X-RateLimit-Remaining": {
            "description": "Requests left in the current window.",
            "schema": {"type": "integer"},
        },
    },
    "content": {
        "application/json": {
            "schema": {"$ref": "#/components/schemas/RateLimitError"},
        }
    },
}

RATE_LIMIT_ERROR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "error": {
            "type": "object",
            "properties": {
                "code": {"type": "string", "example": "rate_limit_exceeded"},
                "message": {"type": "string"},
                "request_id": {"type": "string"},
                "details": {"type": "object"},
            },
            "required": ["code", "message"],
        }
    },
}


def _requires_admin_key(route: APIRoute) -> bool:
    return any(dep.call is verify_api_key for dep in route.dependant.dependencies)


def _is_rate_limited(route: APIRoute) -> bool:
    return any(isinstance(dep.call, RateLimitDependency) for dep in route.dependant.dependencies)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata, security and 429 responses.

    - Registers components.schemas.RateLimitError and the ApiKeyAuth scheme
    - Marks admin operations as requiring ApiKeyAuth
    - Adds a ``429`` response to operations with a rate limit dependency
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("schemas", {}).setdefault("RateLimitError", RATE_LIMIT_ERROR_SCHEMA)
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key for the policy routes.",
            },
        )

        paths = schema.get("paths", {})
        for route in app.routes:
            if not isinstance(route, APIRoute):
                continue
            rate_limited, admin_only = _is_rate_limited(route), _requires_admin_key(route)
            operations = paths.get(route.path_format, {})
            for method in route.methods:
                operation = operations.get(method.lower())
                if not isinstance(operation, dict):
                    continue
                if rate_limited:
                    operation.setdefault("responses", {}).setdefault("429", RATE_LIMIT_RESPONSE)
                if admin_only:
                    operation["security"] = [{"ApiKeyAuth": []}]

        # Tags metadata
        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Policies",
                "description": "Dynamic policy overrides for DYNAMIC call sites.",
            },
            {
                "name": "Health",
                "description": "Liveness and limiter statistics.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
