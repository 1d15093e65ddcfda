"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- API Key security scheme (``X-API-Key``) with per-path overrides

Admission routes accept anonymous callers (rate limited as guests), so their
key requirement is optional; admin routes require it; health is exempt.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

API_KEY_SCHEME = "ApiKeyAuth"

# (path suffix, method) pairs where the API key is optional
_OPTIONAL_KEY_OPERATIONS = {
    ("/governance/check", "post"),
    ("/governance/usage", "post"),
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and security.

    - Injects components.securitySchemes for API Key auth (header ``X-API-Key``)
    - Marks all operations as requiring API Key by default
    - Makes the key optional on admission routes and exempts health endpoints
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            API_KEY_SCHEME,
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "API key mapped to an identity class. Omit to be rate limited as a guest.",
            },
        )

        schema.setdefault("security", [{API_KEY_SCHEME: []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Governance",
                "description": "Admission checks, usage recording and admin controls.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method, method_obj in methods.items():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                elif any(path.endswith(suffix) and method == m for suffix, m in _OPTIONAL_KEY_OPERATIONS):
                    method_obj["security"] = [{API_KEY_SCHEME: []}, {}]

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
