"""API key authentication and caller identification.

API keys map onto identity classes, which select the caller's rate limit
rule-set. Keys are configured as comma-separated ``key:class`` pairs; a key
without a class gets the default identity class.

Callers without a key are identified by client IP and treated as guests.
Admin routes additionally require a key mapped to the ``admin`` class.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request

from ai_governance.adapters.rate_limit.base import IdentityClass
from ai_governance.core.config import settings
from ai_governance.core.errors import AuthenticationAppError, ValidationAppError
from ai_governance.core.logging import hash_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Caller:
    """Resolved identity of an HTTP caller.

    Attributes:
        identity: Rate limiter key (``api_key:<hash>`` or ``ip:<host>``).
        identity_class: Class selecting the rule-set.
        authenticated: Whether a configured API key was presented.
    """

    identity: str
    identity_class: IdentityClass
    authenticated: bool


def parse_api_keys(
    keys_string: str | None,
    default_class: IdentityClass | str = IdentityClass.FREE,
) -> dict[str, IdentityClass]:
    """Parse comma-separated ``key:class`` pairs into a mapping.

    Args:
        keys_string: Configured keys, e.g. ``"k1:premium, k2:admin, k3"``.
        default_class: Class for keys listed without one.

    Returns:
        Mapping of trimmed, non-empty keys to identity classes.

    Raises:
        ValidationAppError: If a pair names an unknown identity class.

    Examples:
        >>> parse_api_keys("k1:premium, k2")
        {'k1': <IdentityClass.PREMIUM: 'premium'>, 'k2': <IdentityClass.FREE: 'free'>}
        >>> parse_api_keys(None)
        {}
    """
    if not keys_string:
        return {}

    default = IdentityClass(default_class)
    mapping: dict[str, IdentityClass] = {}
    for pair in keys_string.split(","):
        key, _, class_name = pair.strip().partition(":")
        key = key.strip()
        if not key:
            continue
        class_name = class_name.strip().lower()
        try:
            mapping[key] = IdentityClass(class_name) if class_name else default
        except ValueError as exc:
            raise ValidationAppError(
                code="api_keys_invalid_class",
                message=f"Unknown identity class '{class_name}' in APP_API_KEYS",
                details={"hint": f"Use one of: {', '.join(c.value for c in IdentityClass)}"},
            ) from exc
    return mapping


def validate_api_key(provided_key: str) -> IdentityClass:
    """Validate a key and return the identity class it maps to.

    When authentication is disabled, unknown keys get the default class.

    Raises:
        AuthenticationAppError: If the key is invalid or no keys are configured.
    """
    default_class = settings.rate_limit.default_identity_class
    valid_keys = parse_api_keys(settings.app.api_keys, default_class)

    if not settings.app.api_key_required:
        return valid_keys.get(provided_key, IdentityClass(default_class))

    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={
                "reason": "api_keys_not_configured",
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if provided_key not in valid_keys:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hash_for_log(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )

    return valid_keys[provided_key]


async def resolve_caller(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> Caller:
    """FastAPI dependency resolving the caller's identity and class.

    Raises:
        AuthenticationAppError: If a presented key is invalid (403).
    """
    if x_api_key:
        identity_class = validate_api_key(x_api_key)
        api_key_hash = hash_for_log(x_api_key)
        logger.debug(
            "auth.success",
            extra={"api_key_hash": api_key_hash, "identity_class": identity_class.value},
        )
        return Caller(
            identity=f"api_key:{api_key_hash}",
            identity_class=identity_class,
            authenticated=True,
        )

    client_host = request.client.host if request.client else "unknown"
    return Caller(identity=f"ip:{client_host}", identity_class=IdentityClass.GUEST, authenticated=False)


async def require_admin(caller: Annotated[Caller, Depends(resolve_caller)]) -> Caller:
    """FastAPI dependency restricting a route to admin keys.

    Disabled together with API key authentication.

    Raises:
        AuthenticationAppError: If the caller is not an authenticated admin (403).
    """
    if not settings.app.api_key_required:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return caller

    if not caller.authenticated:
        logger.warning("auth.missing_key", extra={"auth_required": True})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if caller.identity_class is not IdentityClass.ADMIN:
        logger.warning(
            "auth.admin_required",
            extra={"identity_class": caller.identity_class.value},
        )
        raise AuthenticationAppError(
            code="admin_required",
            message="This operation requires an admin API key",
        )
    return caller
