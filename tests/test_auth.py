"""Unit tests for API key authentication and caller resolution."""

from unittest.mock import patch

import pytest
from fastapi import Request

from ai_governance.adapters.rate_limit.base import IdentityClass
from ai_governance.core.auth import Caller, parse_api_keys, require_admin, resolve_caller, validate_api_key
from ai_governance.core.errors import AuthenticationAppError, ValidationAppError
from ai_governance.core.logging import hash_for_log


def _configure(mock_settings, api_keys: str | None, required: bool = True) -> None:
    mock_settings.app.api_key_required = required
    mock_settings.app.api_keys = api_keys
    mock_settings.rate_limit.default_identity_class = "free"


def _request(host: str | None = "10.0.0.7") -> Request:
    scope = {"type": "http", "method": "POST", "path": "/", "headers": [], "client": (host, 5000) if host else None}
    return Request(scope)


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_keys_with_classes(self) -> None:
        result = parse_api_keys("k1:premium,k2:admin,k3:guest")
        assert result == {"k1": IdentityClass.PREMIUM, "k2": IdentityClass.ADMIN, "k3": IdentityClass.GUEST}

    def test_key_without_class_gets_default(self) -> None:
        assert parse_api_keys("k1") == {"k1": IdentityClass.FREE}
        assert parse_api_keys("k1", default_class="premium") == {"k1": IdentityClass.PREMIUM}

    def test_parse_keys_with_whitespace_and_case(self) -> None:
        """Test that whitespace is trimmed and class names are case-insensitive."""
        result = parse_api_keys(" key1 : Premium ,  key2  ")
        assert result == {"key1": IdentityClass.PREMIUM, "key2": IdentityClass.FREE}

    @pytest.mark.parametrize("raw", [None, "", "   ,  ,  "])
    def test_parse_empty_input_returns_empty_mapping(self, raw: str | None) -> None:
        assert parse_api_keys(raw) == {}

    def test_unknown_class_is_rejected(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            parse_api_keys("k1:platinum")

        assert exc_info.value.code == "api_keys_invalid_class"
        assert "platinum" in exc_info.value.message


class TestValidateAPIKey:
    """Test core API key validation logic."""

    @patch("ai_governance.core.auth.settings")
    def test_known_key_maps_to_class_when_auth_disabled(self, mock_settings) -> None:
        _configure(mock_settings, "k1:premium", required=False)

        assert validate_api_key("k1") is IdentityClass.PREMIUM
        assert validate_api_key("any-random-key") is IdentityClass.FREE

    @pytest.mark.parametrize("api_keys", [None, ""])
    @patch("ai_governance.core.auth.settings")
    def test_validate_raises_when_no_keys_configured(self, mock_settings, api_keys: str | None) -> None:
        """Test error when authentication is required but no keys are configured."""
        _configure(mock_settings, api_keys)

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"
        assert "no valid keys are configured" in exc_info.value.message

    @patch("ai_governance.core.auth.settings")
    def test_validate_returns_class_of_valid_key(self, mock_settings) -> None:
        _configure(mock_settings, "valid-key-1:admin,valid-key-2")

        assert validate_api_key("valid-key-1") is IdentityClass.ADMIN
        assert validate_api_key("valid-key-2") is IdentityClass.FREE

    @pytest.mark.parametrize("provided", ["invalid-key", "", " valid-key "])
    @patch("ai_governance.core.auth.settings")
    def test_validate_rejects_unknown_keys(self, mock_settings, provided: str) -> None:
        _configure(mock_settings, "valid-key")

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key(provided)

        assert exc_info.value.code == "invalid_api_key"
        assert "Invalid or missing API key" in exc_info.value.message


class TestResolveCaller:
    """Test the caller-resolving FastAPI dependency."""

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_key_resolves_to_hashed_identity(self, mock_settings) -> None:
        _configure(mock_settings, "secret-key:premium")

        caller = await resolve_caller(_request(), x_api_key="secret-key")

        assert caller == Caller(
            identity=f"api_key:{hash_for_log('secret-key')}",
            identity_class=IdentityClass.PREMIUM,
            authenticated=True,
        )
        assert "secret-key" not in caller.identity

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_anonymous_caller_is_a_guest_keyed_by_ip(self, mock_settings) -> None:
        _configure(mock_settings, "secret-key")

        caller = await resolve_caller(_request("10.0.0.7"), x_api_key=None)

        assert caller.identity == "ip:10.0.0.7"
        assert caller.identity_class is IdentityClass.GUEST
        assert caller.authenticated is False

    @pytest.mark.asyncio
    async def test_missing_client_address(self) -> None:
        caller = await resolve_caller(_request(None), x_api_key=None)
        assert caller.identity == "ip:unknown"

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_invalid_key_raises(self, mock_settings) -> None:
        _configure(mock_settings, "secret-key")

        with pytest.raises(AuthenticationAppError) as exc_info:
            await resolve_caller(_request(), x_api_key="wrong-key")

        assert exc_info.value.code == "invalid_api_key"


class TestRequireAdmin:
    """Test the admin-only dependency."""

    ADMIN = Caller("api_key:a", IdentityClass.ADMIN, True)
    PREMIUM = Caller("api_key:p", IdentityClass.PREMIUM, True)
    GUEST = Caller("ip:1.2.3.4", IdentityClass.GUEST, False)

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_admin_passes(self, mock_settings) -> None:
        _configure(mock_settings, "k:admin")
        assert await require_admin(self.ADMIN) is self.ADMIN

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_anonymous_caller_is_rejected(self, mock_settings) -> None:
        _configure(mock_settings, "k:admin")

        with pytest.raises(AuthenticationAppError) as exc_info:
            await require_admin(self.GUEST)

        assert exc_info.value.code == "missing_api_key"

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_non_admin_key_is_rejected(self, mock_settings) -> None:
        _configure(mock_settings, "k:admin")

        with pytest.raises(AuthenticationAppError) as exc_info:
            await require_admin(self.PREMIUM)

        assert exc_info.value.code == "admin_required"

    @pytest.mark.asyncio
    @patch("ai_governance.core.auth.settings")
    async def test_check_is_skipped_when_auth_disabled(self, mock_settings) -> None:
        _configure(mock_settings, None, required=False)
        assert await require_admin(self.GUEST) is self.GUEST
