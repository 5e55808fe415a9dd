"""
Tests for API Dependencies.

Tests API key authentication, permission checks and service wiring.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from entitlements.api.dependencies import (
    ensure_permission,
    get_api_key,
    get_entitlement_engine,
    get_quota_enforcer,
    require_permission,
)
from entitlements.exceptions import AuthenticationError, AuthorizationError
from entitlements.services.api_key import PERMISSION_DOWNLOADS_WRITE, PERMISSION_ENTITLEMENTS_READ
from entitlements.services.entitlement import EntitlementEngine
from entitlements.services.quota import DownloadQuotaEnforcer


class TestGetApiKey:
    """Tests for get_api_key dependency."""

    async def test_valid_key(self, db_session, api_key_read):
        """Valid keys return their metadata."""
        with patch("entitlements.api.dependencies.APIKeyService") as service_cls:
            service_cls.return_value.validate_api_key = AsyncMock(return_value=api_key_read)

            result = await get_api_key(x_api_key="ent_live_valid", db=db_session)

        assert result == api_key_read

    async def test_invalid_key_is_401(self, db_session):
        """Authentication failures become 401 with a WWW-Authenticate header."""
        with patch("entitlements.api.dependencies.APIKeyService") as service_cls:
            service_cls.return_value.validate_api_key = AsyncMock(
                side_effect=AuthenticationError("Invalid API key")
            )

            with pytest.raises(HTTPException) as exc_info:
                await get_api_key(x_api_key="ent_live_bad", db=db_session)

        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "ApiKey"}


class TestPermissions:
    """Tests for permission enforcement."""

    def test_ensure_permission_passes(self, api_key_full):
        """Keys holding the permission pass silently."""
        ensure_permission(api_key_full, PERMISSION_DOWNLOADS_WRITE)

    def test_ensure_permission_raises(self, api_key_read):
        """Missing permissions raise AuthorizationError."""
        with pytest.raises(AuthorizationError) as exc_info:
            ensure_permission(api_key_read, PERMISSION_DOWNLOADS_WRITE)

        assert exc_info.value.required_permission == PERMISSION_DOWNLOADS_WRITE

    async def test_require_permission_allows(self, api_key_read):
        """The checker returns the key when permitted."""
        checker = require_permission(PERMISSION_ENTITLEMENTS_READ)

        assert await checker(api_key=api_key_read) == api_key_read

    async def test_require_permission_is_403(self, api_key_read):
        """The checker turns a missing permission into 403."""
        checker = require_permission(PERMISSION_DOWNLOADS_WRITE)

        with pytest.raises(HTTPException) as exc_info:
            await checker(api_key=api_key_read)

        assert exc_info.value.status_code == 403
        assert PERMISSION_DOWNLOADS_WRITE in exc_info.value.detail


class TestServiceWiring:
    """Service dependencies build real readers over the session."""

    async def test_entitlement_engine(self, db_session):
        """The engine's readers share the given session."""
        engine = await get_entitlement_engine(db=db_session)

        assert isinstance(engine, EntitlementEngine)
        assert engine.catalog.session is db_session

    async def test_quota_enforcer(self, db_session):
        """The enforcer wraps an engine on the write session."""
        enforcer = await get_quota_enforcer(db=db_session)

        assert isinstance(enforcer, DownloadQuotaEnforcer)
        assert enforcer.engine.ledger.session is db_session
