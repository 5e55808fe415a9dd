"""
Tests for API Key Service.

Tests key generation, validation, and management.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from argon2 import PasswordHasher

from entitlements.db.models import APIKey
from entitlements.exceptions import AuthenticationError, ResourceNotFoundError
from entitlements.services.api_key import (
    KEY_PREFIX_LENGTH,
    PERMISSION_DOWNLOADS_WRITE,
    PERMISSION_ENTITLEMENTS_READ,
    APIKeyService,
)

from conftest import make_api_key_data, make_result


def stored_key(plaintext: str, **overrides) -> MagicMock:
    """An APIKey row whose hash matches the plaintext."""
    api_key = MagicMock(spec=APIKey)
    api_key.id = uuid4()
    api_key.name = "Storefront backend"
    api_key.key_prefix = plaintext[:KEY_PREFIX_LENGTH]
    api_key.key_hash = PasswordHasher().hash(plaintext)
    api_key.environment = "live"
    api_key.permissions = [PERMISSION_ENTITLEMENTS_READ]
    api_key.status = "active"
    api_key.created_at = datetime.now(UTC)
    api_key.expires_at = None
    api_key.last_used_at = None
    for name, value in overrides.items():
        setattr(api_key, name, value)
    return api_key


class TestAPIKeyData:
    """Tests for APIKeyData data class."""

    def test_has_permission(self):
        """Permission checks are exact string membership."""
        data = make_api_key_data([PERMISSION_ENTITLEMENTS_READ])

        assert data.has_permission(PERMISSION_ENTITLEMENTS_READ) is True
        assert data.has_permission(PERMISSION_DOWNLOADS_WRITE) is False


class TestAPIKeyServiceGeneration:
    """Tests for API key generation."""

    @pytest.mark.parametrize("environment", ["live", "test"])
    def test_generate_api_key_format(self, db_session, environment):
        """Generated key carries the scheme and environment."""
        service = APIKeyService(db_session)

        plaintext, _, prefix = service.generate_api_key(environment)

        assert plaintext.startswith(f"ent_{environment}_")
        assert prefix == plaintext[:KEY_PREFIX_LENGTH]
        assert len(plaintext) > KEY_PREFIX_LENGTH

    def test_generate_api_key_unique(self, db_session):
        """Each generated key is unique."""
        service = APIKeyService(db_session)

        keys = {service.generate_api_key("live")[0] for _ in range(10)}

        assert len(keys) == 10

    def test_generate_api_key_hash_verifiable(self, db_session):
        """Generated hash verifies against the plaintext."""
        service = APIKeyService(db_session)

        plaintext, key_hash, _ = service.generate_api_key("live")

        assert PasswordHasher().verify(key_hash, plaintext)


class TestAPIKeyServiceCreation:
    """Tests for API key creation."""

    async def test_create_defaults_to_read_only(self, db_session):
        """Keys without explicit permissions may only run checks."""
        service = APIKeyService(db_session)

        generated = await service.create_api_key(name="Storefront", created_by="ops")

        stored = db_session.add.call_args.args[0]
        assert isinstance(stored, APIKey)
        assert stored.permissions == [PERMISSION_ENTITLEMENTS_READ]
        assert stored.key_prefix == generated.key_prefix
        assert stored.key_hash != generated.plaintext_key
        assert generated.expires_at is None
        db_session.commit.assert_awaited_once()

    async def test_create_with_expiry(self, db_session):
        """expires_in_days sets an absolute expiry."""
        service = APIKeyService(db_session)

        generated = await service.create_api_key(
            name="Temp", created_by="ops", expires_in_days=7
        )

        assert generated.expires_at is not None
        assert generated.expires_at > datetime.now(UTC) + timedelta(days=6)

    async def test_create_rejects_unknown_environment(self, db_session):
        """Only test and live environments exist."""
        service = APIKeyService(db_session)

        with pytest.raises(ValueError, match="Environment"):
            await service.create_api_key(name="Bad", created_by="ops", environment="staging")

    async def test_create_rejects_unknown_permission(self, db_session):
        """Permissions outside the known set are refused."""
        service = APIKeyService(db_session)

        with pytest.raises(ValueError, match="courses:write"):
            await service.create_api_key(
                name="Bad", created_by="ops", permissions=["courses:write"]
            )

        db_session.add.assert_not_called()


class TestAPIKeyServiceValidation:
    """Tests for API key validation."""

    async def test_invalid_format(self, db_session):
        """Keys without the ent_ scheme are rejected before any lookup."""
        service = APIKeyService(db_session)

        with pytest.raises(AuthenticationError, match="Invalid API key format"):
            await service.validate_api_key("key_live_something")

        db_session.execute.assert_not_awaited()

    async def test_key_not_found(self, db_session):
        """Unknown prefixes are rejected."""
        service = APIKeyService(db_session)

        with pytest.raises(AuthenticationError, match="Invalid API key"):
            await service.validate_api_key("ent_live_nonexistent12345")

    async def test_hash_mismatch(self, db_session):
        """A matching prefix with the wrong secret is rejected."""
        service = APIKeyService(db_session)
        real_key, _, _ = service.generate_api_key("live")
        db_session.execute = AsyncMock(return_value=make_result(scalar=stored_key(real_key)))

        with pytest.raises(AuthenticationError, match="Invalid API key"):
            await service.validate_api_key(real_key[:KEY_PREFIX_LENGTH] + "wrong-secret")

    async def test_valid_key_updates_last_used(self, db_session):
        """A valid key returns its metadata and stamps last_used_at."""
        service = APIKeyService(db_session)
        plaintext, _, _ = service.generate_api_key("live")
        api_key = stored_key(plaintext)
        db_session.execute = AsyncMock(return_value=make_result(scalar=api_key))

        data = await service.validate_api_key(plaintext)

        assert data.key_id == api_key.id
        assert data.permissions == [PERMISSION_ENTITLEMENTS_READ]
        assert api_key.last_used_at is not None
        db_session.commit.assert_awaited_once()

    async def test_skip_last_used_update(self, db_session):
        """update_last_used=False leaves the row untouched."""
        service = APIKeyService(db_session)
        plaintext, _, _ = service.generate_api_key("live")
        db_session.execute = AsyncMock(return_value=make_result(scalar=stored_key(plaintext)))

        await service.validate_api_key(plaintext, update_last_used=False)

        db_session.commit.assert_not_awaited()

    async def test_expired_key_is_revoked(self, db_session):
        """Expired keys are rejected and flipped to revoked."""
        service = APIKeyService(db_session)
        plaintext, _, _ = service.generate_api_key("live")
        api_key = stored_key(plaintext, expires_at=datetime.now(UTC) - timedelta(days=1))
        db_session.execute = AsyncMock(return_value=make_result(scalar=api_key))

        with pytest.raises(AuthenticationError, match="expired"):
            await service.validate_api_key(plaintext)

        assert api_key.status == "revoked"


class TestAPIKeyServiceManagement:
    """Tests for revocation and listing."""

    async def test_revoke(self, db_session):
        """Revoking flips the status and commits."""
        service = APIKeyService(db_session)
        api_key = stored_key("ent_live_revokeme1234567890")
        db_session.get = AsyncMock(return_value=api_key)

        await service.revoke_api_key(api_key.id)

        assert api_key.status == "revoked"
        db_session.commit.assert_awaited_once()

    async def test_revoke_unknown_key(self, db_session):
        """Revoking a missing key raises ResourceNotFoundError."""
        service = APIKeyService(db_session)

        with pytest.raises(ResourceNotFoundError):
            await service.revoke_api_key(uuid4())

    async def test_list_active_keys(self, db_session):
        """Active keys come back as APIKeyData."""
        service = APIKeyService(db_session)
        rows = [stored_key("ent_live_first12345678901"), stored_key("ent_test_second1234567890")]
        db_session.execute = AsyncMock(return_value=make_result(scalars=rows))

        keys = await service.list_api_keys()

        assert [key.key_id for key in keys] == [row.id for row in rows]
