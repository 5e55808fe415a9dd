"""
API Key Service - Generation and validation of service API keys.

NO DICTIONARIES - All data uses typed dataclasses.
"""

import base64
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.models import APIKey
from entitlements.exceptions import AuthenticationError, ResourceNotFoundError

logger = get_logger(__name__)

KEY_SCHEME = "ent_"
KEY_PREFIX_LENGTH = 20

PERMISSION_ENTITLEMENTS_READ = "entitlements:read"
PERMISSION_DOWNLOADS_WRITE = "downloads:write"
KNOWN_PERMISSIONS = frozenset({PERMISSION_ENTITLEMENTS_READ, PERMISSION_DOWNLOADS_WRITE})


@dataclass(frozen=True)
class APIKeyData:
    """Validated API key metadata."""

    key_id: UUID
    name: str
    key_prefix: str
    environment: str
    permissions: list[str]
    status: str
    created_at: datetime
    expires_at: datetime | None
    last_used_at: datetime | None

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass(frozen=True)
class GeneratedAPIKey:
    """Newly generated API key (includes plaintext, shown once)."""

    key_id: UUID
    plaintext_key: str
    key_prefix: str
    name: str
    environment: str
    permissions: list[str]
    created_at: datetime
    expires_at: datetime | None


def _to_key_data(api_key: APIKey) -> APIKeyData:
    return APIKeyData(
        key_id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        environment=api_key.environment,
        permissions=list(api_key.permissions),
        status=api_key.status,
        created_at=api_key.created_at,
        expires_at=api_key.expires_at,
        last_used_at=api_key.last_used_at,
    )


class APIKeyService:
    """Service for API key management."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.password_hasher = PasswordHasher()

    def generate_api_key(self, environment: str = "live") -> tuple[str, str, str]:
        """
        Generate a new API key.

        Returns:
            tuple: (plaintext_key, key_hash, key_prefix)
        """
        random_bytes = secrets.token_bytes(32)
        key_suffix = base64.urlsafe_b64encode(random_bytes).decode("utf-8").rstrip("=")

        # Format: ent_{env}_{suffix}
        plaintext_key = f"{KEY_SCHEME}{environment}_{key_suffix}"

        # Prefix is the lookup index; the hash is what proves possession
        key_prefix = plaintext_key[:KEY_PREFIX_LENGTH]
        key_hash = self.password_hasher.hash(plaintext_key)

        return plaintext_key, key_hash, key_prefix

    async def create_api_key(
        self,
        name: str,
        created_by: str,
        environment: str = "live",
        description: str | None = None,
        permissions: list[str] | None = None,
        expires_in_days: int | None = None,
    ) -> GeneratedAPIKey:
        """
        Create a new API key and store in database.

        Args:
            name: Human-readable name (e.g., "Storefront backend")
            created_by: Operator who created the key
            environment: "test" or "live"
            description: Optional description
            permissions: Permission strings, defaults to read-only
            expires_in_days: Optional expiration (None = never expires)

        Returns:
            GeneratedAPIKey with plaintext key (shown once!)
        """
        if environment not in ("test", "live"):
            raise ValueError(f"Environment must be 'test' or 'live', got: {environment}")

        if permissions is None:
            permissions = [PERMISSION_ENTITLEMENTS_READ]

        unknown = set(permissions) - KNOWN_PERMISSIONS
        if unknown:
            raise ValueError(f"Unknown permissions: {', '.join(sorted(unknown))}")

        plaintext_key, key_hash, key_prefix = self.generate_api_key(environment)

        expires_at = None
        if expires_in_days is not None:
            expires_at = datetime.now(UTC) + timedelta(days=expires_in_days)

        api_key = APIKey(
            key_hash=key_hash,
            key_prefix=key_prefix,
            name=name,
            description=description,
            environment=environment,
            permissions=permissions,
            created_by=created_by,
            expires_at=expires_at,
            status="active",
        )

        self.db.add(api_key)
        await self.db.commit()
        await self.db.refresh(api_key)

        logger.info(
            "api_key_created",
            key_id=str(api_key.id),
            name=name,
            environment=environment,
            created_by=created_by,
        )

        return GeneratedAPIKey(
            key_id=api_key.id,
            plaintext_key=plaintext_key,
            key_prefix=key_prefix,
            name=name,
            environment=environment,
            permissions=permissions,
            created_at=api_key.created_at,
            expires_at=expires_at,
        )

    async def validate_api_key(
        self, provided_key: str, update_last_used: bool = True
    ) -> APIKeyData:
        """
        Validate an API key and return key metadata if valid.

        Args:
            provided_key: The API key from X-API-Key header
            update_last_used: Whether to update last_used_at (default True)

        Returns:
            APIKeyData if valid

        Raises:
            AuthenticationError if invalid or expired
        """
        if not provided_key.startswith(KEY_SCHEME):
            logger.warning("api_key_invalid_format", prefix=provided_key[:10])
            raise AuthenticationError("Invalid API key format")

        key_prefix = provided_key[:KEY_PREFIX_LENGTH]

        stmt = select(APIKey).where(APIKey.key_prefix == key_prefix, APIKey.status == "active")
        result = await self.db.execute(stmt)
        api_key = result.scalar_one_or_none()

        if not api_key:
            logger.warning("api_key_not_found", prefix=key_prefix)
            raise AuthenticationError("Invalid API key")

        try:
            self.password_hasher.verify(api_key.key_hash, provided_key)
        except (VerifyMismatchError, InvalidHashError):
            logger.warning("api_key_hash_mismatch", key_id=str(api_key.id))
            raise AuthenticationError("Invalid API key") from None

        if api_key.expires_at and datetime.now(UTC) > api_key.expires_at:
            # Auto-revoke expired key
            api_key.status = "revoked"
            await self.db.commit()
            logger.warning(
                "api_key_expired", key_id=str(api_key.id), expired_at=api_key.expires_at
            )
            raise AuthenticationError("API key expired")

        if update_last_used:
            api_key.last_used_at = datetime.now(UTC)
            await self.db.commit()

        logger.info("api_key_validated", key_id=str(api_key.id), name=api_key.name)

        return _to_key_data(api_key)

    async def revoke_api_key(self, key_id: UUID) -> None:
        """Revoke an API key."""
        api_key = await self.db.get(APIKey, key_id)

        if not api_key:
            raise ResourceNotFoundError(f"API key not found: {key_id}")

        api_key.status = "revoked"
        await self.db.commit()

        logger.info("api_key_revoked", key_id=str(key_id), name=api_key.name)

    async def list_api_keys(self) -> list[APIKeyData]:
        """List active API keys."""
        stmt = select(APIKey).where(APIKey.status == "active").order_by(APIKey.created_at)
        result = await self.db.execute(stmt)
        return [_to_key_data(key) for key in result.scalars().all()]
