"""
FastAPI Dependencies - Caller authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.session import get_read_db, get_write_db
from entitlements.exceptions import AuthenticationError, AuthorizationError
from entitlements.services.api_key import APIKeyData, APIKeyService
from entitlements.services.entitlement import EntitlementEngine
from entitlements.services.quota import DownloadQuotaEnforcer

logger = get_logger(__name__)

# ============================================================================
# API Key Authentication (service-to-service)
# ============================================================================


async def get_api_key(
    x_api_key: str = Header(..., description="Service API key"),
    db: AsyncSession = Depends(get_write_db),
) -> APIKeyData:
    """
    FastAPI dependency to validate API key from X-API-Key header.

    Usage:
        @router.post("/v1/entitlements/attachments/check")
        async def check_attachment(
            request: AttachmentCheckRequest,
            api_key: APIKeyData = Depends(get_api_key)
        ):
            pass

    Returns:
        APIKeyData if valid

    Raises:
        HTTPException 401 if invalid
    """
    api_key_service = APIKeyService(db)

    try:
        return await api_key_service.validate_api_key(x_api_key)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc


def ensure_permission(api_key: APIKeyData, required_permission: str) -> None:
    """
    Raises:
        AuthorizationError: If the key lacks the permission
    """
    if not api_key.has_permission(required_permission):
        logger.warning(
            "api_key_permission_denied",
            key_id=str(api_key.key_id),
            required_permission=required_permission,
        )
        raise AuthorizationError(required_permission)


def require_permission(required_permission: str) -> Callable[..., Awaitable[APIKeyData]]:
    """
    FastAPI dependency factory to check specific permission.

    Usage:
        @router.post("/v1/downloads/record")
        async def record_download(
            request: DownloadRequest,
            api_key: APIKeyData = Depends(require_permission("downloads:write"))
        ):
            pass

    Args:
        required_permission: Permission string (e.g., "entitlements:read")

    Returns:
        Dependency function that checks permission
    """

    async def permission_checker(
        api_key: APIKeyData = Depends(get_api_key),
    ) -> APIKeyData:
        """Check if API key has required permission."""
        try:
            ensure_permission(api_key, required_permission)
        except AuthorizationError as exc:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required permission: {exc.required_permission}",
            ) from exc
        return api_key

    return permission_checker


# ============================================================================
# Services
# ============================================================================


async def get_entitlement_engine(
    db: AsyncSession = Depends(get_read_db),
) -> EntitlementEngine:
    """Decision engine on the read replica (falls back to primary)."""
    return EntitlementEngine.from_session(db)


async def get_quota_enforcer(
    db: AsyncSession = Depends(get_write_db),
) -> DownloadQuotaEnforcer:
    """Quota enforcer on the primary; recording needs the write connection."""
    return DownloadQuotaEnforcer.from_session(db)
