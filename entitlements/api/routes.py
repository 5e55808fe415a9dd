"""
API Routes - FastAPI endpoints for entitlement and download decisions.

NO DICTIONARIES - All requests/responses use Pydantic models.

Every business decision is a 200 with allowed/reason/message. Only the
download record endpoint turns a denial into an error status, because it
refuses to write.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.api.dependencies import (
    get_entitlement_engine,
    get_quota_enforcer,
    require_permission,
)
from entitlements.db.session import get_read_db
from entitlements.exceptions import CollaboratorUnavailableError, ResourceNotFoundError
from entitlements.models.api import (
    AccessDecisionResponse,
    AttachmentCheckRequest,
    AttachmentTierResponse,
    CourseCheckRequest,
    DownloadCheckResponse,
    DownloadRecordResponse,
    DownloadRequest,
    ErrorResponse,
    HealthResponse,
    LessonCheckRequest,
    PermissionLevelResponse,
    PurchasedAttachmentsResponse,
    TierListResponse,
    TierResponse,
)
from entitlements.models.domain import AccessReason
from entitlements.services.api_key import (
    PERMISSION_DOWNLOADS_WRITE,
    PERMISSION_ENTITLEMENTS_READ,
    APIKeyData,
)
from entitlements.services.entitlement import EntitlementEngine
from entitlements.services.quota import DownloadQuotaEnforcer

logger = get_logger(__name__)
router = APIRouter()

STORE_UNAVAILABLE_DETAIL = "Entitlement store unavailable"

RECORD_REFUSAL_STATUS: dict[AccessReason, int] = {
    AccessReason.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    AccessReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}

UNAVAILABLE_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _store_unavailable(exc: CollaboratorUnavailableError) -> HTTPException:
    """Infrastructure failure. Never reported as a denial."""
    logger.error(
        "entitlement_request_failed",
        collaborator=exc.collaborator,
        error=exc.message,
    )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=STORE_UNAVAILABLE_DETAIL,
    )


# ============================================================================
# Entitlement Checks
# ============================================================================


@router.post(
    "/v1/entitlements/attachments/check",
    response_model=AccessDecisionResponse,
    responses=UNAVAILABLE_RESPONSES,
)
async def check_attachment_access(
    request: AttachmentCheckRequest,
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> AccessDecisionResponse:
    """
    Library access to an attachment (file list, preview, download gate).

    Auth: API key with entitlements:read permission
    """
    try:
        decision = await engine.decide_attachment(request.user_id, request.attachment_id)
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return AccessDecisionResponse.from_decision(decision)


@router.post(
    "/v1/entitlements/courses/check",
    response_model=AccessDecisionResponse,
    responses=UNAVAILABLE_RESPONSES,
)
async def check_course_access(
    request: CourseCheckRequest,
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> AccessDecisionResponse:
    """
    Access to a whole course by tier.

    Auth: API key with entitlements:read permission
    """
    try:
        decision = await engine.decide_course(request.user_id, request.course_id)
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return AccessDecisionResponse.from_decision(decision)


@router.post(
    "/v1/entitlements/lessons/check",
    response_model=AccessDecisionResponse,
    responses=UNAVAILABLE_RESPONSES,
)
async def check_lesson_access(
    request: LessonCheckRequest,
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> AccessDecisionResponse:
    """
    Access to lesson content (video) through its course's tier.

    Auth: API key with entitlements:read permission
    """
    try:
        decision = await engine.decide_lesson(request.user_id, request.lesson_id)
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return AccessDecisionResponse.from_decision(decision)


@router.post(
    "/v1/entitlements/storefront/check",
    response_model=AccessDecisionResponse,
    responses=UNAVAILABLE_RESPONSES,
)
async def check_storefront_access(
    request: AttachmentCheckRequest,
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> AccessDecisionResponse:
    """
    Access to a file bought through the store. Purchases only; tier is ignored.

    Auth: API key with entitlements:read permission
    """
    try:
        decision = await engine.decide_storefront_file(request.user_id, request.attachment_id)
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return AccessDecisionResponse.from_decision(decision)


# ============================================================================
# Downloads
# ============================================================================


@router.post(
    "/v1/downloads/check",
    response_model=DownloadCheckResponse,
    responses=UNAVAILABLE_RESPONSES,
)
async def check_download(
    request: DownloadRequest,
    enforcer: DownloadQuotaEnforcer = Depends(get_quota_enforcer),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> DownloadCheckResponse:
    """
    Advisory download check: attachment access plus monthly quota.

    Auth: API key with entitlements:read permission
    """
    try:
        decision = await enforcer.can_download(request.user_id, request.attachment_id)
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return DownloadCheckResponse.from_decision(decision)


@router.post(
    "/v1/downloads/record",
    response_model=DownloadRecordResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": DownloadCheckResponse},
        status.HTTP_403_FORBIDDEN: {"model": DownloadCheckResponse},
        status.HTTP_404_NOT_FOUND: {"model": DownloadCheckResponse},
        **UNAVAILABLE_RESPONSES,
    },
)
async def record_download(
    request: DownloadRequest,
    enforcer: DownloadQuotaEnforcer = Depends(get_quota_enforcer),
    _: APIKeyData = Depends(require_permission(PERMISSION_DOWNLOADS_WRITE)),
) -> DownloadRecordResponse:
    """
    Re-check quota and append one download event in a single transaction.

    Auth: API key with downloads:write permission
    """
    try:
        result = await enforcer.record_download(request.user_id, request.attachment_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.message,
        ) from exc
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    if result.event is None:
        decision = result.decision
        raise HTTPException(
            status_code=RECORD_REFUSAL_STATUS.get(decision.reason, status.HTTP_403_FORBIDDEN),
            detail=DownloadCheckResponse.from_decision(decision).model_dump(mode="json"),
        )

    return DownloadRecordResponse.from_event(result.event, result.decision)


# ============================================================================
# Lookups
# ============================================================================


@router.get("/v1/tiers", response_model=TierListResponse, responses=UNAVAILABLE_RESPONSES)
async def list_tiers(
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> TierListResponse:
    """
    Tier hierarchy ordered by permission level.

    Auth: API key with entitlements:read permission
    """
    try:
        tiers = await engine.list_tiers()
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return TierListResponse(tiers=[TierResponse.from_tier(tier) for tier in tiers])


@router.get(
    "/v1/users/{user_id}/permission-level",
    response_model=PermissionLevelResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}, **UNAVAILABLE_RESPONSES},
)
async def get_permission_level(
    user_id: UUID,
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> PermissionLevelResponse:
    """
    A user's tier level and admin flag.

    Auth: API key with entitlements:read permission
    """
    try:
        user = await engine.user_permission_level(user_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.message,
        ) from exc
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return PermissionLevelResponse.from_user(user)


@router.get(
    "/v1/users/{user_id}/purchased-attachments",
    response_model=PurchasedAttachmentsResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}, **UNAVAILABLE_RESPONSES},
)
async def get_purchased_attachments(
    user_id: UUID,
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> PurchasedAttachmentsResponse:
    """
    Attachments the user owns through individual or bundle purchases.

    Auth: API key with entitlements:read permission
    """
    try:
        attachment_ids = await engine.purchased_attachment_ids(user_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.message,
        ) from exc
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    return PurchasedAttachmentsResponse(
        user_id=user_id, attachment_ids=sorted(attachment_ids, key=str)
    )


@router.get(
    "/v1/attachments/{attachment_id}/tier",
    response_model=AttachmentTierResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        **UNAVAILABLE_RESPONSES,
    },
)
async def get_attachment_tier(
    attachment_id: UUID,
    user_id: UUID | None = Query(None, description="Authenticated user"),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
    _: APIKeyData = Depends(require_permission(PERMISSION_ENTITLEMENTS_READ)),
) -> AttachmentTierResponse:
    """
    Minimum tier of an attachment, only for users who can access it.

    Auth: API key with entitlements:read permission
    """
    try:
        decision, context = await engine.attachment_tier(user_id, attachment_id)
    except CollaboratorUnavailableError as exc:
        raise _store_unavailable(exc) from exc

    if decision.reason is AccessReason.UNAUTHENTICATED:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    if decision.reason is AccessReason.NOT_FOUND or (decision.allowed and context is None):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
    if not decision.allowed or context is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    return AttachmentTierResponse(
        attachment_id=context.attachment_id,
        tier_name=context.tier_name,
        minimum_level=context.minimum_level,
        course_id=context.course_id,
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
