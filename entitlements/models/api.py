"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from entitlements.models.domain import (
    AccessDecision,
    AccessReason,
    DownloadDecision,
    DownloadEvent,
    TierData,
    UserContext,
)

# Human-readable text for each decision reason
REASON_MESSAGES: dict[AccessReason, str] = {
    AccessReason.ADMIN: "Administrator access",
    AccessReason.INDIVIDUAL_PURCHASE: "Purchased individually",
    AccessReason.BUNDLE_PURCHASE: "Included in a purchased bundle",
    AccessReason.TIER: "Included in your plan",
    AccessReason.UNLIMITED: "Unlimited downloads on your plan",
    AccessReason.WITHIN_QUOTA: "Within your monthly download limit",
    AccessReason.UNAUTHENTICATED: "not authenticated",
    AccessReason.NOT_FOUND: "Resource not found",
    AccessReason.SHOP_ONLY: "Available only through the store",
    AccessReason.INSUFFICIENT_TIER: "Upgrade your plan to access this content",
    AccessReason.NO_ACCESS: "no access",
    AccessReason.QUOTA_EXCEEDED: "Monthly download limit reached",
}


# ============================================================================
# Entitlement Check Models
# ============================================================================


class AttachmentCheckRequest(BaseModel):
    """POST /v1/entitlements/attachments/check and /storefront/check request body."""

    user_id: UUID | None = Field(None, description="Authenticated user, omit for anonymous")
    attachment_id: UUID


class CourseCheckRequest(BaseModel):
    """POST /v1/entitlements/courses/check request body."""

    user_id: UUID | None = Field(None, description="Authenticated user, omit for anonymous")
    course_id: UUID


class LessonCheckRequest(BaseModel):
    """POST /v1/entitlements/lessons/check request body."""

    user_id: UUID | None = Field(None, description="Authenticated user, omit for anonymous")
    lesson_id: UUID


class AccessDecisionResponse(BaseModel):
    """Entitlement check response. Denials are 200s with allowed=false."""

    allowed: bool
    reason: AccessReason
    message: str

    @classmethod
    def from_decision(cls, decision: AccessDecision) -> "AccessDecisionResponse":
        return cls(
            allowed=decision.allowed,
            reason=decision.reason,
            message=REASON_MESSAGES[decision.reason],
        )


# ============================================================================
# Download Models
# ============================================================================


class DownloadRequest(BaseModel):
    """POST /v1/downloads/check and /v1/downloads/record request body."""

    user_id: UUID | None = Field(None, description="Authenticated user, omit for anonymous")
    attachment_id: UUID


class DownloadCheckResponse(BaseModel):
    """POST /v1/downloads/check response."""

    allowed: bool
    reason: AccessReason
    message: str
    download_limit: int | None = None
    downloads_this_month: int | None = None
    downloads_remaining: int | None = None

    @classmethod
    def from_decision(cls, decision: DownloadDecision) -> "DownloadCheckResponse":
        return cls(
            allowed=decision.allowed,
            reason=decision.reason,
            message=decision.message or REASON_MESSAGES[decision.reason],
            download_limit=decision.download_limit,
            downloads_this_month=decision.downloads_this_month,
            downloads_remaining=decision.remaining,
        )


class DownloadRecordResponse(BaseModel):
    """POST /v1/downloads/record response (201)."""

    download_id: UUID
    user_id: UUID
    attachment_id: UUID
    downloaded_at: datetime
    download_limit: int | None = None
    downloads_this_month: int | None = Field(
        None, description="Downloads counted before this one"
    )

    @classmethod
    def from_event(
        cls, event: DownloadEvent, decision: DownloadDecision
    ) -> "DownloadRecordResponse":
        return cls(
            download_id=event.download_id,
            user_id=event.user_id,
            attachment_id=event.attachment_id,
            downloaded_at=event.downloaded_at,
            download_limit=decision.download_limit,
            downloads_this_month=decision.downloads_this_month,
        )


# ============================================================================
# Lookup Models
# ============================================================================


class TierResponse(BaseModel):
    """One tier of the hierarchy."""

    tier_id: int
    name: str
    permission_level: int
    download_limit: int | None = Field(None, description="None means unlimited")

    @classmethod
    def from_tier(cls, tier: TierData) -> "TierResponse":
        return cls(
            tier_id=tier.tier_id,
            name=tier.name,
            permission_level=tier.permission_level,
            download_limit=tier.download_limit,
        )


class TierListResponse(BaseModel):
    """GET /v1/tiers response, ordered by permission level."""

    tiers: list[TierResponse]


class PermissionLevelResponse(BaseModel):
    """GET /v1/users/{user_id}/permission-level response."""

    user_id: UUID
    permission_level: int
    is_admin: bool
    download_limit: int | None = None

    @classmethod
    def from_user(cls, user: UserContext) -> "PermissionLevelResponse":
        return cls(
            user_id=user.user_id,
            permission_level=user.permission_level,
            is_admin=user.is_admin,
            download_limit=user.download_limit,
        )


class PurchasedAttachmentsResponse(BaseModel):
    """GET /v1/users/{user_id}/purchased-attachments response."""

    user_id: UUID
    attachment_ids: list[UUID]


class AttachmentTierResponse(BaseModel):
    """GET /v1/attachments/{attachment_id}/tier response."""

    attachment_id: UUID
    tier_name: str | None
    minimum_level: int
    course_id: UUID | None = None


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str


# ============================================================================
# Error Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
