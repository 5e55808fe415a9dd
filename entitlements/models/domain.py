"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID


class AccessReason(str, Enum):
    """Why a decision came out the way it did."""

    # Grants
    ADMIN = "admin"
    INDIVIDUAL_PURCHASE = "individual_purchase"
    BUNDLE_PURCHASE = "bundle_purchase"
    TIER = "tier"
    UNLIMITED = "unlimited"
    WITHIN_QUOTA = "within_quota"

    # Denials
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not_found"
    SHOP_ONLY = "shop_only"
    INSUFFICIENT_TIER = "insufficient_tier"
    NO_ACCESS = "no_access"
    QUOTA_EXCEEDED = "quota_exceeded"


class ResourceKind(str, Enum):
    """Protected asset kinds."""

    ATTACHMENT = "attachment"
    COURSE = "course"
    LESSON = "lesson"
    STOREFRONT_FILE = "storefront_file"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class TierData:
    """Immutable subscription tier snapshot."""

    tier_id: int
    name: str
    permission_level: int
    download_limit: int | None

    def __post_init__(self) -> None:
        """Validate tier constraints."""
        if self.download_limit is not None and self.download_limit < 0:
            raise ValueError(f"Download limit cannot be negative: {self.download_limit}")

    @property
    def is_unlimited(self) -> bool:
        return self.download_limit is None


@dataclass(frozen=True)
class UserContext:
    """What the policy needs to know about a user."""

    user_id: UUID
    is_admin: bool
    permission_level: int
    download_limit: int | None

    def meets(self, required_level: int) -> bool:
        """Tier comparison: higher tiers are supersets of lower ones."""
        return self.permission_level >= required_level


@dataclass(frozen=True)
class AttachmentContext:
    """Resolved catalog linkage of an attachment."""

    attachment_id: UUID
    course_id: UUID | None
    minimum_level: int
    tier_name: str | None = None

    @property
    def is_general_file(self) -> bool:
        """Course-less library file."""
        return self.course_id is None


@dataclass(frozen=True)
class YearMonth:
    """A calendar month in UTC."""

    year: int
    month: int

    def __post_init__(self) -> None:
        """Validate month range."""
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")

    @classmethod
    def of(cls, moment: datetime) -> "YearMonth":
        """Month containing the given instant, evaluated in UTC."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        moment = moment.astimezone(UTC)
        return cls(year=moment.year, month=moment.month)

    @property
    def start(self) -> datetime:
        """First instant of the month (inclusive)."""
        return datetime(self.year, self.month, 1, tzinfo=UTC)

    @property
    def end(self) -> datetime:
        """First instant of the following month (exclusive)."""
        if self.month == 12:
            return datetime(self.year + 1, 1, 1, tzinfo=UTC)
        return datetime(self.year, self.month + 1, 1, tzinfo=UTC)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class AccessDecision:
    """Immutable admit/deny decision with the reason behind it."""

    allowed: bool
    reason: AccessReason

    @classmethod
    def allow(cls, reason: AccessReason) -> "AccessDecision":
        return cls(allowed=True, reason=reason)

    @classmethod
    def deny(cls, reason: AccessReason) -> "AccessDecision":
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class DownloadDecision:
    """Result of a download quota check."""

    allowed: bool
    reason: AccessReason
    message: str | None = None
    download_limit: int | None = None
    downloads_this_month: int | None = None

    @property
    def remaining(self) -> int | None:
        """Downloads left this month, None when unlimited or unknown."""
        if self.download_limit is None or self.downloads_this_month is None:
            return None
        return max(self.download_limit - self.downloads_this_month, 0)


@dataclass(frozen=True)
class DownloadEvent:
    """Immutable download ledger entry after persistence."""

    download_id: UUID
    user_id: UUID
    attachment_id: UUID
    downloaded_at: datetime


@dataclass(frozen=True)
class DownloadRecordResult:
    """Outcome of the transactional check-and-record step."""

    decision: DownloadDecision
    event: DownloadEvent | None
