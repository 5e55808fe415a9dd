"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

Catalog tables (tiers, courses, modules, lessons, attachments, products) are
owned by admin workflows; purchase and download tables are append-only ledgers.
The entitlement core only reads them, except user_downloads which it appends to.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


# ============================================================================
# Tier Hierarchy
# ============================================================================


class Tier(Base):
    """
    ORM model for tiers table.

    Subscription levels, totally ordered by permission_level.
    download_limit NULL means unlimited downloads.
    """

    __tablename__ = "tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_monthly: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    permission_level: Mapped[int] = mapped_column(Integer, nullable=False)
    download_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("permission_level >= 0", name="ck_tiers_permission_level_non_negative"),
        CheckConstraint(
            "download_limit IS NULL OR download_limit >= 0",
            name="ck_tiers_download_limit_non_negative",
        ),
        Index("idx_tiers_permission_level", "permission_level"),
    )

    def __repr__(self) -> str:
        return (
            f"<Tier(id={self.id}, name={self.name}, "
            f"permission_level={self.permission_level}, download_limit={self.download_limit})>"
        )


class Profile(Base):
    """ORM model for profiles table - one row per user."""

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_profiles_tier_id", "tier_id"),)

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, tier_id={self.tier_id}, is_admin={self.is_admin})>"


# ============================================================================
# Course Catalog
# ============================================================================


class Course(Base):
    """ORM model for courses table."""

    __tablename__ = "courses"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    minimum_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("idx_courses_minimum_tier_id", "minimum_tier_id"),)


class Module(Base):
    """ORM model for modules table."""

    __tablename__ = "modules"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    # No FK: a module may outlive its course during migrations; the resolver tolerates it
    course_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_modules_course_id", "course_id"),)


class Lesson(Base):
    """ORM model for lessons table."""

    __tablename__ = "lessons"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    module_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_lessons_module_id", "module_id"),)


class Attachment(Base):
    """
    ORM model for attachments table.

    lesson_id NULL means a general, course-less library file.
    """

    __tablename__ = "attachments"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    lesson_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    minimum_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_attachments_lesson_id", "lesson_id", postgresql_where=(lesson_id.isnot(None))),
        Index("idx_attachments_minimum_tier_id", "minimum_tier_id"),
    )


# ============================================================================
# Storefront
# ============================================================================


class FileProduct(Base):
    """
    ORM model for file_products table.

    Wraps exactly one attachment for individual sale. is_shop_only withholds
    the attachment from tier-based library access.
    """

    __tablename__ = "file_products"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    attachment_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("attachments.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_shop_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_file_products_price_non_negative"),
        UniqueConstraint("attachment_id", name="uq_file_products_attachment"),
    )


class Product(Base):
    """ORM model for products table - bundles of attachments."""

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("price >= 0", name="ck_products_price_non_negative"),)


class ProductAttachment(Base):
    """ORM model for product_attachments join table."""

    __tablename__ = "product_attachments"

    product_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    attachment_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("attachments.id", ondelete="CASCADE"), primary_key=True
    )
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_product_attachments_attachment_id", "attachment_id"),)


# ============================================================================
# Ledgers (append-only)
# ============================================================================


class FilePurchase(Base):
    """ORM model for file_purchases table - immutable ledger."""

    __tablename__ = "file_purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    file_product_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("file_products.id"), nullable=False
    )
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("stripe_payment_intent_id", name="uq_file_purchases_payment_intent"),
        Index("idx_file_purchases_user_product", "user_id", "file_product_id"),
    )


class ProductPurchase(Base):
    """ORM model for product_purchases table - immutable ledger."""

    __tablename__ = "product_purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("stripe_payment_intent_id", name="uq_product_purchases_payment_intent"),
        Index("idx_product_purchases_user_product", "user_id", "product_id"),
    )


class UserDownload(Base):
    """
    ORM model for user_downloads table - immutable ledger.

    One row per successful download; counted per UTC calendar month.
    """

    __tablename__ = "user_downloads"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    attachment_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("attachments.id", ondelete="CASCADE"), nullable=False
    )
    downloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_user_downloads_user_downloaded_at", "user_id", "downloaded_at"),)

    def __repr__(self) -> str:
        return (
            f"<UserDownload(id={self.id}, user_id={self.user_id}, "
            f"attachment_id={self.attachment_id}, downloaded_at={self.downloaded_at})>"
        )


# ============================================================================
# Service Authentication
# ============================================================================


class APIKey(Base):
    """
    ORM model for api_keys table.

    Stores hashed API keys for service-to-service authentication.
    """

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Key storage (hashed with Argon2id)
    key_hash: Mapped[str] = mapped_column(Text, nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    environment: Mapped[str] = mapped_column(String(10), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=["entitlements:read"]
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    __table_args__ = (
        CheckConstraint("environment IN ('test', 'live')", name="ck_api_keys_environment"),
        CheckConstraint("status IN ('active', 'revoked')", name="ck_api_keys_status"),
        Index("idx_api_keys_prefix_active", "key_prefix", postgresql_where=(status == "active")),
        Index("idx_api_keys_status", "status"),
    )
