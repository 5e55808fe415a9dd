"""Initial schema: tiers, profiles, course catalog, storefront, ledgers, API keys.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    """Create all tables."""
    # Tier hierarchy - download_limit NULL means unlimited
    op.create_table(
        "tiers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("price_monthly", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("permission_level", sa.Integer, nullable=False),
        sa.Column("download_limit", sa.Integer, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("permission_level >= 0", name="ck_tiers_permission_level_non_negative"),
        sa.CheckConstraint(
            "download_limit IS NULL OR download_limit >= 0",
            name="ck_tiers_download_limit_non_negative",
        ),
    )
    op.create_index("idx_tiers_permission_level", "tiers", ["permission_level"])

    op.create_table(
        "profiles",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("tier_id", sa.Integer, sa.ForeignKey("tiers.id"), nullable=False),
        sa.Column("is_admin", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("idx_profiles_tier_id", "profiles", ["tier_id"])

    # Course catalog - module and lesson parents are plain columns, links may dangle
    op.create_table(
        "courses",
        _uuid_pk(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("minimum_tier_id", sa.Integer, sa.ForeignKey("tiers.id"), nullable=False),
        sa.Column("is_published", sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("idx_courses_minimum_tier_id", "courses", ["minimum_tier_id"])

    op.create_table(
        "modules",
        _uuid_pk(),
        sa.Column("course_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_modules_course_id", "modules", ["course_id"])

    op.create_table(
        "lessons",
        _uuid_pk(),
        sa.Column("module_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("duration", sa.Integer, nullable=False, server_default="0"),
        sa.Column("video_url", sa.Text, nullable=True),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_lessons_module_id", "lessons", ["module_id"])

    op.create_table(
        "attachments",
        _uuid_pk(),
        sa.Column("lesson_id", UUID(as_uuid=True), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_type", sa.String(100), nullable=False),
        sa.Column("file_url", sa.Text, nullable=True),
        sa.Column("minimum_tier_id", sa.Integer, sa.ForeignKey("tiers.id"), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "idx_attachments_lesson_id",
        "attachments",
        ["lesson_id"],
        postgresql_where=sa.text("lesson_id IS NOT NULL"),
    )
    op.create_index("idx_attachments_minimum_tier_id", "attachments", ["minimum_tier_id"])

    # Storefront
    op.create_table(
        "file_products",
        _uuid_pk(),
        sa.Column(
            "attachment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("attachments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_shop_only", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_file_products_price_non_negative"),
        sa.UniqueConstraint("attachment_id", name="uq_file_products_attachment"),
    )

    op.create_table(
        "products",
        _uuid_pk(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    )

    op.create_table(
        "product_attachments",
        sa.Column(
            "product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "attachment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("attachments.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("video_url", sa.Text, nullable=True),
    )
    op.create_index(
        "idx_product_attachments_attachment_id", "product_attachments", ["attachment_id"]
    )

    # Purchase ledgers - written by the payment flow
    op.create_table(
        "file_purchases",
        _uuid_pk(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "file_product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("file_products.id"),
            nullable=False,
        ),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=False),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "purchased_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("stripe_payment_intent_id", name="uq_file_purchases_payment_intent"),
    )
    op.create_index(
        "idx_file_purchases_user_product", "file_purchases", ["user_id", "file_product_id"]
    )

    op.create_table(
        "product_purchases",
        _uuid_pk(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False
        ),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=False),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "purchased_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "stripe_payment_intent_id", name="uq_product_purchases_payment_intent"
        ),
    )
    op.create_index(
        "idx_product_purchases_user_product", "product_purchases", ["user_id", "product_id"]
    )

    # Download ledger - one row per download, never updated
    op.create_table(
        "user_downloads",
        _uuid_pk(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "attachment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("attachments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "downloaded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_user_downloads_user_downloaded_at", "user_downloads", ["user_id", "downloaded_at"]
    )

    # Service API keys
    op.create_table(
        "api_keys",
        _uuid_pk(),
        sa.Column("key_hash", sa.Text, nullable=False),
        sa.Column("key_prefix", sa.String(20), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("environment", sa.String(10), nullable=False),
        sa.Column(
            "permissions",
            ARRAY(sa.String),
            nullable=False,
            server_default=sa.text("ARRAY['entitlements:read']::varchar[]"),
        ),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.CheckConstraint("environment IN ('test', 'live')", name="ck_api_keys_environment"),
        sa.CheckConstraint("status IN ('active', 'revoked')", name="ck_api_keys_status"),
    )
    op.create_index(
        "idx_api_keys_prefix_active",
        "api_keys",
        ["key_prefix"],
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index("idx_api_keys_status", "api_keys", ["status"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("api_keys")
    op.drop_table("user_downloads")
    op.drop_table("product_purchases")
    op.drop_table("file_purchases")
    op.drop_table("product_attachments")
    op.drop_table("products")
    op.drop_table("file_products")
    op.drop_table("attachments")
    op.drop_table("lessons")
    op.drop_table("modules")
    op.drop_table("courses")
    op.drop_table("profiles")
    op.drop_table("tiers")
