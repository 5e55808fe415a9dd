"""
Catalog Reader - Tier hierarchy and attachment-to-course linkage.

The catalog is owned by admin workflows; everything here is a read.
"""

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.guards import store_call
from entitlements.db.models import Attachment, Course, FileProduct, Lesson, Module, Tier
from entitlements.exceptions import DataIntegrityError
from entitlements.models.domain import AttachmentContext, TierData

logger = get_logger(__name__)


class CatalogReader(Protocol):
    """Catalog facts consumed by the entitlement engine."""

    async def resolve_attachment_context(self, attachment_id: UUID) -> AttachmentContext | None:
        """
        Resolve an attachment's owning course and minimum tier level.

        Returns:
            AttachmentContext, or None when the attachment does not exist
        """
        ...

    async def resolve_course_minimum_level(self, course_id: UUID) -> int | None:
        """Permission level required by a course, or None when it does not exist."""
        ...

    async def resolve_lesson_course(self, lesson_id: UUID) -> UUID | None:
        """Course that owns a lesson, or None when any link is missing."""
        ...

    async def is_shop_only(self, attachment_id: UUID) -> bool:
        """Whether a shop-only FileProduct wraps the attachment."""
        ...

    async def file_product_for_attachment(self, attachment_id: UUID) -> FileProduct | None:
        """
        The FileProduct wrapping an attachment, if any.

        Raises:
            DataIntegrityError: If more than one FileProduct wraps it
        """
        ...

    async def list_tiers(self) -> list[TierData]:
        """Tier hierarchy ordered by permission level, lowest first."""
        ...


async def resolve_owning_course(session: AsyncSession, lesson_id: UUID | None) -> UUID | None:
    """
    Walk lesson -> module -> course.

    A missing lesson_id, or any missing row along the way, yields None: the
    attachment is then treated as a general, course-less file. This is the
    only place that fallback lives.
    """
    if lesson_id is None:
        return None

    lesson = await session.get(Lesson, lesson_id)
    if lesson is None:
        logger.warning("catalog_parent_link_broken", missing="lesson", lesson_id=str(lesson_id))
        return None

    module = await session.get(Module, lesson.module_id)
    if module is None:
        logger.warning(
            "catalog_parent_link_broken",
            missing="module",
            lesson_id=str(lesson_id),
            module_id=str(lesson.module_id),
        )
        return None

    course = await session.get(Course, module.course_id)
    if course is None:
        logger.warning(
            "catalog_parent_link_broken",
            missing="course",
            module_id=str(module.id),
            course_id=str(module.course_id),
        )
        return None

    return course.id


async def ensure_attachment_unwrapped(catalog: CatalogReader, attachment_id: UUID) -> None:
    """
    Uniqueness check admin tooling runs before creating a FileProduct.

    Raises:
        DataIntegrityError: If a FileProduct already wraps the attachment
    """
    existing = await catalog.file_product_for_attachment(attachment_id)
    if existing is not None:
        raise DataIntegrityError(
            f"Attachment {attachment_id} is already sold as file product {existing.id}"
        )


class SqlCatalogReader:
    """CatalogReader backed by the catalog tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @store_call("catalog")
    async def resolve_attachment_context(self, attachment_id: UUID) -> AttachmentContext | None:
        attachment = await self.session.get(Attachment, attachment_id)
        if attachment is None:
            return None

        tier = await self.session.get(Tier, attachment.minimum_tier_id)
        if tier is None:
            # Without a tier the requirement is unknown; treat as missing
            logger.error(
                "attachment_tier_missing",
                attachment_id=str(attachment_id),
                minimum_tier_id=attachment.minimum_tier_id,
            )
            return None

        course_id = await resolve_owning_course(self.session, attachment.lesson_id)

        return AttachmentContext(
            attachment_id=attachment.id,
            course_id=course_id,
            minimum_level=tier.permission_level,
            tier_name=tier.name,
        )

    @store_call("catalog")
    async def resolve_course_minimum_level(self, course_id: UUID) -> int | None:
        stmt = (
            select(Tier.permission_level)
            .join(Course, Course.minimum_tier_id == Tier.id)
            .where(Course.id == course_id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @store_call("catalog")
    async def resolve_lesson_course(self, lesson_id: UUID) -> UUID | None:
        return await resolve_owning_course(self.session, lesson_id)

    @store_call("catalog")
    async def is_shop_only(self, attachment_id: UUID) -> bool:
        stmt = select(FileProduct.is_shop_only).where(FileProduct.attachment_id == attachment_id)
        result = await self.session.execute(stmt)
        return bool(result.scalar_one_or_none())

    @store_call("catalog")
    async def file_product_for_attachment(self, attachment_id: UUID) -> FileProduct | None:
        """The FileProduct wrapping an attachment, if any."""
        stmt = select(FileProduct).where(FileProduct.attachment_id == attachment_id)
        result = await self.session.execute(stmt)
        products = list(result.scalars().all())

        if len(products) > 1:
            raise DataIntegrityError(
                f"{len(products)} file products wrap attachment {attachment_id}"
            )
        return products[0] if products else None

    @store_call("catalog")
    async def list_tiers(self) -> list[TierData]:
        stmt = select(Tier).order_by(Tier.permission_level, Tier.id)
        result = await self.session.execute(stmt)
        return [
            TierData(
                tier_id=tier.id,
                name=tier.name,
                permission_level=tier.permission_level,
                download_limit=tier.download_limit,
            )
            for tier in result.scalars().all()
        ]
