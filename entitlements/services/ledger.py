"""
Ledger Reader - Purchases and the download ledger.

Purchases are written by the payment flow; this module only reads them.
Downloads are appended here, never updated or deleted.
"""

import hashlib
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy import func, select, union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.guards import store_call
from entitlements.db.models import (
    FileProduct,
    FilePurchase,
    ProductAttachment,
    ProductPurchase,
    UserDownload,
)
from entitlements.exceptions import ResourceNotFoundError
from entitlements.models.domain import DownloadEvent, YearMonth

logger = get_logger(__name__)


class LedgerReader(Protocol):
    """Purchase and download facts consumed by the entitlement engine."""

    async def has_individual_purchase(self, user_id: UUID, attachment_id: UUID) -> bool:
        """Whether the user bought a FileProduct wrapping this attachment."""
        ...

    async def has_bundle_purchase(self, user_id: UUID, attachment_id: UUID) -> bool:
        """Whether the user bought a Product whose bundle contains this attachment."""
        ...

    async def monthly_download_count(self, user_id: UUID, year_month: YearMonth) -> int:
        """Download events for the user within the UTC month [start, end)."""
        ...

    async def purchased_attachment_ids(self, user_id: UUID) -> set[UUID]:
        """Every attachment the user owns through an individual or bundle purchase."""
        ...

    async def record_download(
        self, user_id: UUID, attachment_id: UUID, downloaded_at: datetime | None = None
    ) -> DownloadEvent:
        """
        Append one download event. Committed by the surrounding quota_guard.

        Raises:
            ResourceNotFoundError: If the attachment or user row does not exist
        """
        ...

    def quota_guard(
        self, user_id: UUID, year_month: YearMonth
    ) -> AbstractAsyncContextManager[None]:
        """
        Serialize check-and-record for one (user, month).

        Work done inside the block is committed on exit and rolled back on error.
        """
        ...


def quota_lock_key(user_id: UUID, year_month: YearMonth) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(f"{user_id}:{year_month}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class SqlLedgerReader:
    """LedgerReader backed by the purchase and user_downloads tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @store_call("ledger")
    async def has_individual_purchase(self, user_id: UUID, attachment_id: UUID) -> bool:
        stmt = (
            select(FilePurchase.id)
            .join(FileProduct, FilePurchase.file_product_id == FileProduct.id)
            .where(
                FilePurchase.user_id == user_id,
                FileProduct.attachment_id == attachment_id,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_call("ledger")
    async def has_bundle_purchase(self, user_id: UUID, attachment_id: UUID) -> bool:
        stmt = (
            select(ProductPurchase.id)
            .join(ProductAttachment, ProductAttachment.product_id == ProductPurchase.product_id)
            .where(
                ProductPurchase.user_id == user_id,
                ProductAttachment.attachment_id == attachment_id,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @store_call("ledger")
    async def monthly_download_count(self, user_id: UUID, year_month: YearMonth) -> int:
        stmt = select(func.count(UserDownload.id)).where(
            UserDownload.user_id == user_id,
            UserDownload.downloaded_at >= year_month.start,
            UserDownload.downloaded_at < year_month.end,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    @store_call("ledger")
    async def purchased_attachment_ids(self, user_id: UUID) -> set[UUID]:
        """Every attachment the user owns through an individual or bundle purchase."""
        individual = (
            select(FileProduct.attachment_id)
            .join(FilePurchase, FilePurchase.file_product_id == FileProduct.id)
            .where(FilePurchase.user_id == user_id)
        )
        bundled = (
            select(ProductAttachment.attachment_id)
            .join(ProductPurchase, ProductPurchase.product_id == ProductAttachment.product_id)
            .where(ProductPurchase.user_id == user_id)
        )
        result = await self.session.execute(union(individual, bundled))
        return set(result.scalars().all())

    @store_call("ledger")
    async def record_download(
        self, user_id: UUID, attachment_id: UUID, downloaded_at: datetime | None = None
    ) -> DownloadEvent:
        download = UserDownload(
            id=uuid4(),
            user_id=user_id,
            attachment_id=attachment_id,
            downloaded_at=downloaded_at or datetime.now(UTC),
        )
        self.session.add(download)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Foreign key violation: the attachment or profile row is gone
            logger.warning(
                "download_append_rejected",
                user_id=str(user_id),
                attachment_id=str(attachment_id),
                error=str(exc.orig),
            )
            raise ResourceNotFoundError(f"Attachment {attachment_id} not found") from exc

        logger.info(
            "download_appended",
            download_id=str(download.id),
            user_id=str(user_id),
            attachment_id=str(attachment_id),
        )

        return DownloadEvent(
            download_id=download.id,
            user_id=download.user_id,
            attachment_id=download.attachment_id,
            downloaded_at=download.downloaded_at,
        )

    @asynccontextmanager
    async def quota_guard(self, user_id: UUID, year_month: YearMonth) -> AsyncIterator[None]:
        try:
            await self._acquire_quota_lock(user_id, year_month)
            yield
        except BaseException:
            await self.session.rollback()
            raise
        await self._commit()

    @store_call("ledger")
    async def _acquire_quota_lock(self, user_id: UUID, year_month: YearMonth) -> None:
        # Transaction-scoped: released by the commit or rollback in quota_guard
        key = quota_lock_key(user_id, year_month)
        await self.session.execute(select(func.pg_advisory_xact_lock(key)))

    @store_call("ledger")
    async def _commit(self) -> None:
        await self.session.commit()
