"""
Download Quota Enforcer - Monthly per-tier download limits.

can_download is advisory. record_download repeats the same check under a
per-(user, month) advisory lock and appends the event in the same
transaction, so concurrent downloads cannot overshoot the limit.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.exceptions import QuotaExceededError
from entitlements.models.domain import (
    AccessReason,
    DownloadDecision,
    DownloadRecordResult,
    ResourceKind,
    YearMonth,
)
from entitlements.observability.metrics import metrics
from entitlements.observability.tracing import trace_operation
from entitlements.services.entitlement import EntitlementEngine

logger = get_logger(__name__)

NOT_AUTHENTICATED_MESSAGE = "not authenticated"
NO_ACCESS_MESSAGE = "no access"
ATTACHMENT_NOT_FOUND_MESSAGE = "attachment not found"


def quota_exceeded_message(limit: int) -> str:
    return f"Monthly download limit of {limit} reached"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DownloadQuotaEnforcer:
    """Applies the tier download limit on top of attachment access."""

    def __init__(
        self, engine: EntitlementEngine, clock: Callable[[], datetime] = _utc_now
    ) -> None:
        self.engine = engine
        self.clock = clock

    @classmethod
    def from_session(cls, session: AsyncSession) -> "DownloadQuotaEnforcer":
        return cls(EntitlementEngine.from_session(session))

    async def can_download(self, user_id: UUID | None, attachment_id: UUID) -> DownloadDecision:
        """
        Check whether the user may download the attachment now.

        Returns:
            DownloadDecision; denials carry a human-readable message

        Raises:
            CollaboratorUnavailableError: If a backing store cannot answer
        """
        with trace_operation("download_check", user_id=user_id, attachment_id=attachment_id) as span:
            started = time.perf_counter()
            decision = await self._evaluate(user_id, attachment_id, YearMonth.of(self.clock()))
            duration = time.perf_counter() - started
            metrics.record_decision(
                ResourceKind.DOWNLOAD.value, decision.allowed, decision.reason.value, duration
            )
            span.set_attribute("allowed", decision.allowed)
            span.set_attribute("reason", decision.reason.value)

        logger.info(
            "download_access_decided",
            user_id=str(user_id) if user_id else None,
            attachment_id=str(attachment_id),
            allowed=decision.allowed,
            reason=decision.reason.value,
            downloads_this_month=decision.downloads_this_month,
            download_limit=decision.download_limit,
        )
        return decision

    async def record_download(
        self, user_id: UUID | None, attachment_id: UUID
    ) -> DownloadRecordResult:
        """
        Re-check and append one download event atomically.

        Returns:
            DownloadRecordResult; event is None when the decision denies

        Raises:
            CollaboratorUnavailableError: If a backing store cannot answer
        """
        if user_id is None:
            return DownloadRecordResult(
                decision=DownloadDecision(
                    allowed=False,
                    reason=AccessReason.UNAUTHENTICATED,
                    message=NOT_AUTHENTICATED_MESSAGE,
                ),
                event=None,
            )

        now = self.clock()
        year_month = YearMonth.of(now)

        with trace_operation(
            "download_record", user_id=user_id, attachment_id=attachment_id, month=str(year_month)
        ) as span:
            async with self.engine.ledger.quota_guard(user_id, year_month):
                decision = await self._evaluate(user_id, attachment_id, year_month)
                event = None
                if decision.allowed:
                    event = await self.engine.ledger.record_download(
                        user_id, attachment_id, downloaded_at=now
                    )
            span.set_attribute("allowed", decision.allowed)

        if event is not None:
            metrics.record_download()
            logger.info(
                "download_recorded",
                download_id=str(event.download_id),
                user_id=str(user_id),
                attachment_id=str(attachment_id),
                month=str(year_month),
            )
        else:
            logger.info(
                "download_record_refused",
                user_id=str(user_id),
                attachment_id=str(attachment_id),
                reason=decision.reason.value,
            )

        return DownloadRecordResult(decision=decision, event=event)

    async def record_download_or_raise(
        self, user_id: UUID, attachment_id: UUID
    ) -> DownloadRecordResult:
        """
        record_download for callers that want an exception on quota exhaustion.

        Raises:
            QuotaExceededError: If the monthly limit is reached
        """
        result = await self.record_download(user_id, attachment_id)
        decision = result.decision
        if decision.reason is AccessReason.QUOTA_EXCEEDED:
            raise QuotaExceededError(
                user_id=user_id,
                limit=decision.download_limit or 0,
                used=decision.downloads_this_month or 0,
            )
        return result

    async def _evaluate(
        self, user_id: UUID | None, attachment_id: UUID, year_month: YearMonth
    ) -> DownloadDecision:
        if user_id is None:
            return DownloadDecision(
                allowed=False,
                reason=AccessReason.UNAUTHENTICATED,
                message=NOT_AUTHENTICATED_MESSAGE,
            )

        user = await self.engine.identity.load_user(user_id)
        if user is None:
            return DownloadDecision(
                allowed=False, reason=AccessReason.NO_ACCESS, message=NO_ACCESS_MESSAGE
            )

        access = await self.engine.decide_attachment_for(user, attachment_id)
        if not access.allowed:
            return DownloadDecision(
                allowed=False, reason=AccessReason.NO_ACCESS, message=NO_ACCESS_MESSAGE
            )

        # Admins skip the catalog lookups, so existence is checked here
        if access.reason is AccessReason.ADMIN and (
            await self.engine.catalog.resolve_attachment_context(attachment_id) is None
        ):
            return DownloadDecision(
                allowed=False,
                reason=AccessReason.NOT_FOUND,
                message=ATTACHMENT_NOT_FOUND_MESSAGE,
            )

        limit = user.download_limit
        if limit is None:
            return DownloadDecision(allowed=True, reason=AccessReason.UNLIMITED)

        count = await self.engine.ledger.monthly_download_count(user_id, year_month)
        if count >= limit:
            metrics.record_quota_denial()
            logger.warning(
                "download_quota_exceeded",
                user_id=str(user_id),
                month=str(year_month),
                download_limit=limit,
                downloads_this_month=count,
            )
            return DownloadDecision(
                allowed=False,
                reason=AccessReason.QUOTA_EXCEEDED,
                message=quota_exceeded_message(limit),
                download_limit=limit,
                downloads_this_month=count,
            )

        return DownloadDecision(
            allowed=True,
            reason=AccessReason.WITHIN_QUOTA,
            download_limit=limit,
            downloads_this_month=count,
        )
