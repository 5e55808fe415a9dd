"""
Entitlement Engine - Admit or deny a user's access to protected content.

Decisions are stateless reads recomputed per call. Business denials come back
as AccessDecision values; only store failures raise.
"""

import time
from uuid import UUID

from opentelemetry.trace import Span
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.exceptions import ResourceNotFoundError
from entitlements.models.domain import (
    AccessDecision,
    AccessReason,
    AttachmentContext,
    ResourceKind,
    TierData,
    UserContext,
)
from entitlements.observability.metrics import metrics
from entitlements.observability.tracing import trace_operation
from entitlements.services.catalog import CatalogReader, SqlCatalogReader
from entitlements.services.identity import IdentityReader, SqlIdentityReader
from entitlements.services.ledger import LedgerReader, SqlLedgerReader

logger = get_logger(__name__)


class EntitlementEngine:
    """
    Policy over the identity, catalog and ledger readers.

    Library path precedence for attachments, first match wins:
    unauthenticated, admin, shop-only, individual purchase, bundle purchase,
    tier gates (course and attachment when the file belongs to a course,
    attachment only otherwise).
    """

    def __init__(
        self, identity: IdentityReader, catalog: CatalogReader, ledger: LedgerReader
    ) -> None:
        self.identity = identity
        self.catalog = catalog
        self.ledger = ledger

    @classmethod
    def from_session(cls, session: AsyncSession) -> "EntitlementEngine":
        """Engine wired to the SQL readers sharing one session."""
        return cls(
            identity=SqlIdentityReader(session),
            catalog=SqlCatalogReader(session),
            ledger=SqlLedgerReader(session),
        )

    # ========================================================================
    # Attachments (library path)
    # ========================================================================

    async def can_access_attachment(self, user_id: UUID | None, attachment_id: UUID) -> bool:
        decision = await self.decide_attachment(user_id, attachment_id)
        return decision.allowed

    async def decide_attachment(
        self, user_id: UUID | None, attachment_id: UUID
    ) -> AccessDecision:
        """
        Decide library access to an attachment.

        Args:
            user_id: Authenticated user, or None for anonymous callers
            attachment_id: Attachment to access

        Returns:
            AccessDecision with the grant or denial reason

        Raises:
            CollaboratorUnavailableError: If a backing store cannot answer
        """
        with trace_operation(
            "attachment_access", user_id=user_id, attachment_id=attachment_id
        ) as span:
            started = time.perf_counter()
            outcome = await self._load_user(user_id)
            if isinstance(outcome, AccessDecision):
                decision = outcome
            else:
                decision = await self._attachment_policy(outcome, attachment_id)
            self._observe(
                ResourceKind.ATTACHMENT,
                decision,
                started,
                span,
                user_id=user_id,
                attachment_id=attachment_id,
            )
        return decision

    async def decide_attachment_for(
        self, user: UserContext, attachment_id: UUID
    ) -> AccessDecision:
        """Library access for a user the caller has already loaded."""
        with trace_operation(
            "attachment_access", user_id=user.user_id, attachment_id=attachment_id
        ) as span:
            started = time.perf_counter()
            decision = await self._attachment_policy(user, attachment_id)
            self._observe(
                ResourceKind.ATTACHMENT,
                decision,
                started,
                span,
                user_id=user.user_id,
                attachment_id=attachment_id,
            )
        return decision

    async def _attachment_policy(self, user: UserContext, attachment_id: UUID) -> AccessDecision:
        if user.is_admin:
            return AccessDecision.allow(AccessReason.ADMIN)

        # Shop-only files are sold, never unlocked from the library
        if await self.catalog.is_shop_only(attachment_id):
            return AccessDecision.deny(AccessReason.SHOP_ONLY)

        if await self.ledger.has_individual_purchase(user.user_id, attachment_id):
            return AccessDecision.allow(AccessReason.INDIVIDUAL_PURCHASE)

        if await self.ledger.has_bundle_purchase(user.user_id, attachment_id):
            return AccessDecision.allow(AccessReason.BUNDLE_PURCHASE)

        context = await self.catalog.resolve_attachment_context(attachment_id)
        if context is None:
            return AccessDecision.deny(AccessReason.NOT_FOUND)

        if context.course_id is not None:
            course_level = await self.catalog.resolve_course_minimum_level(context.course_id)
            if course_level is None:
                return AccessDecision.deny(AccessReason.NOT_FOUND)
            if not user.meets(course_level):
                return AccessDecision.deny(AccessReason.INSUFFICIENT_TIER)

        if not user.meets(context.minimum_level):
            return AccessDecision.deny(AccessReason.INSUFFICIENT_TIER)

        return AccessDecision.allow(AccessReason.TIER)

    # ========================================================================
    # Courses and lessons
    # ========================================================================

    async def can_access_course(self, user_id: UUID | None, course_id: UUID) -> bool:
        decision = await self.decide_course(user_id, course_id)
        return decision.allowed

    async def decide_course(self, user_id: UUID | None, course_id: UUID) -> AccessDecision:
        """Course tier gate. No purchase path unlocks a whole course."""
        with trace_operation("course_access", user_id=user_id, course_id=course_id) as span:
            started = time.perf_counter()
            outcome = await self._authenticate(user_id)
            if isinstance(outcome, AccessDecision):
                decision = outcome
            else:
                decision = await self._course_gate(outcome, course_id)
            self._observe(
                ResourceKind.COURSE, decision, started, span, user_id=user_id, course_id=course_id
            )
        return decision

    async def can_access_lesson(self, user_id: UUID | None, lesson_id: UUID) -> bool:
        decision = await self.decide_lesson(user_id, lesson_id)
        return decision.allowed

    async def decide_lesson(self, user_id: UUID | None, lesson_id: UUID) -> AccessDecision:
        """Lesson content inherits its course's tier gate."""
        with trace_operation("lesson_access", user_id=user_id, lesson_id=lesson_id) as span:
            started = time.perf_counter()
            outcome = await self._authenticate(user_id)
            if isinstance(outcome, AccessDecision):
                decision = outcome
            else:
                course_id = await self.catalog.resolve_lesson_course(lesson_id)
                if course_id is None:
                    decision = AccessDecision.deny(AccessReason.NOT_FOUND)
                else:
                    decision = await self._course_gate(outcome, course_id)
            self._observe(
                ResourceKind.LESSON, decision, started, span, user_id=user_id, lesson_id=lesson_id
            )
        return decision

    async def _load_user(self, user_id: UUID | None) -> UserContext | AccessDecision:
        """Load the caller, or deny when anonymous or without a profile."""
        if user_id is None:
            return AccessDecision.deny(AccessReason.UNAUTHENTICATED)

        user = await self.identity.load_user(user_id)
        if user is None:
            return AccessDecision.deny(AccessReason.NOT_FOUND)
        return user

    async def _authenticate(self, user_id: UUID | None) -> UserContext | AccessDecision:
        """Load a non-admin user, or settle the decision early."""
        outcome = await self._load_user(user_id)
        if isinstance(outcome, UserContext) and outcome.is_admin:
            return AccessDecision.allow(AccessReason.ADMIN)
        return outcome

    async def _course_gate(self, user: UserContext, course_id: UUID) -> AccessDecision:
        required = await self.catalog.resolve_course_minimum_level(course_id)
        if required is None:
            return AccessDecision.deny(AccessReason.NOT_FOUND)
        if not user.meets(required):
            return AccessDecision.deny(AccessReason.INSUFFICIENT_TIER)
        return AccessDecision.allow(AccessReason.TIER)

    # ========================================================================
    # Storefront path
    # ========================================================================

    async def can_access_storefront_file(
        self, user_id: UUID | None, attachment_id: UUID
    ) -> bool:
        decision = await self.decide_storefront_file(user_id, attachment_id)
        return decision.allowed

    async def decide_storefront_file(
        self, user_id: UUID | None, attachment_id: UUID
    ) -> AccessDecision:
        """
        Access to a file through the store.

        Purchases are the only way in besides admin. Tier and the shop-only
        flag play no part here; they govern the library path only.
        """
        with trace_operation(
            "storefront_access", user_id=user_id, attachment_id=attachment_id
        ) as span:
            started = time.perf_counter()
            decision = await self._storefront_policy(user_id, attachment_id)
            self._observe(
                ResourceKind.STOREFRONT_FILE,
                decision,
                started,
                span,
                user_id=user_id,
                attachment_id=attachment_id,
            )
        return decision

    async def _storefront_policy(
        self, user_id: UUID | None, attachment_id: UUID
    ) -> AccessDecision:
        outcome = await self._authenticate(user_id)
        if isinstance(outcome, AccessDecision):
            return outcome

        context = await self.catalog.resolve_attachment_context(attachment_id)
        if context is None:
            return AccessDecision.deny(AccessReason.NOT_FOUND)

        if await self.ledger.has_individual_purchase(outcome.user_id, attachment_id):
            return AccessDecision.allow(AccessReason.INDIVIDUAL_PURCHASE)

        if await self.ledger.has_bundle_purchase(outcome.user_id, attachment_id):
            return AccessDecision.allow(AccessReason.BUNDLE_PURCHASE)

        return AccessDecision.deny(AccessReason.NO_ACCESS)

    # ========================================================================
    # Lookups
    # ========================================================================

    async def attachment_tier(
        self, user_id: UUID | None, attachment_id: UUID
    ) -> tuple[AccessDecision, AttachmentContext | None]:
        """Minimum tier of an attachment, disclosed only to users who can access it."""
        decision = await self.decide_attachment(user_id, attachment_id)
        if not decision.allowed:
            return decision, None
        return decision, await self.catalog.resolve_attachment_context(attachment_id)

    async def user_permission_level(self, user_id: UUID) -> UserContext:
        """
        Raises:
            ResourceNotFoundError: If no profile exists for the user
        """
        user = await self.identity.load_user(user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        return user

    async def purchased_attachment_ids(self, user_id: UUID) -> set[UUID]:
        """
        Attachments the user owns through individual or bundle purchases.

        Raises:
            ResourceNotFoundError: If no profile exists for the user
        """
        user = await self.user_permission_level(user_id)
        return await self.ledger.purchased_attachment_ids(user.user_id)

    async def list_tiers(self) -> list[TierData]:
        return await self.catalog.list_tiers()

    # ========================================================================
    # Helpers
    # ========================================================================

    def _observe(
        self,
        kind: ResourceKind,
        decision: AccessDecision,
        started: float,
        span: Span,
        **fields: UUID | None,
    ) -> None:
        duration = time.perf_counter() - started
        metrics.record_decision(kind.value, decision.allowed, decision.reason.value, duration)
        span.set_attribute("allowed", decision.allowed)
        span.set_attribute("reason", decision.reason.value)
        logger.info(
            f"{kind.value}_access_decided",
            allowed=decision.allowed,
            reason=decision.reason.value,
            duration_ms=round(duration * 1000, 3),
            **{key: str(value) if value is not None else None for key, value in fields.items()},
        )
