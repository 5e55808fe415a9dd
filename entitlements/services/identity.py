"""
Identity Reader - Who is asking, and at what tier.

Session and login handling live in the calling application; this reader only
turns an already-authenticated user id into the facts the policy needs.
"""

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.guards import store_call
from entitlements.db.models import Profile, Tier
from entitlements.models.domain import UserContext

logger = get_logger(__name__)


class IdentityReader(Protocol):
    """Identity context consumed by the entitlement engine."""

    async def load_user(self, user_id: UUID) -> UserContext | None:
        """
        Load admin flag and tier facts for a user.

        Returns:
            UserContext, or None when no profile exists for the id

        Raises:
            CollaboratorUnavailableError: If the store cannot be reached
        """
        ...


class SqlIdentityReader:
    """IdentityReader backed by the profiles and tiers tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @store_call("identity")
    async def load_user(self, user_id: UUID) -> UserContext | None:
        stmt = (
            select(
                Profile.id,
                Profile.is_admin,
                Tier.permission_level,
                Tier.download_limit,
            )
            .join(Tier, Profile.tier_id == Tier.id)
            .where(Profile.id == user_id)
        )
        result = await self.session.execute(stmt)
        row = result.one_or_none()

        if row is None:
            logger.info("identity_profile_not_found", user_id=str(user_id))
            return None

        return UserContext(
            user_id=row.id,
            is_admin=bool(row.is_admin),
            permission_level=row.permission_level,
            download_limit=row.download_limit,
        )
