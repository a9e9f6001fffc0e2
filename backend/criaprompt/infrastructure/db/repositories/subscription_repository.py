"""
Subscription Repository

Data access layer for subscription persistence.
Rows are append-only history; the current subscription is the newest row.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.domain.subscription import LIVE_STATUSES, SubscriptionStatus
from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.db.models.subscription import SubscriptionModel
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)

_LIVE_VALUES = [status.value for status in LIVE_STATUSES]


class SubscriptionRepository(BaseRepository[SubscriptionModel]):
    """
    Repository for ``assinaturas``.

    Lookups by user, by Stripe subscription id, and the bulk supersede
    transition that keeps at most one live row per user.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionModel, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_current_for_user(self, user_id: UUID) -> Optional[SubscriptionModel]:
        """
        Get the user's most recent subscription row.

        Args:
            user_id: Auth user UUID

        Returns:
            Newest row by ``created_at`` or None
        """
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .order_by(SubscriptionModel.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: UUID) -> List[SubscriptionModel]:
        """Full history, newest first."""
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .order_by(SubscriptionModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_external_ref(self, external_subscription_ref: str) -> Optional[SubscriptionModel]:
        """
        Get subscription by Stripe subscription ID.

        Args:
            external_subscription_ref: Stripe ``sub_...`` id
        """
        stmt = select(SubscriptionModel).where(
            SubscriptionModel.external_subscription_ref == external_subscription_ref
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def has_live_for_plan(self, user_id: UUID, plan_id: int) -> bool:
        """True when the user holds an active/trialing row on ``plan_id``."""
        count = await self.count(
            SubscriptionModel.user_id == user_id,
            SubscriptionModel.plan_id == plan_id,
            SubscriptionModel.status.in_(_LIVE_VALUES),
        )
        return count > 0

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def supersede_live(
        self,
        user_id: UUID,
        ended_at: Optional[datetime] = None,
        exclude_id: Optional[UUID] = None,
    ) -> List[SubscriptionModel]:
        """
        Cancel every live row of the user so a new one can become live.

        Superseded rows keep ``cancel_at_period_end=False``: they ended for
        good, unlike a user cancellation that runs to the end of the period.

        Args:
            user_id: Auth user UUID
            ended_at: End timestamp written on superseded rows (default now)
            exclude_id: Row to leave untouched

        Returns:
            The superseded rows, already updated in the session
        """
        now = ended_at or utcnow()
        criteria = [
            SubscriptionModel.user_id == user_id,
            SubscriptionModel.status.in_(_LIVE_VALUES),
        ]
        if exclude_id is not None:
            criteria.append(SubscriptionModel.id != exclude_id)

        result = await self._session.execute(select(SubscriptionModel).where(*criteria))
        superseded = list(result.scalars().all())
        if not superseded:
            return []

        stmt = (
            update(SubscriptionModel)
            .where(SubscriptionModel.id.in_([row.id for row in superseded]))
            .values(
                status=SubscriptionStatus.CANCELED.value,
                ends_at=now,
                cancel_at_period_end=False,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        await self._session.execute(stmt)
        logger.info(f"Superseded {len(superseded)} live subscription(s) for user {user_id}")
        return superseded
