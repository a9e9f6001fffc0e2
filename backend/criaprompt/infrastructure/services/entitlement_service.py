"""
Entitlement Service

Resolves which plan a user is on and what that plan allows.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import Entitlement, UNLIMITED
from criaprompt.infrastructure.db.repositories.plan_repository import PlanRepository
from criaprompt.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from criaprompt.infrastructure.db.repositories.user_profile_repository import (
    UserProfileRepository,
)
from criaprompt.infrastructure.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


class EntitlementService:
    """
    Computes a user's Entitlement from profile, plan and subscriptions.

    Users without a profile or without a plan fall back to the free plan.
    Admins get unlimited quotas whatever their plan says.

    Args:
        session: Async database session
        free_plan_id: Plan id of the free tier (defaults to settings)
    """

    def __init__(self, session: AsyncSession, free_plan_id: Optional[int] = None):
        self._profiles = UserProfileRepository(session)
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._free_plan_id = free_plan_id or get_settings().free_plan_id

    async def resolve(self, user_id: UUID) -> Entitlement:
        """
        Resolve the user's current entitlement.

        Raises:
            ConfigurationError: the profile points at a plan that does not exist
        """
        profile = await self._profiles.get_by_user_id(user_id)
        plan_id = self._free_plan_id
        if profile is not None and profile.current_plan_id is not None:
            plan_id = profile.current_plan_id
        is_admin = bool(profile and profile.is_admin)

        has_active_payment = await self._subscriptions.has_live_for_plan(user_id, plan_id)

        if is_admin:
            return Entitlement(
                plan_id=plan_id,
                prompt_quota=UNLIMITED,
                model_quota=UNLIMITED,
                is_admin=True,
                has_active_payment=has_active_payment,
            )

        plan = await self._plans.get_by_id(plan_id)
        if plan is None:
            logger.error(f"User {user_id} references missing plan {plan_id}")
            raise ConfigurationError(f"Plan {plan_id} referenced by user profile does not exist")

        return Entitlement(
            plan_id=plan.id,
            prompt_quota=plan.prompt_quota,
            model_quota=plan.model_quota,
            is_admin=False,
            has_active_payment=has_active_payment,
        )
