"""
Quota Service

Advisory pre-creation check of a user's resource count against their plan.

The check is not transactional: two concurrent creations can both pass and
overshoot the quota by one. Any internal failure allows the creation
(fail-open) so billing problems never block users from working. A profile
pointing at a missing plan is bad data, not a failure, and is denied.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.domain.subscription import QuotaDecision, ResourceKind, UNLIMITED
from criaprompt.infrastructure.db.repositories.app_config_repository import (
    AppConfigRepository,
)
from criaprompt.infrastructure.db.repositories.resource_repository import ResourceRepository
from criaprompt.infrastructure.exceptions import ConfigurationError
from criaprompt.infrastructure.services.entitlement_service import EntitlementService


logger = logging.getLogger(__name__)


class QuotaService:
    """Answers "may this user create one more resource of this kind"."""

    def __init__(self, session: AsyncSession, entitlements: Optional[EntitlementService] = None):
        self._session = session
        self._app_config = AppConfigRepository(session)
        self._resources = ResourceRepository(session)
        self._entitlements = entitlements or EntitlementService(session)

    async def check(self, user_id: UUID, kind: ResourceKind) -> QuotaDecision:
        try:
            return await self._check(user_id, kind)
        except ConfigurationError:
            logger.error(f"Quota check for user {user_id}: profile plan does not exist")
            return QuotaDecision.plan_not_found()
        except Exception:
            logger.exception(f"Quota check failed for user {user_id} ({kind.value}); allowing")
            await self._reset_session()
            return QuotaDecision.allow()

    async def _check(self, user_id: UUID, kind: ResourceKind) -> QuotaDecision:
        if not await self._app_config.is_saas_enabled():
            return QuotaDecision.allow()

        entitlement = await self._entitlements.resolve(user_id)
        if entitlement.is_admin:
            return QuotaDecision.allow(plan_id=entitlement.plan_id, limit=UNLIMITED)

        limit = entitlement.quota_for(kind)
        if limit == UNLIMITED:
            return QuotaDecision.allow(plan_id=entitlement.plan_id, limit=UNLIMITED)

        current = await self._resources.count_for_user(kind, user_id)
        if current >= limit:
            logger.info(
                f"Quota reached for user {user_id}: {current}/{limit} {kind.label} "
                f"on plan {entitlement.plan_id}"
            )
            return QuotaDecision.deny(kind, entitlement.plan_id, limit, current)

        return QuotaDecision.allow(plan_id=entitlement.plan_id, limit=limit, current=current)

    async def _reset_session(self) -> None:
        # A failed statement leaves the transaction aborted on Postgres.
        try:
            await self._session.rollback()
        except Exception:
            logger.exception("Rollback after failed quota check also failed")
