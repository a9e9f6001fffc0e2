"""
Plan Registry

Read-only catalog of subscription plans.
"""

from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.infrastructure.db.models.plan import PlanModel
from criaprompt.infrastructure.db.repositories.plan_repository import PlanRepository
from criaprompt.infrastructure.exceptions import NotFoundError


class PlanRegistry:
    """Lists and looks up plans. No business rules live here."""

    def __init__(self, session: AsyncSession):
        self._plans = PlanRepository(session)

    async def list_active_plans(self) -> List[PlanModel]:
        return await self._plans.list_active()

    async def get_plan(self, plan_id: int) -> PlanModel:
        """
        Get a plan by id.

        Raises:
            NotFoundError: no plan with that id
        """
        plan = await self._plans.get_by_id(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", operation="get_plan", table="planos")
        return plan
