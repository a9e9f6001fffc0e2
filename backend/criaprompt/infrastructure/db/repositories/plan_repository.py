"""
Plan Repository

Read-mostly access to the plan catalog.
"""

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.infrastructure.db.models.plan import PlanModel
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


class PlanRepository(BaseRepository[PlanModel]):
    """Repository for the ``planos`` table."""

    def __init__(self, session: AsyncSession):
        super().__init__(PlanModel, session)

    async def list_active(self) -> List[PlanModel]:
        """Active plans in display order, cheapest first on ties."""
        stmt = (
            select(PlanModel)
            .where(PlanModel.active.is_(True))
            .order_by(PlanModel.display_order, PlanModel.price, PlanModel.id)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
