"""
Daily Stat Repository

Atomic increments of the per-day aggregate row.
"""

import datetime as dt
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.db.models.daily_stat import DailyStatModel
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


class DailyStatRepository(BaseRepository[DailyStatModel]):
    """Repository for ``estatisticas``."""

    def __init__(self, session: AsyncSession):
        super().__init__(DailyStatModel, session)

    async def increment(
        self,
        day: dt.date,
        revenue: Decimal = Decimal("0"),
        prompts: int = 0,
        models: int = 0,
    ) -> None:
        """
        Add to the counters for ``day``, inserting the row when absent.

        The increment runs in SQL so concurrent writers never lose an update.
        """
        stmt = (
            update(DailyStatModel)
            .where(DailyStatModel.date == day)
            .values(
                revenue_total=DailyStatModel.revenue_total + revenue,
                prompts_created=DailyStatModel.prompts_created + prompts,
                models_created=DailyStatModel.models_created + models,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount:
            return

        await self.add(
            DailyStatModel(
                date=day,
                revenue_total=revenue,
                prompts_created=prompts,
                models_created=models,
            )
        )
