"""
Transaction Repository

Append-only access to the payment ledger.
"""

from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.infrastructure.db.models.transaction import TransactionModel
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


class TransactionRepository(BaseRepository[TransactionModel]):
    """Repository for the ``transacoes`` table."""

    def __init__(self, session: AsyncSession):
        super().__init__(TransactionModel, session)

    async def list_for_user(self, user_id: UUID) -> List[TransactionModel]:
        """Newest first."""
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.user_id == user_id)
            .order_by(TransactionModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_subscription(self, subscription_id: UUID) -> List[TransactionModel]:
        """Newest first."""
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.subscription_id == subscription_id)
            .order_by(TransactionModel.created_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
