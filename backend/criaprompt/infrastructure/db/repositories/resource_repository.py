"""
Resource Repository

Counts and creates the quota-limited resources (prompts and smart templates).
"""

from typing import Type, Union
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.domain.subscription import ResourceKind
from criaprompt.infrastructure.db.models.resources import PromptModel, SmartTemplateModel


ResourceModel = Union[PromptModel, SmartTemplateModel]

_MODELS: dict[ResourceKind, Type[ResourceModel]] = {
    ResourceKind.PROMPT: PromptModel,
    ResourceKind.MODEL: SmartTemplateModel,
}


class ResourceRepository:
    """Data access for ``prompts`` and ``modelos_inteligentes``."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def count_for_user(self, kind: ResourceKind, user_id: UUID) -> int:
        """Exact number of rows of ``kind`` owned by the user."""
        model = _MODELS[kind]
        stmt = select(func.count()).select_from(model).where(model.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()

    async def add(self, resource: ResourceModel) -> ResourceModel:
        self._session.add(resource)
        await self._session.flush()
        await self._session.refresh(resource)
        return resource
