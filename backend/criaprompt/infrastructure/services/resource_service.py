"""
Resource Service

Creates prompts and smart templates and counts them in the daily stats.
Quota checks happen before this service is called (see require_quota).
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.domain.resources import CreatePromptRequest, CreateSmartTemplateRequest
from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.db.models.resources import PromptModel, SmartTemplateModel
from criaprompt.infrastructure.db.repositories.daily_stat_repository import (
    DailyStatRepository,
)
from criaprompt.infrastructure.db.repositories.resource_repository import ResourceRepository


logger = logging.getLogger(__name__)


class ResourceService:

    def __init__(self, session: AsyncSession):
        self._session = session
        self._resources = ResourceRepository(session)
        self._daily_stats = DailyStatRepository(session)

    async def create_prompt(self, user_id: UUID, data: CreatePromptRequest) -> PromptModel:
        prompt = await self._resources.add(
            PromptModel(
                user_id=user_id,
                title=data.title,
                content=data.content,
                category=data.category,
                is_public=data.is_public,
            )
        )
        await self._daily_stats.increment(utcnow().date(), prompts=1)
        await self._session.commit()
        logger.info(f"User {user_id} created prompt {prompt.id}")
        return prompt

    async def create_template(
        self, user_id: UUID, data: CreateSmartTemplateRequest
    ) -> SmartTemplateModel:
        template = await self._resources.add(
            SmartTemplateModel(
                user_id=user_id,
                name=data.name,
                description=data.description,
                structure=data.structure,
                category=data.category,
                is_public=data.is_public,
            )
        )
        await self._daily_stats.increment(utcnow().date(), models=1)
        await self._session.commit()
        logger.info(f"User {user_id} created smart template {template.id}")
        return template
