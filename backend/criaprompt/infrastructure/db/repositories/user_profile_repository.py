"""
UserProfile Repository for CriaPrompt

Reads and writes the entitlement-relevant profile fields.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.db.models.user_profile import UserProfileModel
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


class UserProfileRepository(BaseRepository[UserProfileModel]):
    """
    Repository for ``perfis_usuario``.

    - get_by_user_id: Find profile by authenticated user
    - set_current_plan: Upsert the cached plan projection
    """

    def __init__(self, session: AsyncSession):
        super().__init__(UserProfileModel, session)

    async def get_by_user_id(self, user_id: UUID) -> Optional[UserProfileModel]:
        return await self.get_by_id(user_id)

    async def is_admin(self, user_id: UUID) -> bool:
        profile = await self.get_by_user_id(user_id)
        return bool(profile and profile.is_admin)

    async def set_current_plan(self, user_id: UUID, plan_id: int) -> UserProfileModel:
        """
        Point the profile at ``plan_id``, creating the profile if missing.

        Args:
            user_id: The auth user's UUID
            plan_id: Plan the user is now entitled to
        """
        profile = await self.get_by_user_id(user_id)
        if profile is None:
            profile = UserProfileModel(user_id=user_id)
        profile.current_plan_id = plan_id
        profile.updated_at = utcnow()
        return await self.add(profile)
