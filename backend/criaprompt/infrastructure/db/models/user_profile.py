"""
UserProfile SQLModel for CriaPrompt

Entitlement-relevant subset of ``perfis_usuario``.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from criaprompt.infrastructure.db.models.base import utcnow


class UserProfileModel(SQLModel, table=True):
    """
    Per-user profile row keyed by the Supabase auth user id.

    ``current_plan_id`` is a cached projection of the user's live
    subscription and must be written in the same unit of work as every
    subscription transition.
    """

    __tablename__ = "perfis_usuario"

    user_id: UUID = Field(primary_key=True, nullable=False)
    current_plan_id: Optional[int] = Field(default=None, foreign_key="planos.id")
    is_admin: bool = Field(default=False)
    full_name: Optional[str] = Field(default=None, max_length=255)
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"onupdate": utcnow},
    )
