"""
Quota-Counted Resource Models

Prompts (``prompts``) and smart templates (``modelos_inteligentes``) are the
two user-created resources whose counts are limited by plan quotas.
Only the columns the API writes are mapped here.
"""

from typing import Optional
from uuid import UUID

from sqlmodel import Field

from criaprompt.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class PromptModel(UUIDMixin, TimestampMixin, table=True):
    """A saved AI prompt."""

    __tablename__ = "prompts"

    user_id: UUID = Field(index=True, nullable=False)
    title: str = Field(max_length=255)
    content: str
    category: Optional[str] = Field(default=None, max_length=100)
    is_public: bool = Field(default=False)


class SmartTemplateModel(UUIDMixin, TimestampMixin, table=True):
    """A prompt template with ``(campo)`` placeholders."""

    __tablename__ = "modelos_inteligentes"

    user_id: UUID = Field(index=True, nullable=False)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None)
    structure: str
    category: Optional[str] = Field(default=None, max_length=100)
    is_public: bool = Field(default=False)
