"""
Resource DTOs

Request/response models for the quota-limited resources.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CreatePromptRequest(BaseModel):
    """Request DTO for saving a prompt."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=255, alias="titulo")
    content: str = Field(..., min_length=1, alias="conteudo")
    category: Optional[str] = Field(default=None, max_length=100, alias="categoria")
    is_public: bool = Field(default=False, alias="publico")


class PromptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    content: str
    category: Optional[str] = None
    is_public: bool
    created_at: datetime


class CreateSmartTemplateRequest(BaseModel):
    """Request DTO for saving a smart template with ``(campo)`` placeholders."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255, alias="nome")
    description: Optional[str] = Field(default=None, alias="descricao")
    structure: str = Field(..., min_length=1, alias="estrutura")
    category: Optional[str] = Field(default=None, max_length=100, alias="categoria")
    is_public: bool = Field(default=False, alias="publico")


class SmartTemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    name: str
    description: Optional[str] = None
    structure: str
    category: Optional[str] = None
    is_public: bool
    created_at: datetime
