"""
Audit Log Model

Records administrative and user-initiated changes to billing rows.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import Column, JSON
from sqlmodel import Field

from criaprompt.infrastructure.db.models.base import CreatedAtMixin, UUIDMixin


class AuditLogModel(UUIDMixin, CreatedAtMixin, table=True):
    """Who changed which row, with before/after snapshots."""

    __tablename__ = "logs_auditoria"

    user_id: UUID = Field(index=True, nullable=False)
    action: str = Field(max_length=50)
    table_name: str = Field(max_length=100)
    record_id: str = Field(max_length=100)
    old_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    new_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
