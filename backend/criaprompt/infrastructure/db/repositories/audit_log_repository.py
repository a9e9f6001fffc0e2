"""
Audit Log Repository
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.infrastructure.db.models.audit_log import AuditLogModel
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


class AuditLogRepository(BaseRepository[AuditLogModel]):
    """Repository for ``logs_auditoria``."""

    def __init__(self, session: AsyncSession):
        super().__init__(AuditLogModel, session)

    async def record(
        self,
        user_id: UUID,
        action: str,
        table_name: str,
        record_id: str,
        old_data: Optional[dict] = None,
        new_data: Optional[dict] = None,
    ) -> AuditLogModel:
        return await self.add(
            AuditLogModel(
                user_id=user_id,
                action=action,
                table_name=table_name,
                record_id=record_id,
                old_data=old_data,
                new_data=new_data,
            )
        )
