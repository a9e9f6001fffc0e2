"""
App Config Repository

Typed accessors over the ``configuracoes_app`` key/value flags.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.domain.subscription import BillingMode
from criaprompt.infrastructure.db.models.app_config import (
    AppConfigModel,
    BILLING_MODE_KEY,
    SAAS_ENABLED_KEY,
    TRIAL_DAYS_KEY,
)
from criaprompt.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)


class AppConfigRepository(BaseRepository[AppConfigModel]):
    """Repository for runtime flags."""

    def __init__(self, session: AsyncSession):
        super().__init__(AppConfigModel, session)

    async def get_value(self, key: str) -> Optional[str]:
        row = await self.get_by_id(key)
        return row.valor if row else None

    async def set_value(self, key: str, value: str) -> AppConfigModel:
        row = await self.get_by_id(key)
        if row is None:
            row = AppConfigModel(chave=key)
        row.valor = value
        return await self.add(row)

    async def is_saas_enabled(self) -> bool:
        """Billing enforcement is on only when the flag is exactly ``"true"``."""
        return await self.get_value(SAAS_ENABLED_KEY) == "true"

    async def billing_mode(self) -> BillingMode:
        """Stripe mode; anything but ``producao`` means test mode."""
        value = await self.get_value(BILLING_MODE_KEY)
        if value == BillingMode.PRODUCTION.value:
            return BillingMode.PRODUCTION
        return BillingMode.TEST

    async def trial_days(self, default: int) -> int:
        value = await self.get_value(TRIAL_DAYS_KEY)
        if value is None:
            return default
        try:
            days = int(value)
        except ValueError:
            days = 0
        if days < 1:
            logger.warning(f"Ignoring {TRIAL_DAYS_KEY}={value!r}, using {default}")
            return default
        return days
