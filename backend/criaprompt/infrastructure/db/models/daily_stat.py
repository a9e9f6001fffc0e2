"""
Daily Statistics Model

Write-mostly aggregate (``estatisticas``), one row per calendar day.
"""

import datetime as dt
from decimal import Decimal
from typing import Optional

from sqlmodel import Field

from criaprompt.infrastructure.db.models.base import TimestampMixin


class DailyStatModel(TimestampMixin, table=True):
    """Per-day counters consumed by admin reporting."""

    __tablename__ = "estatisticas"

    id: Optional[int] = Field(default=None, primary_key=True)
    date: dt.date = Field(unique=True, index=True, nullable=False)
    prompts_created: int = Field(default=0)
    models_created: int = Field(default=0)
    revenue_total: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
