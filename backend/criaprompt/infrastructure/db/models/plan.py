"""
Plan Database Model

SQLModel table for the plan catalog (``planos``).
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, JSON
from sqlmodel import Field

from criaprompt.domain.subscription import PlanInterval, UNLIMITED
from criaprompt.infrastructure.db.models.base import TimestampMixin


class PlanModel(TimestampMixin, table=True):
    """
    A priced tier with resource quotas.

    Quotas use -1 for unlimited. A plan with ``price == 0`` is free and never
    touches Stripe; paid plans need ``external_price_ref`` (a Stripe Price id).
    """

    __tablename__ = "planos"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None)
    price: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    interval: str = Field(default=PlanInterval.MONTHLY.value, max_length=20)
    prompt_quota: int = Field(default=UNLIMITED)
    model_quota: int = Field(default=UNLIMITED)
    features: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    active: bool = Field(default=True, index=True)
    display_order: int = Field(default=0)
    external_price_ref: Optional[str] = Field(default=None, max_length=255)

    @property
    def is_free(self) -> bool:
        return self.price == 0
