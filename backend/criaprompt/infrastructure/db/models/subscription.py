"""
Subscription Database Model

SQLModel table for subscription data persistence (``assinaturas``).
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, Index, text
from sqlmodel import Field

from criaprompt.domain.subscription import SubscriptionStatus, LIVE_STATUSES
from criaprompt.infrastructure.db.models.base import TimestampMixin, UUIDMixin, utcnow


_LIVE_PREDICATE = "status IN ({})".format(
    ", ".join(f"'{status.value}'" for status in LIVE_STATUSES)
)


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """
    One row per user/plan relationship over time.

    Rows are never deleted; cancellation is a status transition. The user's
    current subscription is the most recent row by ``created_at``. A partial
    unique index keeps at most one live (active/trialing) row per user.
    """

    __tablename__ = "assinaturas"
    __table_args__ = (
        Index(
            "uq_assinaturas_user_live",
            "user_id",
            unique=True,
            postgresql_where=text(_LIVE_PREDICATE),
            sqlite_where=text(_LIVE_PREDICATE),
        ),
    )

    user_id: UUID = Field(index=True, nullable=False)
    plan_id: int = Field(foreign_key="planos.id", nullable=False)
    status: str = Field(default=SubscriptionStatus.PENDING.value, max_length=20)

    # Stripe IDs
    external_customer_ref: Optional[str] = Field(default=None, max_length=255, index=True)
    external_subscription_ref: Optional[str] = Field(
        default=None, max_length=255, unique=True, index=True
    )

    # Lifecycle dates
    started_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    ends_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    trial_ends_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_at_period_end: bool = Field(default=False)

    @property
    def is_live(self) -> bool:
        return self.status in {status.value for status in LIVE_STATUSES}
