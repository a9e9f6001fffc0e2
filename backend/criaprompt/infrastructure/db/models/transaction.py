"""
Transaction Database Model

Append-only payment ledger (``transacoes``).
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlmodel import Field

from criaprompt.domain.subscription import TransactionKind, TransactionStatus
from criaprompt.infrastructure.db.models.base import CreatedAtMixin, UUIDMixin


class TransactionModel(UUIDMixin, CreatedAtMixin, table=True):
    """Ledger entry written by the webhook reconciler from invoice events."""

    __tablename__ = "transacoes"

    user_id: UUID = Field(index=True, nullable=False)
    subscription_id: Optional[UUID] = Field(
        default=None, foreign_key="assinaturas.id", index=True
    )
    amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str = Field(default="BRL", max_length=3)
    status: str = Field(default=TransactionStatus.PENDING.value, max_length=20)
    kind: str = Field(default=TransactionKind.PAYMENT.value, max_length=20)
    external_invoice_ref: Optional[str] = Field(default=None, max_length=255, index=True)
    external_payment_ref: Optional[str] = Field(default=None, max_length=255)
    payment_method: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None)
