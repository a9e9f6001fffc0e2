"""
Stripe Webhook Event Models

Typed views over the Stripe event JSON the reconciler consumes.
Only the fields the reconciler reads are declared; everything else is
accepted and ignored so new Stripe API versions do not break parsing.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from criaprompt.domain.subscription import SubscriptionStatus


class EventType(str, Enum):
    """Stripe event types with a handler."""
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class ReconcileOutcome(str, Enum):
    """What a handler did with an event."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    SKIPPED = "skipped"
    IGNORED = "ignored"


# Invoice billing_reason for a renewal charge.
RENEWAL_BILLING_REASON = "subscription_cycle"

_PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.EXPIRED,
}


def map_provider_status(provider_status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the local lifecycle."""
    return _PROVIDER_STATUS_MAP.get(provider_status or "", SubscriptionStatus.PENDING)


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe epoch-seconds field to an aware datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def from_minor_units(amount: Optional[int]) -> Decimal:
    """Convert a Stripe minor-unit integer (cents) to a decimal amount."""
    return (Decimal(amount or 0) / Decimal(100)).quantize(Decimal("0.01"))


class _StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class StripeSubscriptionObject(_StripeObject):
    """``data.object`` of a customer.subscription.* event."""
    id: str
    customer: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[int] = None
    cancel_at: Optional[int] = None
    trial_end: Optional[int] = None
    cancel_at_period_end: bool = False
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.metadata.get("user_id")

    @property
    def plan_id(self) -> Optional[int]:
        raw = self.metadata.get("plan_id") or self.metadata.get("plano_id")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None


class StripeInvoiceObject(_StripeObject):
    """``data.object`` of an invoice.* event."""
    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    parent: Optional[dict[str, Any]] = None
    payment_intent: Optional[str] = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: str = "brl"
    billing_reason: Optional[str] = None
    attempt_count: int = 0

    @property
    def subscription_ref(self) -> Optional[str]:
        """Subscription id from the legacy field or the newer ``parent`` block."""
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return details.get("subscription")


class StripeEventData(_StripeObject):
    object: dict[str, Any]


class StripeEvent(_StripeObject):
    """Envelope of any Stripe webhook event."""
    id: str
    type: str
    data: StripeEventData

    @property
    def event_type(self) -> Optional[EventType]:
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def subscription_object(self) -> StripeSubscriptionObject:
        return StripeSubscriptionObject.model_validate(self.data.object)

    def invoice_object(self) -> StripeInvoiceObject:
        return StripeInvoiceObject.model_validate(self.data.object)
