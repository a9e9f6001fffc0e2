"""
Webhook Reconciler

Applies Stripe webhook events to the local subscription, transaction and
profile tables.

Stripe delivers at least once and in no particular order, so every handler
is keyed on Stripe ids and tolerates redelivery:
- subscription events are matched by ``external_subscription_ref``
- unknown event types are acknowledged and ignored
- any failure while applying a known event rolls back and propagates, so
  the route answers 500 and Stripe retries later
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import (
    BillingMode,
    LIVE_STATUSES,
    SubscriptionStatus,
    TransactionKind,
    TransactionStatus,
)
from criaprompt.domain.webhook_events import (
    EventType,
    RENEWAL_BILLING_REASON,
    ReconcileOutcome,
    StripeEvent,
    StripeInvoiceObject,
    from_minor_units,
    from_unix,
    map_provider_status,
)
from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.db.models.subscription import SubscriptionModel
from criaprompt.infrastructure.db.models.transaction import TransactionModel
from criaprompt.infrastructure.db.repositories.app_config_repository import (
    AppConfigRepository,
)
from criaprompt.infrastructure.db.repositories.daily_stat_repository import (
    DailyStatRepository,
)
from criaprompt.infrastructure.db.repositories.plan_repository import PlanRepository
from criaprompt.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from criaprompt.infrastructure.db.repositories.transaction_repository import (
    TransactionRepository,
)
from criaprompt.infrastructure.db.repositories.user_profile_repository import (
    UserProfileRepository,
)
from criaprompt.infrastructure.exceptions import ConfigurationError, ValidationError
from criaprompt.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
    release_superseded,
)


logger = logging.getLogger(__name__)

_LIVE_VALUES = {status.value for status in LIVE_STATUSES}

Handler = Callable[[StripeEvent], Awaitable[ReconcileOutcome]]


class WebhookReconciler:
    """
    Verifies and dispatches one webhook delivery.

    Args:
        session: Async database session (this service commits it)
        stripe_factory: Returns the Stripe client for a billing mode
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_factory: Callable[[BillingMode], StripeService] = get_stripe_service,
    ):
        settings = get_settings()
        self._session = session
        self._stripe_factory = stripe_factory
        self._free_plan_id = settings.free_plan_id
        self._dunning_max_attempts = settings.dunning_max_attempts

        self._app_config = AppConfigRepository(session)
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._transactions = TransactionRepository(session)
        self._profiles = UserProfileRepository(session)
        self._daily_stats = DailyStatRepository(session)
        self._superseded_refs: List[str] = []

        self._handlers: Dict[EventType, Handler] = {
            EventType.SUBSCRIPTION_CREATED: self._on_subscription_created,
            EventType.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            EventType.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            EventType.INVOICE_PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            EventType.INVOICE_PAYMENT_FAILED: self._on_payment_failed,
        }

    async def handle_event(self, payload: bytes, signature: Optional[str]) -> ReconcileOutcome:
        """
        Verify, parse and apply one delivery.

        Raises:
            RejectedSignatureError: bad signature; nothing was written
            ValidationError: signed payload is not a Stripe event
        """
        mode = await self._app_config.billing_mode()
        stripe = self._stripe_factory(mode)
        stripe.verify_webhook_signature(payload, signature)

        try:
            event = StripeEvent.model_validate_json(payload)
        except PydanticValidationError as e:
            raise ValidationError("Malformed webhook payload", original_error=e)

        handler = self._handlers.get(event.event_type)
        if handler is None:
            logger.info(f"Ignoring webhook {event.id} of type {event.type}")
            return ReconcileOutcome.IGNORED

        self._superseded_refs = []
        try:
            outcome = await handler(event)
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            logger.exception(f"Webhook {event.id} ({event.type}) failed")
            raise

        if self._superseded_refs:
            await release_superseded(stripe, self._superseded_refs)

        logger.info(f"Webhook {event.id} ({event.type}) {outcome.value}")
        return outcome

    # =========================================================================
    # Subscription events
    # =========================================================================

    async def _on_subscription_created(self, event: StripeEvent) -> ReconcileOutcome:
        obj = event.subscription_object()

        if await self._subscriptions.get_by_external_ref(obj.id) is not None:
            return ReconcileOutcome.DUPLICATE

        user_id = _parse_uuid(obj.user_id)
        plan_id = obj.plan_id
        if user_id is None or plan_id is None:
            logger.warning(
                f"Webhook {event.id}: subscription {obj.id} has no user_id/plan_id metadata"
            )
            return ReconcileOutcome.SKIPPED

        if await self._plans.get_by_id(plan_id) is None:
            raise ConfigurationError(
                f"Subscription {obj.id} references missing plan {plan_id}"
            )

        status = map_provider_status(obj.status)
        now = utcnow()
        if status in LIVE_STATUSES:
            await self._supersede(user_id, now)

        subscription = await self._subscriptions.add(
            SubscriptionModel(
                user_id=user_id,
                plan_id=plan_id,
                status=status.value,
                external_customer_ref=obj.customer,
                external_subscription_ref=obj.id,
                started_at=from_unix(obj.start_date) or now,
                ends_at=from_unix(obj.cancel_at),
                trial_ends_at=from_unix(obj.trial_end),
                cancel_at_period_end=obj.cancel_at_period_end,
            )
        )
        await self._profiles.set_current_plan(user_id, plan_id)

        logger.info(
            f"Webhook {event.id}: recorded subscription {subscription.id} "
            f"({obj.id}, {status.value}) for user {user_id}"
        )
        return ReconcileOutcome.APPLIED

    async def _on_subscription_updated(self, event: StripeEvent) -> ReconcileOutcome:
        obj = event.subscription_object()

        subscription = await self._subscriptions.get_by_external_ref(obj.id)
        if subscription is None:
            logger.warning(f"Webhook {event.id}: no local subscription for {obj.id}")
            return ReconcileOutcome.UNMATCHED

        status = map_provider_status(obj.status)
        now = utcnow()
        if status in LIVE_STATUSES and not subscription.is_live:
            # Only a pending period-end cancellation that Stripe no longer
            # carries counts as resumed. Superseded rows never come back.
            resumed = subscription.cancel_at_period_end and not obj.cancel_at_period_end
            if not resumed:
                logger.info(
                    f"Webhook {event.id}: {obj.id} is {obj.status} at Stripe; "
                    f"subscription {subscription.id} stays {subscription.status}"
                )
                return ReconcileOutcome.SKIPPED
            await self._supersede(subscription.user_id, now, exclude_id=subscription.id)
            await self._profiles.set_current_plan(subscription.user_id, subscription.plan_id)

        subscription.status = status.value
        subscription.ends_at = from_unix(obj.cancel_at)
        subscription.trial_ends_at = from_unix(obj.trial_end)
        subscription.cancel_at_period_end = obj.cancel_at_period_end
        subscription.updated_at = now
        await self._subscriptions.add(subscription)

        if status is SubscriptionStatus.CANCELED:
            await self._downgrade_owner(subscription)
        return ReconcileOutcome.APPLIED

    async def _on_subscription_deleted(self, event: StripeEvent) -> ReconcileOutcome:
        obj = event.subscription_object()

        subscription = await self._subscriptions.get_by_external_ref(obj.id)
        if subscription is None:
            logger.warning(f"Webhook {event.id}: no local subscription for {obj.id}")
            return ReconcileOutcome.UNMATCHED

        now = utcnow()
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.ends_at = now
        subscription.updated_at = now
        await self._subscriptions.add(subscription)

        await self._downgrade_owner(subscription)
        return ReconcileOutcome.APPLIED

    # =========================================================================
    # Invoice events
    # =========================================================================

    async def _on_payment_succeeded(self, event: StripeEvent) -> ReconcileOutcome:
        invoice = event.invoice_object()

        subscription = await self._subscription_for_invoice(event, invoice)
        if subscription is None:
            return ReconcileOutcome.UNMATCHED

        amount = from_minor_units(invoice.amount_paid)
        await self._transactions.add(
            TransactionModel(
                user_id=subscription.user_id,
                subscription_id=subscription.id,
                amount=amount,
                currency=invoice.currency.upper(),
                status=TransactionStatus.SUCCESS.value,
                kind=TransactionKind.PAYMENT.value,
                external_invoice_ref=invoice.id,
                external_payment_ref=invoice.payment_intent,
                payment_method="stripe",
                description=f"Pagamento da fatura {invoice.id}",
            )
        )

        if (
            invoice.billing_reason == RENEWAL_BILLING_REASON
            and subscription.status == SubscriptionStatus.TRIALING.value
        ):
            subscription.status = SubscriptionStatus.ACTIVE.value
            subscription.updated_at = utcnow()
            await self._subscriptions.add(subscription)
            logger.info(f"Webhook {event.id}: subscription {subscription.id} left trial")

        await self._daily_stats.increment(utcnow().date(), revenue=amount)
        return ReconcileOutcome.APPLIED

    async def _on_payment_failed(self, event: StripeEvent) -> ReconcileOutcome:
        invoice = event.invoice_object()

        subscription = await self._subscription_for_invoice(event, invoice)
        if subscription is None:
            return ReconcileOutcome.UNMATCHED

        await self._transactions.add(
            TransactionModel(
                user_id=subscription.user_id,
                subscription_id=subscription.id,
                amount=from_minor_units(invoice.amount_due),
                currency=invoice.currency.upper(),
                status=TransactionStatus.FAILURE.value,
                kind=TransactionKind.PAYMENT.value,
                external_invoice_ref=invoice.id,
                external_payment_ref=invoice.payment_intent,
                payment_method="stripe",
                description=f"Falha no pagamento da fatura {invoice.id}",
            )
        )

        if invoice.attempt_count > self._dunning_max_attempts:
            now = utcnow()
            subscription.status = SubscriptionStatus.EXPIRED.value
            subscription.ends_at = subscription.ends_at or now
            subscription.updated_at = now
            await self._subscriptions.add(subscription)
            await self._downgrade_owner(subscription)
            logger.warning(
                f"Webhook {event.id}: subscription {subscription.id} expired after "
                f"{invoice.attempt_count} failed attempts"
            )
        return ReconcileOutcome.APPLIED

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _subscription_for_invoice(
        self, event: StripeEvent, invoice: StripeInvoiceObject
    ) -> Optional[SubscriptionModel]:
        ref = invoice.subscription_ref
        subscription = await self._subscriptions.get_by_external_ref(ref) if ref else None
        if subscription is None:
            logger.warning(
                f"Webhook {event.id}: invoice {invoice.id} has no local subscription "
                f"(subscription={ref})"
            )
        return subscription

    async def _supersede(
        self, user_id: UUID, now: datetime, exclude_id: Optional[UUID] = None
    ) -> None:
        """Supersede live rows and queue their Stripe side for cancellation."""
        superseded = await self._subscriptions.supersede_live(user_id, now, exclude_id=exclude_id)
        self._superseded_refs.extend(
            row.external_subscription_ref for row in superseded if row.external_subscription_ref
        )

    async def _downgrade_owner(self, subscription: SubscriptionModel) -> None:
        """Move the owner to the free plan unless another row is still live."""
        live_elsewhere = await self._subscriptions.count(
            SubscriptionModel.user_id == subscription.user_id,
            SubscriptionModel.id != subscription.id,
            SubscriptionModel.status.in_(_LIVE_VALUES),
        )
        if live_elsewhere:
            logger.info(
                f"User {subscription.user_id} keeps another live subscription; "
                f"profile left unchanged"
            )
            return
        await self._profiles.set_current_plan(subscription.user_id, self._free_plan_id)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None
