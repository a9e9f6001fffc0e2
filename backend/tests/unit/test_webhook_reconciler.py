"""
Unit tests for Stripe webhook reconciliation.

Deliveries are signed with the test-mode webhook secret and verified by
the real StripeService, so signature handling is exercised end to end.
"""

import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import stripe
from sqlalchemy import func, select

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import SubscriptionStatus
from criaprompt.domain.webhook_events import ReconcileOutcome
from criaprompt.infrastructure.db.models import (
    DailyStatModel,
    SubscriptionModel,
    TransactionModel,
)
from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.exceptions import (
    ConfigurationError,
    RejectedSignatureError,
    ValidationError,
)
from criaprompt.infrastructure.services.webhook_reconciler import WebhookReconciler

from conftest import (
    add_profile,
    add_subscription,
    as_utc,
    fetch_profile,
    fetch_subscriptions,
    make_event,
    set_flag,
    sign_payload,
)


TEST_SECRET = "whsec_test_placeholder"


def subscription_object(user_id, plan_id=2, status="trialing", sub_id="sub_abc", **extra):
    now = int(time.time())
    obj = {
        "id": sub_id,
        "object": "subscription",
        "customer": "cus_abc",
        "status": status,
        "start_date": now,
        "trial_end": now + 7 * 86400 if status == "trialing" else None,
        "cancel_at": None,
        "cancel_at_period_end": False,
        "metadata": {"user_id": str(user_id), "plan_id": str(plan_id)},
    }
    obj.update(extra)
    return obj


def invoice_object(sub_id="sub_abc", amount=2990, **extra):
    obj = {
        "id": "in_001",
        "object": "invoice",
        "customer": "cus_abc",
        "subscription": sub_id,
        "payment_intent": "pi_001",
        "amount_paid": amount,
        "amount_due": amount,
        "currency": "brl",
        "billing_reason": "subscription_create",
        "attempt_count": 1,
    }
    obj.update(extra)
    return obj


@pytest.fixture
def reconciler(session, real_stripe_factory):
    return WebhookReconciler(session, real_stripe_factory)


async def deliver(reconciler, event_type, obj, secret=TEST_SECRET, event_id=None):
    payload = make_event(event_type, obj, event_id)
    return await reconciler.handle_event(payload, sign_payload(payload, secret))


async def count_rows(session, model):
    return await session.scalar(select(func.count()).select_from(model))


async def rows_by_ref(session, user_id):
    rows = await fetch_subscriptions(session, user_id)
    return {row.external_subscription_ref: row for row in rows}


class TestSignature:

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected_without_writes(
        self, session, plans, user_id, reconciler
    ):
        with pytest.raises(RejectedSignatureError):
            await deliver(
                reconciler,
                "customer.subscription.created",
                subscription_object(user_id),
                secret="whsec_someone_else",
            )

        assert await count_rows(session, SubscriptionModel) == 0

    @pytest.mark.asyncio
    async def test_missing_header_rejected(self, session, plans, user_id, reconciler):
        payload = make_event("customer.subscription.created", subscription_object(user_id))

        with pytest.raises(RejectedSignatureError):
            await reconciler.handle_event(payload, None)

    @pytest.mark.asyncio
    async def test_tampered_payload_rejected(self, session, plans, user_id, reconciler):
        payload = make_event("customer.subscription.created", subscription_object(user_id))
        signature = sign_payload(payload, TEST_SECRET)
        tampered = payload.replace(b'"plan_id": "2"', b'"plan_id": "3"')

        with pytest.raises(RejectedSignatureError):
            await reconciler.handle_event(tampered, signature)

    @pytest.mark.asyncio
    async def test_production_mode_uses_live_secret(self, session, plans, user_id, reconciler):
        await set_flag(session, "modo_stripe", "producao")
        live_secret = get_settings().stripe_webhook_secret

        with pytest.raises(RejectedSignatureError):
            await deliver(reconciler, "customer.subscription.created", subscription_object(user_id))

        outcome = await deliver(
            reconciler,
            "customer.subscription.created",
            subscription_object(user_id),
            secret=live_secret,
        )
        assert outcome is ReconcileOutcome.APPLIED

    @pytest.mark.asyncio
    async def test_signed_garbage_is_validation_error(self, session, plans, reconciler):
        payload = b'{"not": "an event"}'

        with pytest.raises(ValidationError):
            await reconciler.handle_event(payload, sign_payload(payload, TEST_SECRET))

    @pytest.mark.asyncio
    async def test_unknown_event_type_ignored(self, session, plans, reconciler):
        outcome = await deliver(reconciler, "charge.refunded", {"id": "ch_1"})

        assert outcome is ReconcileOutcome.IGNORED


class TestSubscriptionCreated:

    @pytest.mark.asyncio
    async def test_records_subscription_and_profile(self, session, plans, user_id, reconciler):
        outcome = await deliver(
            reconciler, "customer.subscription.created", subscription_object(user_id)
        )

        assert outcome is ReconcileOutcome.APPLIED
        rows = await fetch_subscriptions(session, user_id)
        assert len(rows) == 1
        assert rows[0].status == SubscriptionStatus.TRIALING.value
        assert rows[0].external_subscription_ref == "sub_abc"
        assert rows[0].external_customer_ref == "cus_abc"
        assert as_utc(rows[0].trial_ends_at) > utcnow()

        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 2

    @pytest.mark.asyncio
    async def test_redelivery_is_duplicate(self, session, plans, user_id, reconciler):
        obj = subscription_object(user_id)
        await deliver(reconciler, "customer.subscription.created", obj, event_id="evt_1")

        outcome = await deliver(
            reconciler, "customer.subscription.created", obj, event_id="evt_1"
        )

        assert outcome is ReconcileOutcome.DUPLICATE
        assert len(await fetch_subscriptions(session, user_id)) == 1

    @pytest.mark.asyncio
    async def test_supersedes_free_subscription(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 1, SubscriptionStatus.ACTIVE)

        await deliver(
            reconciler,
            "customer.subscription.created",
            subscription_object(user_id, status="active"),
        )

        rows = await fetch_subscriptions(session, user_id)
        assert [row.status for row in rows] == ["canceled", "active"]

    @pytest.mark.asyncio
    async def test_superseded_paid_subscription_cancelled_at_stripe(
        self, session, plans, user_id, reconciler
    ):
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_old")
        cancel = MagicMock(return_value=MagicMock(id="sub_old"))

        with patch("stripe.Subscription.cancel", cancel):
            outcome = await deliver(
                reconciler,
                "customer.subscription.created",
                subscription_object(user_id, plan_id=3, status="active", sub_id="sub_new"),
            )

        assert outcome is ReconcileOutcome.APPLIED
        assert cancel.call_count == 1
        assert cancel.call_args.args[0] == "sub_old"
        assert cancel.call_args.kwargs["api_key"] == "sk_test_placeholder"

    @pytest.mark.asyncio
    async def test_stripe_failure_on_superseded_row_keeps_event_applied(
        self, session, plans, user_id, reconciler
    ):
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_old")
        cancel = MagicMock(side_effect=stripe.InvalidRequestError("No such subscription", "id"))

        with patch("stripe.Subscription.cancel", cancel):
            outcome = await deliver(
                reconciler,
                "customer.subscription.created",
                subscription_object(user_id, plan_id=3, status="active", sub_id="sub_new"),
            )

        assert outcome is ReconcileOutcome.APPLIED
        rows = await rows_by_ref(session, user_id)
        assert rows["sub_old"].status == SubscriptionStatus.CANCELED.value
        assert rows["sub_new"].status == SubscriptionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_missing_metadata_skipped(self, session, plans, user_id, reconciler):
        obj = subscription_object(user_id, metadata={})

        outcome = await deliver(reconciler, "customer.subscription.created", obj)

        assert outcome is ReconcileOutcome.SKIPPED
        assert await count_rows(session, SubscriptionModel) == 0

    @pytest.mark.asyncio
    async def test_legacy_plano_id_metadata(self, session, plans, user_id, reconciler):
        obj = subscription_object(
            user_id, metadata={"user_id": str(user_id), "plano_id": "3"}, status="active"
        )

        await deliver(reconciler, "customer.subscription.created", obj)

        rows = await fetch_subscriptions(session, user_id)
        assert rows[0].plan_id == 3

    @pytest.mark.asyncio
    async def test_unknown_plan_rolls_back(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 1, SubscriptionStatus.ACTIVE)

        with pytest.raises(ConfigurationError):
            await deliver(
                reconciler,
                "customer.subscription.created",
                subscription_object(user_id, plan_id=99),
            )

        rows = await fetch_subscriptions(session, user_id)
        assert [row.status for row in rows] == ["active"]

    @pytest.mark.asyncio
    async def test_handler_failure_rolls_back(self, session, plans, user_id, reconciler):
        with patch(
            "criaprompt.infrastructure.db.repositories.user_profile_repository."
            "UserProfileRepository.set_current_plan",
            side_effect=RuntimeError("boom"),
        ):
            with pytest.raises(RuntimeError):
                await deliver(
                    reconciler, "customer.subscription.created", subscription_object(user_id)
                )

        assert await count_rows(session, SubscriptionModel) == 0

    @pytest.mark.asyncio
    async def test_unknown_provider_status_is_pending(self, session, plans, user_id, reconciler):
        await deliver(
            reconciler,
            "customer.subscription.created",
            subscription_object(user_id, status="incomplete"),
        )

        rows = await fetch_subscriptions(session, user_id)
        assert rows[0].status == SubscriptionStatus.PENDING.value


class TestSubscriptionUpdated:

    @pytest.mark.asyncio
    async def test_unmatched(self, session, plans, user_id, reconciler):
        outcome = await deliver(
            reconciler, "customer.subscription.updated", subscription_object(user_id)
        )

        assert outcome is ReconcileOutcome.UNMATCHED
        assert await count_rows(session, SubscriptionModel) == 0

    @pytest.mark.asyncio
    async def test_status_and_dates_mirrored(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.TRIALING, "sub_abc")
        cancel_at = int(time.time()) + 30 * 86400

        await deliver(
            reconciler,
            "customer.subscription.updated",
            subscription_object(
                user_id, status="active", cancel_at=cancel_at, cancel_at_period_end=True
            ),
        )

        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.ACTIVE.value
        assert row.cancel_at_period_end is True
        assert int(as_utc(row.ends_at).timestamp()) == cancel_at

    @pytest.mark.asyncio
    async def test_canceled_downgrades_owner(self, session, plans, user_id, reconciler):
        await add_profile(session, user_id, plan_id=2)
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")

        await deliver(
            reconciler,
            "customer.subscription.updated",
            subscription_object(user_id, status="canceled"),
        )

        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 1

    @pytest.mark.asyncio
    async def test_unpaid_maps_to_expired(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")

        await deliver(
            reconciler,
            "customer.subscription.updated",
            subscription_object(user_id, status="unpaid"),
        )

        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.EXPIRED.value

    @pytest.mark.asyncio
    async def test_reactivation_keeps_single_live_row(self, session, plans, user_id, reconciler):
        await add_profile(session, user_id, plan_id=1)
        await add_subscription(
            session, user_id, 2, SubscriptionStatus.CANCELED, "sub_abc", cancel_at_period_end=True
        )
        await add_subscription(session, user_id, 1, SubscriptionStatus.ACTIVE)

        outcome = await deliver(
            reconciler,
            "customer.subscription.updated",
            subscription_object(user_id, status="active"),
        )

        assert outcome is ReconcileOutcome.APPLIED
        rows = await fetch_subscriptions(session, user_id)
        live = [row for row in rows if row.is_live]
        assert len(live) == 1
        assert live[0].external_subscription_ref == "sub_abc"
        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 2

    @pytest.mark.asyncio
    async def test_superseded_row_is_not_revived(self, session, plans, user_id, reconciler):
        await add_profile(session, user_id, plan_id=3)
        await add_subscription(session, user_id, 2, SubscriptionStatus.CANCELED, "sub_abc")
        await add_subscription(session, user_id, 3, SubscriptionStatus.TRIALING, "sub_new")

        outcome = await deliver(
            reconciler,
            "customer.subscription.updated",
            subscription_object(user_id, status="active"),
        )

        assert outcome is ReconcileOutcome.SKIPPED
        rows = await rows_by_ref(session, user_id)
        assert rows["sub_abc"].status == SubscriptionStatus.CANCELED.value
        assert rows["sub_new"].status == SubscriptionStatus.TRIALING.value
        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 3

    @pytest.mark.asyncio
    async def test_period_end_cancel_echo_stays_canceled(
        self, session, plans, user_id, reconciler
    ):
        await add_subscription(
            session, user_id, 2, SubscriptionStatus.CANCELED, "sub_abc", cancel_at_period_end=True
        )

        outcome = await deliver(
            reconciler,
            "customer.subscription.updated",
            subscription_object(user_id, status="active", cancel_at_period_end=True),
        )

        assert outcome is ReconcileOutcome.SKIPPED
        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.CANCELED.value


class TestSubscriptionDeleted:

    @pytest.mark.asyncio
    async def test_marks_canceled_and_downgrades(self, session, plans, user_id, reconciler):
        await add_profile(session, user_id, plan_id=2)
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")

        outcome = await deliver(
            reconciler,
            "customer.subscription.deleted",
            subscription_object(user_id, status="canceled"),
        )

        assert outcome is ReconcileOutcome.APPLIED
        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.CANCELED.value
        assert row.ends_at is not None
        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 1

    @pytest.mark.asyncio
    async def test_other_live_subscription_keeps_profile(
        self, session, plans, user_id, reconciler
    ):
        await add_profile(session, user_id, plan_id=3)
        await add_subscription(session, user_id, 2, SubscriptionStatus.CANCELED, "sub_abc")
        await add_subscription(session, user_id, 3, SubscriptionStatus.ACTIVE, "sub_new")

        await deliver(
            reconciler,
            "customer.subscription.deleted",
            subscription_object(user_id, status="canceled"),
        )

        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 3


class TestInvoicePaymentSucceeded:

    @pytest.mark.asyncio
    async def test_records_transaction_and_revenue(self, session, plans, user_id, reconciler):
        subscription = await add_subscription(
            session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc"
        )
        subscription_id = subscription.id

        outcome = await deliver(reconciler, "invoice.payment_succeeded", invoice_object())

        assert outcome is ReconcileOutcome.APPLIED
        txn = (await session.execute(select(TransactionModel))).scalar_one()
        assert txn.subscription_id == subscription_id
        assert txn.user_id == user_id
        assert txn.amount == Decimal("29.90")
        assert txn.currency == "BRL"
        assert txn.status == "success"
        assert txn.external_invoice_ref == "in_001"

        stat = await session.scalar(
            select(DailyStatModel).execution_options(populate_existing=True)
        )
        assert stat.revenue_total == Decimal("29.90")

    @pytest.mark.asyncio
    async def test_redelivery_counts_twice(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")

        await deliver(reconciler, "invoice.payment_succeeded", invoice_object(), event_id="evt_9")
        await deliver(reconciler, "invoice.payment_succeeded", invoice_object(), event_id="evt_9")

        assert await count_rows(session, TransactionModel) == 2
        stat = await session.scalar(
            select(DailyStatModel).execution_options(populate_existing=True)
        )
        assert stat.revenue_total == Decimal("59.80")

    @pytest.mark.asyncio
    async def test_renewal_ends_trial(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.TRIALING, "sub_abc")

        await deliver(
            reconciler,
            "invoice.payment_succeeded",
            invoice_object(billing_reason="subscription_cycle"),
        )

        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_first_invoice_keeps_trial(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.TRIALING, "sub_abc")

        await deliver(reconciler, "invoice.payment_succeeded", invoice_object(amount=0))

        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.TRIALING.value

    @pytest.mark.asyncio
    async def test_subscription_ref_from_parent_block(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")
        invoice = invoice_object(
            subscription=None,
            parent={"type": "subscription_details", "subscription_details": {"subscription": "sub_abc"}},
        )

        outcome = await deliver(reconciler, "invoice.payment_succeeded", invoice)

        assert outcome is ReconcileOutcome.APPLIED
        assert await count_rows(session, TransactionModel) == 1

    @pytest.mark.asyncio
    async def test_unmatched_invoice(self, session, plans, reconciler):
        outcome = await deliver(reconciler, "invoice.payment_succeeded", invoice_object())

        assert outcome is ReconcileOutcome.UNMATCHED
        assert await count_rows(session, TransactionModel) == 0


class TestInvoicePaymentFailed:

    @pytest.mark.asyncio
    async def test_records_failure(self, session, plans, user_id, reconciler):
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")

        await deliver(reconciler, "invoice.payment_failed", invoice_object(attempt_count=1))

        txn = (await session.execute(select(TransactionModel))).scalar_one()
        assert txn.status == "failure"
        assert txn.amount == Decimal("29.90")
        row = (await fetch_subscriptions(session, user_id))[0]
        assert row.status == SubscriptionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_expires_after_dunning_exhausted(self, session, plans, user_id, reconciler):
        await add_profile(session, user_id, plan_id=2)
        await add_subscription(session, user_id, 2, SubscriptionStatus.ACTIVE, "sub_abc")
        max_attempts = get_settings().dunning_max_attempts

        for attempt in range(1, max_attempts + 2):
            await deliver(
                reconciler,
                "invoice.payment_failed",
                invoice_object(attempt_count=attempt),
            )
            row = (await fetch_subscriptions(session, user_id))[0]
            if attempt <= max_attempts:
                assert row.status == SubscriptionStatus.ACTIVE.value

        assert row.status == SubscriptionStatus.EXPIRED.value
        assert row.ends_at is not None
        assert await count_rows(session, TransactionModel) == max_attempts + 1
        profile = await fetch_profile(session, user_id)
        assert profile.current_plan_id == 1
