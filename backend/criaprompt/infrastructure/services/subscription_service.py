"""
Subscription Service

Owns the user-initiated subscription lifecycle: free and paid sign-ups,
plan changes through hosted checkout, cancellation, admin status
overrides and the billing portal.

Every transition writes the subscription row and the profile's
``current_plan_id`` in the same session and commits once.
"""

import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import (
    BillingMode,
    CheckoutResponse,
    LIVE_STATUSES,
    PlanResponse,
    PortalResponse,
    SubscriptionDetailResponse,
    SubscriptionOverviewResponse,
    SubscriptionResponse,
    SubscriptionStatus,
    TransactionResponse,
)
from criaprompt.infrastructure.db.models.base import utcnow
from criaprompt.infrastructure.db.models.plan import PlanModel
from criaprompt.infrastructure.db.models.subscription import SubscriptionModel
from criaprompt.infrastructure.db.repositories.app_config_repository import (
    AppConfigRepository,
)
from criaprompt.infrastructure.db.repositories.audit_log_repository import (
    AuditLogRepository,
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
from criaprompt.infrastructure.exceptions import (
    ForbiddenError,
    NoSubscriptionError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    UnconfiguredPlanError,
    ValidationError,
)
from criaprompt.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
    release_superseded,
)
from criaprompt.infrastructure.services.entitlement_service import EntitlementService
from criaprompt.infrastructure.services.plan_registry import PlanRegistry


logger = logging.getLogger(__name__)

StripeFactory = Callable[[BillingMode], StripeService]


def _snapshot(subscription: SubscriptionModel) -> dict:
    """JSON-safe copy of the fields an audit entry records."""
    return {
        "status": subscription.status,
        "plan_id": subscription.plan_id,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "ends_at": subscription.ends_at.isoformat() if subscription.ends_at else None,
    }


class SubscriptionService:
    """
    Subscription lifecycle controller.

    Args:
        session: Async database session (this service commits it)
        stripe_factory: Returns the Stripe client for a billing mode
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_factory: StripeFactory = get_stripe_service,
    ):
        settings = get_settings()
        self._session = session
        self._stripe_factory = stripe_factory
        self._free_plan_id = settings.free_plan_id
        self._default_trial_days = settings.default_trial_days

        self._registry = PlanRegistry(session)
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._transactions = TransactionRepository(session)
        self._profiles = UserProfileRepository(session)
        self._app_config = AppConfigRepository(session)
        self._audit = AuditLogRepository(session)
        self._entitlements = EntitlementService(session, self._free_plan_id)

    async def _billing(self) -> StripeService:
        """Stripe client for the mode currently selected in app config."""
        mode = await self._app_config.billing_mode()
        return self._stripe_factory(mode)

    # =========================================================================
    # Sign-up and plan changes
    # =========================================================================

    async def create_free_subscription(self, user_id: UUID, plan_id: int) -> SubscriptionModel:
        """
        Move the user onto a free plan. Never calls Stripe.

        Raises:
            NotFoundError: unknown plan
            ValidationError: the plan is not free
        """
        plan = await self._registry.get_plan(plan_id)
        if not plan.is_free:
            raise ValidationError(
                f"Plan {plan_id} is not free", {"plan_id": plan_id, "price": str(plan.price)}
            )

        previous = await self._subscriptions.get_current_for_user(user_id)
        now = utcnow()
        superseded = await self._subscriptions.supersede_live(user_id, now)

        subscription = await self._subscriptions.add(
            SubscriptionModel(
                user_id=user_id,
                plan_id=plan_id,
                status=SubscriptionStatus.ACTIVE.value,
                external_customer_ref=previous.external_customer_ref if previous else None,
                started_at=now,
            )
        )
        await self._profiles.set_current_plan(user_id, plan_id)
        await self._session.commit()
        await self._release(superseded)

        logger.info(f"User {user_id} moved to free plan {plan_id} (subscription {subscription.id})")
        return subscription

    async def create_paid_subscription(
        self,
        user_id: UUID,
        plan_id: int,
        email: Optional[str],
        payment_method_id: Optional[str] = None,
    ) -> SubscriptionModel:
        """
        Create a Stripe subscription in trial and record it locally.

        If the local write fails after Stripe accepted the subscription, the
        Stripe subscription is cancelled immediately so the user is never
        billed for something we have no record of.

        Raises:
            UnconfiguredPlanError: the plan has no Stripe price
            BillingProviderError: a Stripe call failed
            PersistenceError: the local write failed after Stripe succeeded
        """
        plan = await self._require_paid_plan(plan_id)
        if not email:
            raise ValidationError("An email address is required to create a paid subscription")

        stripe = await self._billing()
        previous = await self._subscriptions.get_current_for_user(user_id)
        customer_id = await stripe.ensure_customer(
            str(user_id),
            email,
            previous.external_customer_ref if previous else None,
        )

        trial_days = await self._app_config.trial_days(self._default_trial_days)
        now = utcnow()
        trial_end = now + timedelta(days=trial_days)

        if payment_method_id:
            await stripe.attach_payment_method(customer_id, payment_method_id)

        external = await stripe.create_subscription(
            customer_id=customer_id,
            price_id=plan.external_price_ref,
            trial_end=int(trial_end.timestamp()),
            metadata={"user_id": str(user_id), "plan_id": str(plan_id)},
            payment_method_id=payment_method_id,
        )

        try:
            superseded = await self._subscriptions.supersede_live(user_id, now)
            subscription = await self._subscriptions.add(
                SubscriptionModel(
                    user_id=user_id,
                    plan_id=plan_id,
                    status=SubscriptionStatus.TRIALING.value,
                    external_customer_ref=customer_id,
                    external_subscription_ref=external.id,
                    started_at=now,
                    ends_at=trial_end,
                    trial_ends_at=trial_end,
                )
            )
            await self._profiles.set_current_plan(user_id, plan_id)
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            if isinstance(e, IntegrityError):
                recorded = await self._adopt_webhook_row(user_id, plan_id, external.id)
                if recorded is not None:
                    return recorded
            compensated = await self._compensate(stripe, external.id)
            raise PersistenceError(
                f"Could not record subscription {external.id} for user {user_id}",
                external_subscription_id=external.id,
                compensated=compensated,
                original_error=e,
            )

        await self._release(superseded, stripe)
        logger.info(
            f"User {user_id} started trial on plan {plan_id} "
            f"(subscription {subscription.id}, stripe {external.id})"
        )
        return subscription

    async def _adopt_webhook_row(
        self, user_id: UUID, plan_id: int, external_ref: str
    ) -> Optional[SubscriptionModel]:
        # The created webhook can land before our own insert commits.
        existing = await self._subscriptions.get_by_external_ref(external_ref)
        if existing is None:
            return None
        logger.info(f"Subscription {external_ref} was already recorded by webhook")
        await self._profiles.set_current_plan(user_id, plan_id)
        await self._session.commit()
        return existing

    async def _compensate(self, stripe: StripeService, external_ref: str) -> bool:
        try:
            await stripe.cancel_subscription(external_ref, cancel_at_period_end=False)
        except Exception:
            logger.exception(
                f"Compensation failed: Stripe subscription {external_ref} is orphaned "
                f"and must be cancelled by hand"
            )
            return False
        logger.warning(f"Compensated: cancelled orphaned Stripe subscription {external_ref}")
        return True

    async def _release(
        self,
        superseded: List[SubscriptionModel],
        stripe: Optional[StripeService] = None,
    ) -> None:
        """Stop Stripe billing for rows that were just superseded locally."""
        refs = [row.external_subscription_ref for row in superseded if row.external_subscription_ref]
        if not refs:
            return
        stripe = stripe or await self._billing()
        await release_superseded(stripe, refs)

    async def change_plan(
        self,
        user_id: UUID,
        plan_id: int,
        email: Optional[str],
        success_url: Optional[str],
        cancel_url: Optional[str],
    ) -> Union[SubscriptionModel, CheckoutResponse]:
        """
        Switch plans.

        Free targets are applied immediately. Paid targets return a hosted
        checkout redirect; the subscription row is created later by the
        ``customer.subscription.created`` webhook.

        Raises:
            UnconfiguredPlanError: paid plan without a Stripe price (checked
                before any Stripe call)
            ValidationError: redirect URLs missing for a paid plan
        """
        plan = await self._registry.get_plan(plan_id)
        if plan.is_free:
            return await self.create_free_subscription(user_id, plan_id)

        plan = await self._require_paid_plan(plan_id)
        if not success_url or not cancel_url:
            raise ValidationError("successUrl and cancelUrl are required for paid plans")

        stripe = await self._billing()
        previous = await self._subscriptions.get_current_for_user(user_id)
        metadata = {"user_id": str(user_id), "plan_id": str(plan_id)}
        session = await stripe.create_checkout_session(
            customer_id=previous.external_customer_ref if previous else None,
            customer_email=email,
            price_id=plan.external_price_ref,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        return CheckoutResponse(session_id=session.id, url=session.url)

    async def _require_paid_plan(self, plan_id: int) -> PlanModel:
        plan = await self._registry.get_plan(plan_id)
        if plan.is_free:
            raise ValidationError(f"Plan {plan_id} is free", {"plan_id": plan_id})
        if not plan.external_price_ref:
            logger.error(f"Plan {plan_id} has no Stripe price configured")
            raise UnconfiguredPlanError(plan_id)
        return plan

    # =========================================================================
    # Cancellation and status changes
    # =========================================================================

    async def cancel(
        self,
        subscription_id: UUID,
        user_id: UUID,
        is_admin: bool = False,
    ) -> SubscriptionModel:
        """
        Cancel a subscription at period end.

        The local row is marked canceled right away and the owner drops to
        the free plan immediately, even though Stripe keeps the subscription
        running until the period ends. Only the live row can be cancelled;
        older rows are history.

        Raises:
            NotFoundError: unknown subscription
            ForbiddenError: caller is neither the owner nor an admin
            PreconditionError: the subscription is not active or trialing
        """
        subscription = await self._get_subscription(subscription_id)
        if subscription.user_id != user_id and not is_admin:
            raise ForbiddenError(
                "You cannot cancel a subscription that is not yours",
                {"subscription_id": str(subscription_id)},
            )
        if not subscription.is_live:
            raise PreconditionError(
                f"Subscription {subscription_id} is {subscription.status} and cannot be cancelled",
                {"subscription_id": str(subscription_id), "status": subscription.status},
            )

        old_data = _snapshot(subscription)
        if subscription.external_subscription_ref:
            stripe = await self._billing()
            await stripe.cancel_subscription(
                subscription.external_subscription_ref, cancel_at_period_end=True
            )

        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.cancel_at_period_end = True
        subscription.updated_at = utcnow()
        subscription = await self._subscriptions.add(subscription)

        await self._profiles.set_current_plan(subscription.user_id, self._free_plan_id)
        await self._audit.record(
            user_id=user_id,
            action="cancel",
            table_name="assinaturas",
            record_id=str(subscription.id),
            old_data=old_data,
            new_data=_snapshot(subscription),
        )
        await self._session.commit()

        logger.info(f"Subscription {subscription.id} cancelled by {user_id}")
        return subscription

    async def set_status(
        self,
        subscription_id: UUID,
        status: SubscriptionStatus,
        actor_id: UUID,
    ) -> SubscriptionModel:
        """
        Admin override of a subscription status.

        A live status supersedes the owner's other live rows and points the
        profile at this plan; canceled or expired moves the owner to free.
        """
        subscription = await self._get_subscription(subscription_id)
        old_data = _snapshot(subscription)
        now = utcnow()

        superseded: List[SubscriptionModel] = []
        if status in LIVE_STATUSES:
            superseded = await self._subscriptions.supersede_live(
                subscription.user_id, now, exclude_id=subscription.id
            )
            await self._profiles.set_current_plan(subscription.user_id, subscription.plan_id)
        elif status in (SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED):
            subscription.ends_at = subscription.ends_at or now
            await self._profiles.set_current_plan(subscription.user_id, self._free_plan_id)

        subscription.status = status.value
        subscription.updated_at = now
        subscription = await self._subscriptions.add(subscription)

        await self._audit.record(
            user_id=actor_id,
            action="update_status",
            table_name="assinaturas",
            record_id=str(subscription.id),
            old_data=old_data,
            new_data=_snapshot(subscription),
        )
        await self._session.commit()
        await self._release(superseded)

        logger.info(f"Subscription {subscription.id} set to {status.value} by admin {actor_id}")
        return subscription

    # =========================================================================
    # Billing portal
    # =========================================================================

    async def open_billing_portal(self, user_id: UUID, return_url: str) -> PortalResponse:
        """
        Create a Stripe billing portal session.

        Raises:
            NoSubscriptionError: the latest subscription has no Stripe customer
        """
        current = await self._subscriptions.get_current_for_user(user_id)
        if current is None or not current.external_customer_ref:
            raise NoSubscriptionError("No billing account found for this user")

        stripe = await self._billing()
        session = await stripe.create_portal_session(current.external_customer_ref, return_url)
        return PortalResponse(session_id=session.id, url=session.url)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_overview(self, user_id: UUID) -> SubscriptionOverviewResponse:
        """Current subscription, payment flag, history, ledger and catalog."""
        history = await self._subscriptions.list_for_user(user_id)
        transactions = await self._transactions.list_for_user(user_id)
        entitlement = await self._entitlements.resolve(user_id)
        plans = await self._registry.list_active_plans()

        plan_views = await self._plan_views(history)
        responses = [self._to_response(sub, plan_views) for sub in history]

        return SubscriptionOverviewResponse(
            assinatura_atual=responses[0] if responses else None,
            plano_ativo=entitlement.has_active_payment,
            historico_assinaturas=responses,
            transacoes=[TransactionResponse.model_validate(tx) for tx in transactions],
            planos_disponiveis=[PlanResponse.model_validate(plan) for plan in plans],
        )

    async def get_detail(
        self,
        subscription_id: UUID,
        user_id: UUID,
        is_admin: bool = False,
    ) -> SubscriptionDetailResponse:
        """
        One subscription with its plan and ledger.

        Raises:
            NotFoundError: unknown subscription
            ForbiddenError: caller is neither the owner nor an admin
        """
        subscription = await self._get_subscription(subscription_id)
        if subscription.user_id != user_id and not is_admin:
            raise ForbiddenError("You cannot view a subscription that is not yours")

        plan_views = await self._plan_views([subscription])
        transactions = await self._transactions.list_for_subscription(subscription.id)
        base = self._to_response(subscription, plan_views)
        return SubscriptionDetailResponse(
            **base.model_dump(),
            transactions=[TransactionResponse.model_validate(tx) for tx in transactions],
        )

    async def _get_subscription(self, subscription_id: UUID) -> SubscriptionModel:
        subscription = await self._subscriptions.get_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                operation="get_subscription",
                table="assinaturas",
            )
        return subscription

    async def _plan_views(self, subscriptions: List[SubscriptionModel]) -> Dict[int, PlanResponse]:
        views: Dict[int, PlanResponse] = {}
        for plan_id in {sub.plan_id for sub in subscriptions}:
            plan = await self._plans.get_by_id(plan_id)
            if plan is not None:
                views[plan_id] = PlanResponse.model_validate(plan)
        return views

    @staticmethod
    def _to_response(
        subscription: SubscriptionModel,
        plan_views: Dict[int, PlanResponse],
    ) -> SubscriptionResponse:
        response = SubscriptionResponse.model_validate(subscription)
        return response.model_copy(update={"plan": plan_views.get(subscription.plan_id)})
