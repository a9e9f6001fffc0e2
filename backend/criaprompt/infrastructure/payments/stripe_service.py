"""
Stripe Payment Service

Infrastructure service for Stripe billing calls.
Handles customers, subscriptions, checkout sessions, the billing portal
and webhook signature verification for one billing mode.

Every SDK call:
- runs off the event loop (``asyncio.to_thread``)
- is bounded by the HTTP timeout configured on the Stripe client
- is retried with exponential backoff on rate limits and connection errors
"""

import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable, Iterable, List, Optional
from uuid import uuid4

import stripe
from stripe import StripeError

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import BillingMode
from criaprompt.infrastructure.exceptions import (
    BillingProviderError,
    ConfigurationError,
    RejectedSignatureError,
)


logger = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (stripe.RateLimitError, stripe.APIConnectionError)


class StripeService:
    """
    Stripe billing client bound to one key pair.

    Args:
        api_key: Stripe secret key for this mode
        webhook_secret: Endpoint secret used to verify webhook signatures
        mode: Which key pair this is (for logging)
    """

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str],
        mode: BillingMode = BillingMode.TEST,
    ):
        settings = get_settings()
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._mode = mode
        self._tolerance = settings.stripe_webhook_tolerance_seconds
        self.MAX_RETRIES = settings.max_retries
        self.BASE_DELAY = settings.retry_base_delay
        self.MAX_DELAY = settings.retry_max_delay

        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.stripe_timeout_seconds
        )

    @property
    def mode(self) -> BillingMode:
        return self._mode

    def _require_api_key(self) -> str:
        if not self._api_key:
            raise ConfigurationError(
                f"Stripe secret key is not configured for mode '{self._mode.value}'",
                missing_keys=[
                    "STRIPE_SECRET_KEY" if self._mode is BillingMode.PRODUCTION
                    else "STRIPE_TEST_SECRET_KEY"
                ],
            )
        return self._api_key

    async def _retry_with_backoff(
        self,
        operation: Callable[..., Any],
        operation_name: str,
        *args,
        **kwargs
    ):
        """Execute a blocking SDK call with exponential backoff retry."""
        kwargs["api_key"] = self._require_api_key()
        last_exception: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await asyncio.to_thread(operation, *args, **kwargs)
            except _RETRYABLE_ERRORS as e:
                last_exception = e
                delay = min(self.BASE_DELAY * (2 ** attempt), self.MAX_DELAY)
                logger.warning(
                    f"Stripe {operation_name} transient error. "
                    f"Attempt {attempt + 1}/{self.MAX_RETRIES}. Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
            except StripeError as e:
                logger.error(f"Stripe {operation_name} failed: {e}")
                raise BillingProviderError(
                    f"Stripe {operation_name} failed: {e.user_message or e}",
                    operation=operation_name,
                    original_error=e,
                )

        logger.error(f"Stripe {operation_name} failed after {self.MAX_RETRIES} attempts")
        raise BillingProviderError(
            f"Stripe {operation_name} unavailable",
            operation=operation_name,
            original_error=last_exception,
        )

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def ensure_customer(
        self,
        user_id: str,
        email: str,
        existing_customer_id: Optional[str] = None,
    ) -> str:
        """
        Update the stored customer, or create a new one.

        Args:
            user_id: Internal user ID (stored in metadata)
            email: Customer email for receipts
            existing_customer_id: Customer id from the user's latest subscription

        Returns:
            Stripe customer id
        """
        if existing_customer_id:
            try:
                customer = await self._retry_with_backoff(
                    stripe.Customer.modify,
                    "customer update",
                    existing_customer_id,
                    email=email,
                )
                return customer.id
            except BillingProviderError:
                logger.warning(f"Customer {existing_customer_id} could not be updated, creating new")

        customer = await self._retry_with_backoff(
            stripe.Customer.create,
            "customer create",
            email=email,
            metadata={"user_id": user_id, "source": "criaprompt"},
            idempotency_key=f"customer-{user_id}-{uuid4()}",
        )
        logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    async def attach_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        """Attach a payment method and make it the customer's default."""
        await self._retry_with_backoff(
            stripe.PaymentMethod.attach,
            "payment method attach",
            payment_method_id,
            customer=customer_id,
        )
        await self._retry_with_backoff(
            stripe.Customer.modify,
            "customer update",
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        trial_end: int,
        metadata: dict[str, str],
        payment_method_id: Optional[str] = None,
    ) -> stripe.Subscription:
        """
        Create a subscription that starts in trial.

        Args:
            customer_id: Stripe customer ID
            price_id: Stripe Price of the plan
            trial_end: Unix timestamp when the trial ends
            metadata: Copied onto the subscription (``user_id``, ``plan_id``)
            payment_method_id: Default payment method, if already attached
        """
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "trial_end": trial_end,
            "metadata": metadata,
            "expand": ["latest_invoice.payment_intent"],
        }
        if payment_method_id:
            params["default_payment_method"] = payment_method_id

        subscription = await self._retry_with_backoff(
            stripe.Subscription.create,
            "subscription create",
            idempotency_key=f"subscription-{customer_id}-{uuid4()}",
            **params,
        )
        logger.info(
            f"Created Stripe subscription {subscription.id} for customer {customer_id}, "
            f"trial_end={trial_end}"
        )
        return subscription

    async def cancel_subscription(
        self,
        subscription_id: str,
        cancel_at_period_end: bool = True,
    ) -> stripe.Subscription:
        """
        Cancel a subscription.

        Args:
            subscription_id: Stripe subscription ID
            cancel_at_period_end: If True, cancel at end of billing period;
                otherwise terminate immediately
        """
        if cancel_at_period_end:
            subscription = await self._retry_with_backoff(
                stripe.Subscription.modify,
                "subscription cancel",
                subscription_id,
                cancel_at_period_end=True,
            )
        else:
            subscription = await self._retry_with_backoff(
                stripe.Subscription.cancel,
                "subscription cancel",
                subscription_id,
            )

        logger.info(
            f"Cancelled subscription {subscription_id}, "
            f"at_period_end={cancel_at_period_end}"
        )
        return subscription

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: Optional[str],
        customer_email: Optional[str],
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> stripe.checkout.Session:
        """
        Create a hosted Checkout Session for a subscription.

        The subscription itself is created by Stripe after payment and
        reaches us through the ``customer.subscription.created`` webhook,
        so ``metadata`` is copied onto it via ``subscription_data``.
        """
        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": _with_session_id(success_url),
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        session = await self._retry_with_backoff(
            stripe.checkout.Session.create,
            "checkout session create",
            idempotency_key=f"checkout-{metadata.get('user_id')}-{uuid4()}",
            **params,
        )
        logger.info(f"Created checkout session {session.id} for user {metadata.get('user_id')}")
        return session

    # =========================================================================
    # Customer Portal
    # =========================================================================

    async def create_portal_session(
        self,
        customer_id: str,
        return_url: str,
    ) -> stripe.billing_portal.Session:
        """Create a Billing Portal session for self-service management."""
        session = await self._retry_with_backoff(
            stripe.billing_portal.Session.create,
            "portal session create",
            customer=customer_id,
            return_url=return_url,
        )
        logger.info(f"Created portal session for customer {customer_id}")
        return session

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> None:
        """
        Verify a webhook's ``Stripe-Signature`` header.

        Raises:
            RejectedSignatureError: secret missing, header missing or mismatch
        """
        if not self._webhook_secret:
            raise RejectedSignatureError(
                f"Webhook secret is not configured for mode '{self._mode.value}'"
            )
        if not signature:
            raise RejectedSignatureError("Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self._webhook_secret,
                self._tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            raise RejectedSignatureError(f"Invalid signature: {e}", original_error=e)


def _with_session_id(success_url: str) -> str:
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}session_id={{CHECKOUT_SESSION_ID}}"


async def release_superseded(service: StripeService, refs: Iterable[Optional[str]]) -> List[str]:
    """
    Cancel, immediately, the Stripe subscriptions behind superseded rows.

    Runs after the local rows are already canceled. A failure is logged for
    manual follow-up and does not undo the local transition.

    Returns:
        Stripe ids that could not be cancelled
    """
    failed = []
    for ref in refs:
        if not ref:
            continue
        try:
            await service.cancel_subscription(ref, cancel_at_period_end=False)
        except (BillingProviderError, ConfigurationError):
            logger.exception(
                f"Superseded Stripe subscription {ref} is still running "
                f"and must be cancelled by hand"
            )
            failed.append(ref)
    return failed


# =============================================================================
# Per-mode Instances (Dependency Injection Ready)
# =============================================================================

@lru_cache
def get_stripe_service(mode: BillingMode) -> StripeService:
    """Get the cached Stripe service for a billing mode."""
    settings = get_settings()
    if mode is BillingMode.PRODUCTION:
        return StripeService(settings.stripe_secret_key, settings.stripe_webhook_secret, mode)
    return StripeService(settings.stripe_test_secret_key, settings.stripe_test_webhook_secret, mode)
