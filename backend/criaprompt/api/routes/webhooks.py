"""
Stripe Webhook Handler

Entry point for Stripe webhook deliveries.

Responses:
- 200 ``{"received": true}``: applied, duplicate, unmatched or ignored
- 400: bad signature or malformed payload (Stripe should not retry)
- 500: processing failed (Stripe retries the delivery)
"""

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from criaprompt.api.dependencies import WebhookReconcilerDep
from criaprompt.infrastructure.exceptions import RejectedSignatureError, ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/webhook")
async def stripe_webhook(request: Request, reconciler: WebhookReconcilerDep):
    """
    Handle Stripe webhook events.

    The raw body is passed through untouched for signature verification.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        outcome = await reconciler.handle_event(payload, signature)
    except RejectedSignatureError as e:
        logger.warning(f"Webhook signature verification failed: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid signature"},
        )
    except ValidationError as e:
        logger.warning(f"Webhook payload rejected: {e.message}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": e.message},
        )
    except Exception as e:
        logger.error(f"Webhook processing error: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    return {"received": True, "outcome": outcome.value}
