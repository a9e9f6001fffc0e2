"""
Payments Infrastructure Module

Stripe billing adapter, one instance per billing mode.
"""

from criaprompt.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
    release_superseded,
)

__all__ = ["StripeService", "get_stripe_service", "release_superseded"]
