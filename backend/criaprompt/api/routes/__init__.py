# API Routes Module
from criaprompt.api.routes import (
    plans,
    subscriptions,
    webhooks,
    limits,
    resources,
)

__all__ = [
    "plans",
    "subscriptions",
    "webhooks",
    "limits",
    "resources",
]
