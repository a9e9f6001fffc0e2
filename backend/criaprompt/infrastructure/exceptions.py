"""
Custom Exceptions for CriaPrompt Billing

Hierarchical exception classes for proper error handling across layers.
Each class maps to one HTTP status in main.py.
"""

from typing import Optional, Dict, Any


class CriaPromptError(Exception):
    """Base exception for all CriaPrompt errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.message,
            "code": self.__class__.__name__,
            "details": self.details
        }


class ValidationError(CriaPromptError):
    """Raised when input validation fails."""
    pass


class ForbiddenError(CriaPromptError):
    """Raised when the caller does not own the resource and is not an admin."""
    pass


class DatabaseError(CriaPromptError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class PersistenceError(CriaPromptError):
    """
    Raised when a local write fails after an external side effect succeeded.

    ``details`` carries what an operator needs to reconcile by hand.
    """

    def __init__(
        self,
        message: str,
        external_subscription_id: Optional[str] = None,
        compensated: bool = False,
        original_error: Optional[Exception] = None
    ):
        details = {"compensated": compensated}
        if external_subscription_id:
            details["external_subscription_id"] = external_subscription_id
        super().__init__(message, details, original_error)


class PreconditionError(CriaPromptError):
    """Raised when an operation's precondition is not met."""
    pass


class UnconfiguredPlanError(PreconditionError):
    """Raised when a paid plan has no Stripe price attached."""

    def __init__(self, plan_id: int, original_error: Optional[Exception] = None):
        super().__init__(
            f"Plan {plan_id} is not configured in Stripe",
            {"plan_id": plan_id},
            original_error,
        )


class NoSubscriptionError(PreconditionError):
    """Raised when the user has no Stripe customer to manage."""
    pass


class BillingProviderError(CriaPromptError):
    """Raised when a Stripe API call fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class RejectedSignatureError(CriaPromptError):
    """Raised when a webhook payload fails signature verification."""
    pass


class ConfigurationError(CriaPromptError):
    """Raised when configuration or reference data is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class QuotaExceededError(CriaPromptError):
    """Raised by the quota guard when a plan limit is reached."""

    def __init__(self, decision):
        super().__init__(
            decision.reason or "Quota exceeded",
            {"limit": decision.limit, "current": decision.current},
        )
        self.decision = decision
