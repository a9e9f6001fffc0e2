"""
Subscription Domain Models

Domain models for plans, subscriptions and entitlements.
Enums, DTOs, and value objects for the billing bounded context.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# Quota value meaning "no limit" on a plan.
UNLIMITED = -1


class PlanInterval(str, Enum):
    """Billing interval for a plan."""
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    PENDING = "pending"
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"


# At most one subscription per user may be in one of these at a time.
LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class TransactionStatus(str, Enum):
    """Ledger entry outcome."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    REFUND = "refund"


class TransactionKind(str, Enum):
    """Ledger entry kind."""
    PAYMENT = "payment"
    REFUND = "refund"


class ResourceKind(str, Enum):
    """User-created resources that count against a plan quota."""
    PROMPT = "prompt"
    MODEL = "model"

    @property
    def label(self) -> str:
        """Portuguese plural used in user-facing quota messages."""
        return "prompts" if self is ResourceKind.PROMPT else "modelos"


class BillingMode(str, Enum):
    """Stripe key pair selected by ``configuracoes_app.modo_stripe``."""
    TEST = "teste"
    PRODUCTION = "producao"


# =============================================================================
# Value Objects
# =============================================================================

class Entitlement(BaseModel):
    """Resolved plan and quotas for one user."""
    plan_id: int
    prompt_quota: int
    model_quota: int
    is_admin: bool = False
    has_active_payment: bool = False

    def quota_for(self, kind: ResourceKind) -> int:
        """Quota for a resource kind. -1 means unlimited."""
        if kind is ResourceKind.PROMPT:
            return self.prompt_quota
        return self.model_quota


class QuotaCheckResponse(BaseModel):
    """Wire shape of a quota check, consumed by resource-creation routes."""
    model_config = ConfigDict(populate_by_name=True)

    permitido: bool
    erro: Optional[str] = None
    status: Optional[int] = None
    plano_atual: Optional[int] = Field(default=None, alias="planoAtual")
    limite: Optional[int] = None
    utilizado: Optional[int] = None


class QuotaDecision(BaseModel):
    """Outcome of a quota check: allowed, or denied with the numbers."""
    allowed: bool
    reason: Optional[str] = None
    status_code: Optional[int] = None
    plan_id: Optional[int] = None
    limit: Optional[int] = None
    current: Optional[int] = None

    @classmethod
    def allow(
        cls,
        plan_id: Optional[int] = None,
        limit: Optional[int] = None,
        current: Optional[int] = None,
    ) -> "QuotaDecision":
        return cls(allowed=True, plan_id=plan_id, limit=limit, current=current)

    @classmethod
    def deny(
        cls,
        kind: ResourceKind,
        plan_id: int,
        limit: int,
        current: int,
    ) -> "QuotaDecision":
        return cls(
            allowed=False,
            reason=f"Você atingiu o limite de {limit} {kind.label} do seu plano.",
            status_code=403,
            plan_id=plan_id,
            limit=limit,
            current=current,
        )

    @classmethod
    def plan_not_found(cls) -> "QuotaDecision":
        """The user's profile points at a plan that does not exist."""
        return cls(allowed=False, reason="Plano não encontrado", status_code=400)

    def to_response(self) -> QuotaCheckResponse:
        return QuotaCheckResponse(
            permitido=self.allowed,
            erro=self.reason,
            status=self.status_code,
            plano_atual=self.plan_id,
            limite=self.limit,
            utilizado=self.current,
        )


# =============================================================================
# Request/Response DTOs
# =============================================================================

class PlanResponse(BaseModel):
    """Public view of a plan."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    interval: PlanInterval
    prompt_quota: int
    model_quota: int
    features: list[str] = Field(default_factory=list)
    active: bool
    display_order: int = 0


class TransactionResponse(BaseModel):
    """Ledger entry as shown to the subscriber."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: Optional[UUID] = None
    amount: Decimal
    currency: str
    status: TransactionStatus
    kind: TransactionKind
    external_invoice_ref: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class SubscriptionResponse(BaseModel):
    """Subscription with its plan attached."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    plan_id: int
    status: SubscriptionStatus
    external_customer_ref: Optional[str] = None
    external_subscription_ref: Optional[str] = None
    started_at: datetime
    ends_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: datetime
    updated_at: datetime
    plan: Optional[PlanResponse] = None


class SubscriptionDetailResponse(SubscriptionResponse):
    """Subscription with plan and ledger."""
    transactions: list[TransactionResponse] = Field(default_factory=list)


class SubscriptionOverviewResponse(BaseModel):
    """Everything the subscription page needs in one call."""
    model_config = ConfigDict(populate_by_name=True)

    assinatura_atual: Optional[SubscriptionResponse] = Field(default=None, alias="assinaturaAtual")
    plano_ativo: bool = Field(alias="planoAtivo")
    historico_assinaturas: list[SubscriptionResponse] = Field(alias="historicoAssinaturas")
    transacoes: list[TransactionResponse]
    planos_disponiveis: list[PlanResponse] = Field(alias="planosDisponiveis")


class CreateSubscriptionRequest(BaseModel):
    """Request DTO for subscribing to or switching plans."""
    model_config = ConfigDict(populate_by_name=True)

    plan_id: int = Field(..., alias="planoId", description="Target plan")
    success_url: Optional[str] = Field(default=None, alias="successUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")
    payment_method_id: Optional[str] = Field(
        default=None,
        alias="paymentMethodId",
        description="Stripe payment method; when present the subscription is created directly",
    )


class UpdateSubscriptionStatusRequest(BaseModel):
    """Admin override of a subscription status."""
    status: SubscriptionStatus


class PortalSessionRequest(BaseModel):
    """Request DTO for creating a billing portal session."""
    model_config = ConfigDict(populate_by_name=True)

    return_url: str = Field(..., alias="returnUrl", description="URL to return to after portal session")


class CheckoutResponse(BaseModel):
    """Response DTO for a hosted checkout redirect."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    url: str


class SubscriptionCreatedResponse(BaseModel):
    """Response DTO for a subscription created without checkout."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    assinatura_id: Optional[UUID] = Field(default=None, alias="assinaturaId")


class PortalResponse(BaseModel):
    """Response DTO for portal session creation."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    url: str


class CancelResponse(BaseModel):
    """Response DTO for a cancellation request."""
    success: bool = True
    cancel_at_period_end: bool = True
