"""
Subscription API Routes

REST API endpoints for subscription management.
Errors raised by the service are mapped to HTTP statuses in main.py.
"""

import logging
from typing import Union
from uuid import UUID

from fastapi import APIRouter, Depends

from criaprompt.api.dependencies import (
    AppConfigRepoDep,
    AuthenticatedUser,
    SubscriptionServiceDep,
    get_current_user,
    get_is_admin,
    require_admin,
)
from criaprompt.domain.subscription import (
    CancelResponse,
    CheckoutResponse,
    CreateSubscriptionRequest,
    PortalResponse,
    PortalSessionRequest,
    SubscriptionCreatedResponse,
    SubscriptionDetailResponse,
    SubscriptionOverviewResponse,
    SubscriptionResponse,
    UpdateSubscriptionStatusRequest,
)
from criaprompt.infrastructure.exceptions import ForbiddenError, ValidationError
from criaprompt.infrastructure.services.user_directory_service import (
    UserDirectoryService,
    get_user_directory,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Subscription Status Endpoints
# =============================================================================

@router.get("/assinaturas", response_model=SubscriptionOverviewResponse)
async def get_my_subscriptions(
    service: SubscriptionServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Get the current user's subscription page data.

    Includes the current subscription with its plan, whether it is backed by
    a live payment, the full history, the ledger and the plan catalog.
    """
    return await service.get_overview(user.id)


@router.get("/assinaturas/{subscription_id}", response_model=SubscriptionDetailResponse)
async def get_subscription(
    subscription_id: UUID,
    service: SubscriptionServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
    is_admin: bool = Depends(get_is_admin),
):
    return await service.get_detail(subscription_id, user.id, is_admin)


# =============================================================================
# Sign-up Endpoints
# =============================================================================

@router.post(
    "/assinaturas",
    response_model=Union[SubscriptionCreatedResponse, CheckoutResponse],
)
async def create_subscription(
    request: CreateSubscriptionRequest,
    service: SubscriptionServiceDep,
    app_config: AppConfigRepoDep,
    user: AuthenticatedUser = Depends(get_current_user),
    directory: UserDirectoryService = Depends(get_user_directory),
):
    """
    Subscribe to a plan.

    - free plan: applied immediately
    - paid plan with ``paymentMethodId``: direct subscription with trial
    - paid plan otherwise: hosted checkout redirect
    """
    if not await app_config.is_saas_enabled():
        raise ForbiddenError("O sistema de assinaturas está desativado")

    email = user.email
    if not email:
        email = await directory.get_email(str(user.id))

    if request.payment_method_id:
        subscription = await service.create_paid_subscription(
            user.id, request.plan_id, email, request.payment_method_id
        )
        return SubscriptionCreatedResponse(
            subscription_id=subscription.external_subscription_ref,
            assinatura_id=subscription.id,
        )

    result = await service.change_plan(
        user.id, request.plan_id, email, request.success_url, request.cancel_url
    )
    if isinstance(result, CheckoutResponse):
        return result
    return SubscriptionCreatedResponse(assinatura_id=result.id)


# =============================================================================
# Portal Endpoints
# =============================================================================

@router.post("/assinaturas/portal", response_model=PortalResponse)
async def create_portal_session(
    request: PortalSessionRequest,
    service: SubscriptionServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Create a Stripe Customer Portal session.

    Allows customers to update payment methods and view invoices.
    """
    return await service.open_billing_portal(user.id, request.return_url)


# =============================================================================
# Status Changes
# =============================================================================

@router.put("/assinaturas/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription_status(
    subscription_id: UUID,
    request: UpdateSubscriptionStatusRequest,
    service: SubscriptionServiceDep,
    admin: AuthenticatedUser = Depends(require_admin),
):
    """Admin override of a subscription's status."""
    subscription = await service.set_status(subscription_id, request.status, admin.id)
    return SubscriptionResponse.model_validate(subscription)


@router.delete("/assinaturas/{subscription_id}", response_model=CancelResponse)
async def cancel_subscription(
    subscription_id: UUID,
    service: SubscriptionServiceDep,
    user: AuthenticatedUser = Depends(get_current_user),
    is_admin: bool = Depends(get_is_admin),
):
    """
    Cancel a subscription at the end of its billing period.

    The caller drops to the free plan immediately.
    """
    subscription = await service.cancel(subscription_id, user.id, is_admin)
    return CancelResponse(cancel_at_period_end=subscription.cancel_at_period_end)
