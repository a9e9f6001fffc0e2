"""
Dependency Injection Providers for CriaPrompt

Provides FastAPI dependencies for database sessions, repositories and the
billing services built on them.
"""

from typing import Annotated, AsyncGenerator, Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from criaprompt.domain.subscription import BillingMode
from criaprompt.infrastructure.db.database import get_session
from criaprompt.infrastructure.db.repositories import (
    AppConfigRepository,
    UserProfileRepository,
)
from criaprompt.infrastructure.payments.stripe_service import (
    StripeService,
    get_stripe_service,
)
from criaprompt.infrastructure.services.entitlement_service import EntitlementService
from criaprompt.infrastructure.services.plan_registry import PlanRegistry
from criaprompt.infrastructure.services.quota_service import QuotaService
from criaprompt.infrastructure.services.resource_service import ResourceService
from criaprompt.infrastructure.services.subscription_service import SubscriptionService
from criaprompt.infrastructure.services.webhook_reconciler import WebhookReconciler


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]


def get_stripe_factory() -> Callable[[BillingMode], StripeService]:
    """
    Dependency provider for the per-mode Stripe client lookup.

    Tests override this to hand out fakes.
    """
    return get_stripe_service


StripeFactoryDep = Annotated[Callable[[BillingMode], StripeService], Depends(get_stripe_factory)]


async def get_user_profile_repository(
    session: SessionDep,
) -> AsyncGenerator[UserProfileRepository, None]:
    """
    Dependency provider for UserProfileRepository.

    Usage:
        @router.get("/profile")
        async def get_profile(
            repo: UserProfileRepository = Depends(get_user_profile_repository)
        ):
            ...
    """
    yield UserProfileRepository(session)


async def get_app_config_repository(
    session: SessionDep,
) -> AsyncGenerator[AppConfigRepository, None]:
    yield AppConfigRepository(session)


async def get_plan_registry(session: SessionDep) -> AsyncGenerator[PlanRegistry, None]:
    yield PlanRegistry(session)


async def get_entitlement_service(
    session: SessionDep,
) -> AsyncGenerator[EntitlementService, None]:
    yield EntitlementService(session)


async def get_quota_service(session: SessionDep) -> AsyncGenerator[QuotaService, None]:
    yield QuotaService(session)


async def get_resource_service(session: SessionDep) -> AsyncGenerator[ResourceService, None]:
    yield ResourceService(session)


async def get_subscription_service(
    session: SessionDep,
    stripe_factory: StripeFactoryDep,
) -> AsyncGenerator[SubscriptionService, None]:
    yield SubscriptionService(session, stripe_factory)


async def get_webhook_reconciler(
    session: SessionDep,
    stripe_factory: StripeFactoryDep,
) -> AsyncGenerator[WebhookReconciler, None]:
    yield WebhookReconciler(session, stripe_factory)


# Type aliases for repository and service dependencies
UserProfileRepoDep = Annotated[
    UserProfileRepository,
    Depends(get_user_profile_repository)
]
AppConfigRepoDep = Annotated[AppConfigRepository, Depends(get_app_config_repository)]
PlanRegistryDep = Annotated[PlanRegistry, Depends(get_plan_registry)]
EntitlementServiceDep = Annotated[EntitlementService, Depends(get_entitlement_service)]
QuotaServiceDep = Annotated[QuotaService, Depends(get_quota_service)]
ResourceServiceDep = Annotated[ResourceService, Depends(get_resource_service)]
SubscriptionServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]
WebhookReconcilerDep = Annotated[WebhookReconciler, Depends(get_webhook_reconciler)]
