"""
Test configuration and fixtures for CriaPrompt Billing.

Provides shared fixtures for unit and integration tests:
an in-memory SQLite database built from SQLModel metadata, a seeded plan
catalog, Stripe fakes and an httpx client wired to the FastAPI app.
"""

import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

# Settings are read at import time; give them something to load.
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_live_placeholder")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_live_placeholder")
os.environ.setdefault("STRIPE_TEST_SECRET_KEY", "sk_test_placeholder")
os.environ.setdefault("STRIPE_TEST_WEBHOOK_SECRET", "whsec_test_placeholder")
os.environ.setdefault("ENVIRONMENT", "testing")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from criaprompt.config.settings import get_settings
from criaprompt.domain.subscription import UNLIMITED, SubscriptionStatus
from criaprompt.infrastructure.db import models  # noqa: F401
from criaprompt.infrastructure.db.models import (
    PlanModel,
    SubscriptionModel,
    UserProfileModel,
)
from criaprompt.infrastructure.db.repositories import AppConfigRepository
from criaprompt.infrastructure.payments.stripe_service import StripeService


TEST_DATABASE_URL = "sqlite+aiosqlite://"

FREE_PLAN_ID = 1
PRO_PLAN_ID = 2
PREMIUM_PLAN_ID = 3
UNCONFIGURED_PLAN_ID = 4
RETIRED_PLAN_ID = 5


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: Optional[str] = None) -> bytes:
    """Serialize a minimal Stripe event envelope."""
    return json.dumps({
        "id": event_id or f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
async def plans(session):
    """Plan catalog used across tests."""
    catalog = {
        "free": PlanModel(
            id=FREE_PLAN_ID, name="Gratuito", price=Decimal("0"),
            prompt_quota=5, model_quota=2, display_order=0,
        ),
        "pro": PlanModel(
            id=PRO_PLAN_ID, name="Pro", price=Decimal("29.90"),
            prompt_quota=50, model_quota=20, display_order=1,
            external_price_ref="price_pro_monthly", features=["exportar", "modelos"],
        ),
        "premium": PlanModel(
            id=PREMIUM_PLAN_ID, name="Premium", price=Decimal("99.90"), interval="yearly",
            prompt_quota=UNLIMITED, model_quota=UNLIMITED, display_order=1,
            external_price_ref="price_premium_yearly",
        ),
        "unconfigured": PlanModel(
            id=UNCONFIGURED_PLAN_ID, name="Empresarial", price=Decimal("199.90"),
            prompt_quota=500, model_quota=100, display_order=3,
        ),
        "retired": PlanModel(
            id=RETIRED_PLAN_ID, name="Legado", price=Decimal("9.90"),
            prompt_quota=20, model_quota=5, display_order=4, active=False,
            external_price_ref="price_legacy",
        ),
    }
    session.add_all(catalog.values())
    await session.commit()
    return catalog


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_user_id() -> UUID:
    return uuid4()


async def set_flag(session: AsyncSession, key: str, value: str) -> None:
    await AppConfigRepository(session).set_value(key, value)
    await session.commit()


@pytest.fixture
async def saas_enabled(session):
    await set_flag(session, "saas_ativo", "true")


async def add_profile(
    session: AsyncSession,
    user_id: UUID,
    plan_id: Optional[int] = None,
    is_admin: bool = False,
) -> UserProfileModel:
    profile = UserProfileModel(user_id=user_id, current_plan_id=plan_id, is_admin=is_admin)
    session.add(profile)
    await session.commit()
    return profile


async def add_subscription(
    session: AsyncSession,
    user_id: UUID,
    plan_id: int,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    external_ref: Optional[str] = None,
    customer_ref: Optional[str] = None,
    cancel_at_period_end: bool = False,
) -> SubscriptionModel:
    subscription = SubscriptionModel(
        user_id=user_id,
        plan_id=plan_id,
        status=status.value,
        external_subscription_ref=external_ref,
        external_customer_ref=customer_ref,
        cancel_at_period_end=cancel_at_period_end,
    )
    session.add(subscription)
    await session.commit()
    return subscription


async def fetch_subscriptions(session: AsyncSession, user_id: UUID) -> list[SubscriptionModel]:
    result = await session.execute(
        select(SubscriptionModel)
        .where(SubscriptionModel.user_id == user_id)
        .order_by(SubscriptionModel.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def fetch_profile(session: AsyncSession, user_id: UUID) -> Optional[UserProfileModel]:
    return await session.get(UserProfileModel, user_id, populate_existing=True)


# =============================================================================
# Stripe Fixtures
# =============================================================================

@pytest.fixture
def stripe_mock():
    """Fake StripeService with canned responses."""
    mock = MagicMock(spec=StripeService)
    mock.ensure_customer = AsyncMock(return_value="cus_test123")
    mock.attach_payment_method = AsyncMock(return_value=None)
    mock.create_subscription = AsyncMock(return_value=MagicMock(id="sub_test123"))
    mock.cancel_subscription = AsyncMock(return_value=MagicMock(id="sub_test123"))
    mock.create_checkout_session = AsyncMock(
        return_value=MagicMock(id="cs_test_abc", url="https://checkout.stripe.com/c/pay/cs_test_abc")
    )
    mock.create_portal_session = AsyncMock(
        return_value=MagicMock(id="bps_test_abc", url="https://billing.stripe.com/p/session/test_abc")
    )
    return mock


@pytest.fixture
def stripe_factory(stripe_mock):
    """Per-mode lookup that always returns the fake."""
    return MagicMock(return_value=stripe_mock)


@pytest.fixture
def real_stripe_factory():
    """Per-mode lookup returning real clients, for signature verification."""
    settings = get_settings()
    services = {}

    def factory(mode):
        if mode not in services:
            if mode.value == "producao":
                services[mode] = StripeService(
                    settings.stripe_secret_key, settings.stripe_webhook_secret, mode
                )
            else:
                services[mode] = StripeService(
                    settings.stripe_test_secret_key, settings.stripe_test_webhook_secret, mode
                )
        return services[mode]

    return factory


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from criaprompt.main import app
    return app


@pytest.fixture
def current_user(user_id):
    from criaprompt.api.dependencies import AuthenticatedUser
    return AuthenticatedUser(id=user_id, email="ana@example.com")


@pytest.fixture
async def client(app, session, stripe_factory, current_user) -> AsyncGenerator[AsyncClient, None]:
    """Async client with database, Stripe and auth overridden."""
    from criaprompt.api.dependencies import get_current_user
    from criaprompt.infrastructure.db.database import get_session
    from criaprompt.infrastructure.db.dependencies import get_stripe_factory

    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_stripe_factory] = lambda: stripe_factory
    app.dependency_overrides[get_current_user] = lambda: current_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
