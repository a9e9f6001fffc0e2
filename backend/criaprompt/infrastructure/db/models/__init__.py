"""
SQLModel ORM Models for CriaPrompt

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from criaprompt.infrastructure.db.models.base import (
    CreatedAtMixin,
    TimestampMixin,
    UUIDMixin,
)
from criaprompt.infrastructure.db.models.plan import PlanModel
from criaprompt.infrastructure.db.models.subscription import SubscriptionModel
from criaprompt.infrastructure.db.models.transaction import TransactionModel
from criaprompt.infrastructure.db.models.user_profile import UserProfileModel
from criaprompt.infrastructure.db.models.daily_stat import DailyStatModel
from criaprompt.infrastructure.db.models.app_config import AppConfigModel
from criaprompt.infrastructure.db.models.audit_log import AuditLogModel
from criaprompt.infrastructure.db.models.resources import PromptModel, SmartTemplateModel


__all__ = [
    # Base
    "CreatedAtMixin",
    "TimestampMixin",
    "UUIDMixin",
    # Billing
    "PlanModel",
    "SubscriptionModel",
    "TransactionModel",
    "UserProfileModel",
    "DailyStatModel",
    "AppConfigModel",
    "AuditLogModel",
    # Quota-counted resources
    "PromptModel",
    "SmartTemplateModel",
]
