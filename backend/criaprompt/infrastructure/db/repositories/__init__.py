"""
Repository Layer for CriaPrompt

Exports all repository classes for dependency injection.
"""

from criaprompt.infrastructure.db.repositories.base_repository import (
    BaseRepository,
    IReadRepository,
)
from criaprompt.infrastructure.db.repositories.plan_repository import PlanRepository
from criaprompt.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from criaprompt.infrastructure.db.repositories.transaction_repository import (
    TransactionRepository,
)
from criaprompt.infrastructure.db.repositories.user_profile_repository import (
    UserProfileRepository,
)
from criaprompt.infrastructure.db.repositories.daily_stat_repository import (
    DailyStatRepository,
)
from criaprompt.infrastructure.db.repositories.app_config_repository import (
    AppConfigRepository,
)
from criaprompt.infrastructure.db.repositories.audit_log_repository import (
    AuditLogRepository,
)
from criaprompt.infrastructure.db.repositories.resource_repository import (
    ResourceRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    "IReadRepository",
    # Billing
    "PlanRepository",
    "SubscriptionRepository",
    "TransactionRepository",
    "UserProfileRepository",
    "DailyStatRepository",
    "AppConfigRepository",
    "AuditLogRepository",
    # Resources
    "ResourceRepository",
]
