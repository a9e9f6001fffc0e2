"""
Application Settings for CriaPrompt Billing

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.

Runtime flags that admins toggle without a deploy (SaaS enforcement,
Stripe test/production mode, trial length) live in the
``configuracoes_app`` table instead; see AppConfigRepository.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Stripe keys come in pairs: the production pair is used when
    ``configuracoes_app.modo_stripe`` is ``producao``, the test pair otherwise.
    """

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: str
    supabase_jwt_secret: Optional[str] = None

    # Stripe Configuration (production)
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # Stripe Configuration (test mode)
    stripe_test_secret_key: Optional[str] = None
    stripe_test_webhook_secret: Optional[str] = None

    # Outbound calls to Stripe
    stripe_timeout_seconds: float = 15.0
    stripe_webhook_tolerance_seconds: int = 300

    # Retry Configuration
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    # Billing rules
    free_plan_id: int = 1
    default_trial_days: int = 7
    dunning_max_attempts: int = 3

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    frontend_url: str = "http://localhost:3000"
    allowed_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    supabase_password: Optional[str] = None
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_billing_rules(self) -> "Settings":
        """Reject billing rules that would break the plan lifecycle."""
        if self.free_plan_id < 1:
            raise ValueError("FREE_PLAN_ID must be a positive plan id")
        if self.default_trial_days < 0:
            raise ValueError("DEFAULT_TRIAL_DAYS cannot be negative")
        if self.dunning_max_attempts < 1:
            raise ValueError("DUNNING_MAX_ATTEMPTS must be at least 1")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
