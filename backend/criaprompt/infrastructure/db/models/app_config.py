"""
App Configuration Model

Key/value runtime flags (``configuracoes_app``) editable from the admin panel.
"""

from typing import Optional

from sqlmodel import Field

from criaprompt.infrastructure.db.models.base import TimestampMixin


# Known keys
SAAS_ENABLED_KEY = "saas_ativo"
BILLING_MODE_KEY = "modo_stripe"
TRIAL_DAYS_KEY = "trial_dias"


class AppConfigModel(TimestampMixin, table=True):
    """One runtime flag. Values are stored as text."""

    __tablename__ = "configuracoes_app"

    chave: str = Field(primary_key=True, max_length=100)
    valor: Optional[str] = Field(default=None)
    description: Optional[str] = Field(default=None)
