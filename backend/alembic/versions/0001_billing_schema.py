"""Billing schema: plans, subscriptions, ledger, profiles, stats, flags

Revision ID: 0001_billing_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_billing_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create the billing tables and the one-live-subscription index."""

    op.create_table(
        'planos',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('interval', sa.String(20), nullable=False, server_default='monthly'),
        sa.Column('prompt_quota', sa.Integer, nullable=False, server_default='-1'),
        sa.Column('model_quota', sa.Integer, nullable=False, server_default='-1'),
        sa.Column('features', sa.JSON, nullable=False, server_default='[]'),
        sa.Column('active', sa.Boolean, nullable=False, server_default='true'),
        sa.Column('display_order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('external_price_ref', sa.String(255)),
        *_timestamps(),
    )
    op.create_index('ix_planos_active', 'planos', ['active'])

    # Free tier sentinel (FREE_PLAN_ID)
    op.execute(
        "INSERT INTO planos (id, name, description, price, interval, prompt_quota, model_quota, "
        "features, active, display_order) VALUES (1, 'Gratuito', 'Plano gratuito', 0, "
        "'monthly', 10, 3, '[]', true, 0)"
    )

    op.create_table(
        'perfis_usuario',
        sa.Column('user_id', sa.Uuid, primary_key=True),
        sa.Column('current_plan_id', sa.Integer, sa.ForeignKey('planos.id')),
        sa.Column('is_admin', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('full_name', sa.String(255)),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'assinaturas',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, nullable=False),
        sa.Column('plan_id', sa.Integer, sa.ForeignKey('planos.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),

        # Stripe IDs
        sa.Column('external_customer_ref', sa.String(255)),
        sa.Column('external_subscription_ref', sa.String(255)),

        # Lifecycle dates
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True)),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True)),
        sa.Column('cancel_at_period_end', sa.Boolean, nullable=False, server_default='false'),
        *_timestamps(),
    )
    op.create_index('ix_assinaturas_user_id', 'assinaturas', ['user_id'])
    op.create_index('ix_assinaturas_external_customer_ref', 'assinaturas', ['external_customer_ref'])
    op.create_index(
        'ix_assinaturas_external_subscription_ref',
        'assinaturas',
        ['external_subscription_ref'],
        unique=True,
    )

    # At most one live subscription per user
    op.create_index(
        'uq_assinaturas_user_live',
        'assinaturas',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('active', 'trialing')"),
    )

    op.create_table(
        'transacoes',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, nullable=False),
        sa.Column('subscription_id', sa.Uuid, sa.ForeignKey('assinaturas.id')),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='BRL'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('kind', sa.String(20), nullable=False, server_default='payment'),
        sa.Column('external_invoice_ref', sa.String(255)),
        sa.Column('external_payment_ref', sa.String(255)),
        sa.Column('payment_method', sa.String(50)),
        sa.Column('description', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_transacoes_user_id', 'transacoes', ['user_id'])
    op.create_index('ix_transacoes_subscription_id', 'transacoes', ['subscription_id'])
    op.create_index('ix_transacoes_external_invoice_ref', 'transacoes', ['external_invoice_ref'])

    op.create_table(
        'estatisticas',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('date', sa.Date, nullable=False, unique=True),
        sa.Column('prompts_created', sa.Integer, nullable=False, server_default='0'),
        sa.Column('models_created', sa.Integer, nullable=False, server_default='0'),
        sa.Column('revenue_total', sa.Numeric(14, 2), nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table(
        'configuracoes_app',
        sa.Column('chave', sa.String(100), primary_key=True),
        sa.Column('valor', sa.Text),
        sa.Column('description', sa.Text),
        *_timestamps(),
    )
    op.execute(
        "INSERT INTO configuracoes_app (chave, valor, description) VALUES "
        "('saas_ativo', 'false', 'Habilita cobrança e limites de plano'), "
        "('modo_stripe', 'teste', 'teste | producao'), "
        "('trial_dias', '7', 'Dias de teste gratuito')"
    )

    op.create_table(
        'logs_auditoria',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('table_name', sa.String(100), nullable=False),
        sa.Column('record_id', sa.String(100), nullable=False),
        sa.Column('old_data', sa.JSON),
        sa.Column('new_data', sa.JSON),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_logs_auditoria_user_id', 'logs_auditoria', ['user_id'])

    op.create_table(
        'prompts',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('category', sa.String(100)),
        sa.Column('is_public', sa.Boolean, nullable=False, server_default='false'),
        *_timestamps(),
    )
    op.create_index('ix_prompts_user_id', 'prompts', ['user_id'])

    op.create_table(
        'modelos_inteligentes',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('structure', sa.Text, nullable=False),
        sa.Column('category', sa.String(100)),
        sa.Column('is_public', sa.Boolean, nullable=False, server_default='false'),
        *_timestamps(),
    )
    op.create_index('ix_modelos_inteligentes_user_id', 'modelos_inteligentes', ['user_id'])


def downgrade() -> None:
    """Drop the billing tables."""
    op.drop_table('modelos_inteligentes')
    op.drop_table('prompts')
    op.drop_table('logs_auditoria')
    op.drop_table('configuracoes_app')
    op.drop_table('estatisticas')
    op.drop_table('transacoes')
    op.drop_index('uq_assinaturas_user_live', table_name='assinaturas')
    op.drop_table('assinaturas')
    op.drop_table('perfis_usuario')
    op.drop_table('planos')
