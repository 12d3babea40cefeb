"""Create payment ledger tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Tables may already exist when Base.metadata.create_all ran first
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if 'payment_events' not in existing_tables:
        op.create_table(
            'payment_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('outcome', sa.String(length=50), nullable=False),
            sa.Column('error_kind', sa.String(length=50), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('event_created', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_payment_events_id', 'payment_events', ['id'])
        op.create_index('ix_payment_events_event_id', 'payment_events', ['event_id'], unique=True)
        op.create_index('ix_payment_events_event_type', 'payment_events', ['event_type'])
        op.create_index('ix_payment_events_outcome', 'payment_events', ['outcome'])

    if 'transactions' not in existing_tables:
        op.create_table(
            'transactions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=False),
            sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
            sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
            sa.Column('transaction_type', sa.String(length=50), nullable=False),
            sa.Column('payer_id', sa.String(length=255), nullable=True),
            sa.Column('payee_id', sa.String(length=255), nullable=True),
            sa.Column('total_amount_cents', sa.Integer(), nullable=False),
            sa.Column('payee_amount_cents', sa.Integer(), nullable=False),
            sa.Column('platform_amount_cents', sa.Integer(), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('transaction_metadata', sa.JSON(), nullable=True),
            *_timestamps(),
            sa.CheckConstraint(
                'payee_amount_cents + platform_amount_cents = total_amount_cents',
                name='ck_transactions_split_conserves_total'
            ),
            sa.CheckConstraint('total_amount_cents >= 0', name='ck_transactions_total_non_negative'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_transactions_id', 'transactions', ['id'])
        op.create_index('ix_transactions_stripe_payment_intent_id', 'transactions', ['stripe_payment_intent_id'], unique=True)
        op.create_index('ix_transactions_stripe_subscription_id', 'transactions', ['stripe_subscription_id'])
        op.create_index('ix_transactions_payer_id', 'transactions', ['payer_id'])
        op.create_index('ix_transactions_payee_id', 'transactions', ['payee_id'])
        op.create_index('ix_transactions_status', 'transactions', ['status'])
        op.create_index('ix_transactions_payer_status', 'transactions', ['payer_id', 'status'])

    if 'subscriptions' not in existing_tables:
        op.create_table(
            'subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('stripe_subscription_id', sa.String(length=255), nullable=False),
            sa.Column('user_id', sa.String(length=255), nullable=False),
            sa.Column('status', sa.String(length=50), nullable=False),
            sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_event_created', sa.Integer(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
        op.create_index('ix_subscriptions_stripe_subscription_id', 'subscriptions', ['stripe_subscription_id'], unique=True)
        op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])

    if 'token_balances' not in existing_tables:
        op.create_table(
            'token_balances',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=255), nullable=False),
            sa.Column('balance', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_purchased', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            *_timestamps(),
            sa.CheckConstraint('balance >= 0', name='ck_token_balances_balance_non_negative'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_token_balances_id', 'token_balances', ['id'])
        op.create_index('ix_token_balances_user_id', 'token_balances', ['user_id'], unique=True)

    if 'token_purchases' not in existing_tables:
        op.create_table(
            'token_purchases',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=255), nullable=False),
            sa.Column('token_amount', sa.Integer(), nullable=False),
            sa.Column('price_cents', sa.Integer(), nullable=False),
            sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint('user_id', 'stripe_payment_intent_id', name='uq_token_purchases_user_payment_intent'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_token_purchases_id', 'token_purchases', ['id'])
        op.create_index('ix_token_purchases_user_id', 'token_purchases', ['user_id'])
        op.create_index('ix_token_purchases_created_at', 'token_purchases', ['created_at'])

    if 'fan_metrics' not in existing_tables:
        op.create_table(
            'fan_metrics',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=255), nullable=False),
            sa.Column('total_tips_cents', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('active_subscriptions_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('monthly_spend_cents_30d', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_fan_metrics_id', 'fan_metrics', ['id'])
        op.create_index('ix_fan_metrics_user_id', 'fan_metrics', ['user_id'], unique=True)


def downgrade() -> None:
    for table in ('fan_metrics', 'token_purchases', 'token_balances', 'subscriptions', 'transactions', 'payment_events'):
        op.drop_table(table)
