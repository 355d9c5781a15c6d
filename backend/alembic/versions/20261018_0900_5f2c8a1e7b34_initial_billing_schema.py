"""Initial schema: plans, subscriptions, history, discount codes, usages, pending discounts, payment attempts

Revision ID: 5f2c8a1e7b34
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
import uuid
from datetime import datetime
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5f2c8a1e7b34'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE_STATUS_SQL = "status IN ('TRIAL', 'ACTIVE', 'PAST_DUE')"

billing_interval = sa.Enum('MONTHLY', 'YEARLY', name='billinginterval')
pricing_tier = sa.Enum('STARTER', 'PROFESSIONAL', 'BUSINESS', 'ENTERPRISE', name='pricingtier')
subscription_status = sa.Enum('TRIAL', 'ACTIVE', 'PAST_DUE', 'CANCELED', 'EXPIRED', name='subscriptionstatus')
discount_type = sa.Enum('PERCENTAGE', 'FIXED', name='discounttype')
# Second table using the type must not create it again
existing_discount_type = postgresql.ENUM('PERCENTAGE', 'FIXED', name='discounttype', create_type=False)
payment_type = sa.Enum('INITIAL', 'TRIAL_CONVERSION', 'RENEWAL', 'PRORATION', name='paymenttype')
payment_status = sa.Enum('SUCCEEDED', 'FAILED', name='paymentstatus')


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Create the billing tables and seed the default plans."""
    # 1. Plans (no dependencies)
    plans = op.create_table(
        'plans',
        *_base_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='TRY'),
        sa.Column('billing_interval', billing_interval, nullable=False, server_default='MONTHLY'),
        sa.Column('trial_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tier', pricing_tier, nullable=False, server_default='STARTER'),
        sa.Column('max_businesses', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('max_staff_per_business', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('max_appointments_per_day', sa.Integer(), nullable=False, server_default='-1'),
        sa.Column('features', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_popular', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_index(op.f('ix_plans_is_active'), 'plans', ['is_active'])

    # 2. Discount codes (no dependencies)
    op.create_table(
        'discount_codes',
        *_base_columns(),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('discount_type', discount_type, nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('valid_from', sa.DateTime(), nullable=True),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('max_usages', sa.Integer(), nullable=True),
        sa.Column('current_usages', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_usages_per_user', sa.Integer(), nullable=True, server_default='1'),
        sa.Column('min_purchase_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('applicable_plans', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('max_recurring_uses', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.CheckConstraint('max_usages IS NULL OR current_usages <= max_usages', name='ck_discount_codes_usage_cap'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_discount_codes_code'), 'discount_codes', ['code'], unique=True)
    op.create_index(op.f('ix_discount_codes_valid_until'), 'discount_codes', ['valid_until'])
    op.create_index(op.f('ix_discount_codes_is_active'), 'discount_codes', ['is_active'])

    # 3. Subscriptions (depends on plans)
    op.create_table(
        'subscriptions',
        *_base_columns(),
        sa.Column('business_id', sa.Uuid(), nullable=False),
        sa.Column('plan_id', sa.Uuid(), nullable=False),
        sa.Column('status', subscription_status, nullable=False, server_default='ACTIVE'),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('trial_start', sa.DateTime(), nullable=True),
        sa.Column('trial_end', sa.DateTime(), nullable=True),
        sa.Column('auto_renewal', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('payment_method_id', sa.String(), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(), nullable=True),
        sa.Column('failed_payment_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('pending_plan_id', sa.Uuid(), nullable=True),
        sa.Column('renewal_claimed_until', sa.DateTime(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
        sa.ForeignKeyConstraint(['pending_plan_id'], ['plans.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_subscriptions_business_id'), 'subscriptions', ['business_id'])
    op.create_index(op.f('ix_subscriptions_plan_id'), 'subscriptions', ['plan_id'])
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'])
    op.create_index(op.f('ix_subscriptions_current_period_end'), 'subscriptions', ['current_period_end'])
    op.create_index('ix_subscriptions_renewal_due', 'subscriptions', ['status', 'current_period_end'])
    # At most one live subscription per business
    op.create_index(
        'uq_subscriptions_live_business',
        'subscriptions',
        ['business_id'],
        unique=True,
        postgresql_where=sa.text(LIVE_STATUS_SQL),
    )

    # 4. Subscription history (depends on subscriptions)
    op.create_table(
        'subscription_history',
        *_base_columns(),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('old_value', sa.String(), nullable=True),
        sa.Column('new_value', sa.String(), nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_subscription_history_subscription_id'), 'subscription_history', ['subscription_id'])

    # 5. Discount usage ledger (depends on discount codes, subscriptions)
    op.create_table(
        'discount_code_usages',
        *_base_columns(),
        sa.Column('discount_code_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('business_id', sa.Uuid(), nullable=True),
        sa.Column('subscription_id', sa.Uuid(), nullable=True),
        sa.Column('payment_id', sa.Uuid(), nullable=True),
        sa.Column('payment_type', sa.String(), nullable=True),
        sa.Column('original_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('applied_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['discount_code_id'], ['discount_codes.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_discount_code_usages_discount_code_id'), 'discount_code_usages', ['discount_code_id'])
    op.create_index(op.f('ix_discount_code_usages_user_id'), 'discount_code_usages', ['user_id'])
    op.create_index(op.f('ix_discount_code_usages_business_id'), 'discount_code_usages', ['business_id'])
    op.create_index(op.f('ix_discount_code_usages_subscription_id'), 'discount_code_usages', ['subscription_id'])

    # 6. Pending discounts (depends on subscriptions, discount codes)
    op.create_table(
        'pending_discounts',
        *_base_columns(),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('discount_code_id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('discount_type', existing_discount_type, nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('remaining_uses', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('applied_payments', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('validated_at', sa.DateTime(), nullable=False),
        sa.Column('attached_by', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['discount_code_id'], ['discount_codes.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pending_discounts_subscription_id'), 'pending_discounts', ['subscription_id'], unique=True)

    # 7. Payment attempts (depends on subscriptions)
    op.create_table(
        'payment_attempts',
        *_base_columns(),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('payment_type', payment_type, nullable=False),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('original_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(), nullable=False),
        sa.Column('gateway_payment_id', sa.String(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('discount_snapshot', postgresql.JSONB(), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_payment_attempts_subscription_id'), 'payment_attempts', ['subscription_id'])
    op.create_index(op.f('ix_payment_attempts_status'), 'payment_attempts', ['status'])
    op.create_index(op.f('ix_payment_attempts_idempotency_key'), 'payment_attempts', ['idempotency_key'])

    now = datetime.utcnow()
    op.bulk_insert(
        plans,
        [
            {
                'id': uuid.uuid4(),
                'created_at': now,
                'updated_at': now,
                'name': 'starter',
                'display_name': 'Starter Plan',
                'description': 'Perfect for small businesses just getting started',
                'price': 750,
                'currency': 'TRY',
                'billing_interval': 'MONTHLY',
                'trial_days': 14,
                'tier': 'STARTER',
                'max_businesses': 1,
                'max_staff_per_business': 3,
                'max_appointments_per_day': 50,
                'features': ['appointment_booking', 'staff_management', 'basic_reports', 'sms_notifications'],
                'is_active': True,
                'is_popular': False,
                'sort_order': 1,
            },
            {
                'id': uuid.uuid4(),
                'created_at': now,
                'updated_at': now,
                'name': 'professional',
                'display_name': 'Professional Plan',
                'description': 'Ideal for growing businesses with advanced needs',
                'price': 1250,
                'currency': 'TRY',
                'billing_interval': 'MONTHLY',
                'trial_days': 14,
                'tier': 'PROFESSIONAL',
                'max_businesses': 1,
                'max_staff_per_business': 10,
                'max_appointments_per_day': 150,
                'features': ['appointment_booking', 'staff_management', 'advanced_reports', 'custom_branding'],
                'is_active': True,
                'is_popular': True,
                'sort_order': 2,
            },
            {
                'id': uuid.uuid4(),
                'created_at': now,
                'updated_at': now,
                'name': 'enterprise',
                'display_name': 'Enterprise Plan',
                'description': 'Complete solution for large businesses and chains',
                'price': 2000,
                'currency': 'TRY',
                'billing_interval': 'MONTHLY',
                'trial_days': 14,
                'tier': 'ENTERPRISE',
                'max_businesses': 5,
                'max_staff_per_business': 50,
                'max_appointments_per_day': 500,
                'features': ['appointment_booking', 'multi_location', 'api_access', 'priority_support'],
                'is_active': True,
                'is_popular': False,
                'sort_order': 3,
            },
        ],
    )


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse dependency order
    op.drop_table('payment_attempts')
    op.drop_table('pending_discounts')
    op.drop_table('discount_code_usages')
    op.drop_table('subscription_history')
    op.drop_table('subscriptions')
    op.drop_table('discount_codes')
    op.drop_table('plans')

    for enum_type in (payment_status, payment_type, discount_type, subscription_status, pricing_tier, billing_interval):
        enum_type.drop(op.get_bind(), checkfirst=True)
