"""Initial schema: users, api keys, usage logs, invoices, subscriptions, endpoints, audit

Revision ID: 3f6a1c2b9d10
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f6a1c2b9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_VALUES = {
    'plan': ('FREE', 'PAID', 'RESELLER'),
    'userrole': ('USER', 'SUPERADMIN'),
    'apikeystatus': ('ACTIVE', 'REVOKED'),
    'invoicestatus': ('UNPAID', 'PAID', 'EXPIRED', 'CANCELED'),
    'subscriptionstatus': ('ACTIVE', 'EXPIRED', 'CANCELED'),
    'endpointstatus': ('ACTIVE', 'NON_ACTIVE', 'MAINTENANCE'),
}


def _enum(name: str) -> sa.Enum:
    # Postgres types are created once in upgrade(); tables only reference them
    values = ENUM_VALUES[name]
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), 'postgresql'
    )


plan = _enum('plan')
userrole = _enum('userrole')
apikeystatus = _enum('apikeystatus')
invoicestatus = _enum('invoicestatus')
subscriptionstatus = _enum('subscriptionstatus')
endpointstatus = _enum('endpointstatus')


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def _base_indexes(table: str) -> None:
    op.create_index(op.f(f'ix_{table}_id'), table, ['id'])
    op.create_index(op.f(f'ix_{table}_created_at'), table, ['created_at'])


def upgrade() -> None:
    """Create all tables for the marketplace."""
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name, values in ENUM_VALUES.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # 1. Users table (self-referencing for referrals)
    op.create_table(
        'users',
        *_base_columns(),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('name', sa.String(length=60), nullable=True),
        sa.Column('plan', plan, nullable=False),
        sa.Column('role', userrole, nullable=False),
        sa.Column('referral_code', sa.String(length=12), nullable=False),
        sa.Column('referred_by_id', sa.Uuid(), nullable=True),
        sa.Column('referral_count', sa.Integer(), nullable=False),
        sa.Column('referral_bonus_daily', sa.Integer(), nullable=False),
        sa.Column('is_blocked', sa.Boolean(), nullable=False),
        sa.Column('blocked_at', sa.DateTime(), nullable=True),
        sa.Column('ban_until', sa.DateTime(), nullable=True),
        sa.Column('ban_reason', sa.String(length=300), nullable=True),
        sa.ForeignKeyConstraint(['referred_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    _base_indexes('users')
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_referral_code'), 'users', ['referral_code'], unique=True)

    # 2. API keys table (depends on users)
    op.create_table(
        'api_keys',
        *_base_columns(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=60), nullable=True),
        sa.Column('status', apikeystatus, nullable=False),
        sa.Column('daily_limit', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    _base_indexes('api_keys')
    op.create_index(op.f('ix_api_keys_user_id'), 'api_keys', ['user_id'])
    op.create_index(op.f('ix_api_keys_key'), 'api_keys', ['key'], unique=True)
    op.create_index(op.f('ix_api_keys_status'), 'api_keys', ['status'])

    # 3. Usage logs table (depends on api_keys)
    op.create_table(
        'usage_logs',
        *_base_columns(),
        sa.Column('api_key_id', sa.Uuid(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('requests_count', sa.Integer(), nullable=False),
        sa.Column('last_request_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['api_key_id'], ['api_keys.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('api_key_id', 'date', name='uq_usage_logs_api_key_date'),
    )
    _base_indexes('usage_logs')
    op.create_index(op.f('ix_usage_logs_api_key_id'), 'usage_logs', ['api_key_id'])
    op.create_index(op.f('ix_usage_logs_date'), 'usage_logs', ['date'])

    # 4. Billing invoices table (depends on users)
    op.create_table(
        'billing_invoices',
        *_base_columns(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('plan', plan, nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', invoicestatus, nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('payment_method', sa.String(length=80), nullable=True),
        sa.Column('payment_proof_url', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('approved_by_id', sa.Uuid(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['approved_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    _base_indexes('billing_invoices')
    op.create_index(op.f('ix_billing_invoices_user_id'), 'billing_invoices', ['user_id'])
    op.create_index(op.f('ix_billing_invoices_status'), 'billing_invoices', ['status'])

    # 5. User subscriptions table (depends on users, billing_invoices)
    op.create_table(
        'user_subscriptions',
        *_base_columns(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('plan', plan, nullable=False),
        sa.Column('status', subscriptionstatus, nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=True),
        sa.Column('auto_downgrade_to', plan, nullable=False),
        sa.Column('invoice_id', sa.Uuid(), nullable=True),
        sa.Column('updated_by_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['invoice_id'], ['billing_invoices.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['updated_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    _base_indexes('user_subscriptions')
    op.create_index(op.f('ix_user_subscriptions_user_id'), 'user_subscriptions', ['user_id'])
    op.create_index(op.f('ix_user_subscriptions_status'), 'user_subscriptions', ['status'])
    op.create_index(op.f('ix_user_subscriptions_end_at'), 'user_subscriptions', ['end_at'])
    op.create_index(op.f('ix_user_subscriptions_invoice_id'), 'user_subscriptions', ['invoice_id'])
    # At most one ACTIVE subscription per user
    op.create_index(
        'uq_user_subscriptions_one_active',
        'user_subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    # 6. API endpoint catalog (no dependencies)
    op.create_table(
        'api_endpoints',
        *_base_columns(),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('path', sa.String(length=200), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('sample_query', sa.String(length=300), nullable=False),
        sa.Column('status', endpointstatus, nullable=False),
        sa.Column('maintenance_note', sa.String(length=500), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    _base_indexes('api_endpoints')
    op.create_index(op.f('ix_api_endpoints_slug'), 'api_endpoints', ['slug'], unique=True)

    # 7. Admin audit logs (depends on users)
    op.create_table(
        'admin_audit_logs',
        *_base_columns(),
        sa.Column('actor_user_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(length=80), nullable=False),
        sa.Column('target_type', sa.String(length=40), nullable=False),
        sa.Column('target_id', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('before_json', sa.JSON(), nullable=True),
        sa.Column('after_json', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    _base_indexes('admin_audit_logs')
    op.create_index(op.f('ix_admin_audit_logs_actor_user_id'), 'admin_audit_logs', ['actor_user_id'])
    op.create_index(op.f('ix_admin_audit_logs_action'), 'admin_audit_logs', ['action'])
    op.create_index(op.f('ix_admin_audit_logs_target_type'), 'admin_audit_logs', ['target_type'])
    op.create_index(op.f('ix_admin_audit_logs_target_id'), 'admin_audit_logs', ['target_id'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table('admin_audit_logs')
    op.drop_table('api_endpoints')
    op.drop_index('uq_user_subscriptions_one_active', table_name='user_subscriptions')
    op.drop_table('user_subscriptions')
    op.drop_table('billing_invoices')
    op.drop_table('usage_logs')
    op.drop_table('api_keys')
    op.drop_table('users')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name, values in ENUM_VALUES.items():
            postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
