"""settlement_schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('school', sa.String(255), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='active'),
        sa.Column('user_role', sa.String(50), nullable=False, server_default='user'),
        sa.Column('bank_name', sa.String(255), nullable=True),
        sa.Column('account_number', sa.String(50), nullable=True),
        sa.Column('account_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('uuid'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('idx_user_email', 'users', ['email'])
    op.create_index('idx_user_role', 'users', ['user_role'])

    # Subscriptions
    op.create_table(
        'subscription_plans',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(100), nullable=False, server_default='Premium'),
        sa.Column('plan_type', sa.String(20), nullable=False, server_default='MONTHLY'),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('months', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('grace_period_ends', sa.DateTime(), nullable=True),
        sa.Column('last_renewal_date', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
        sa.UniqueConstraint('user_id'),
    )
    op.create_index('idx_subscription_plan_status', 'subscription_plans', ['status'])
    op.create_index('idx_subscription_plan_window', 'subscription_plans', ['created_at', 'expires_at'])

    op.create_table(
        'subscription_history',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('subscription_id', sa.String(36), nullable=False),
        sa.Column('action', sa.String(40), nullable=False),
        sa.Column('old_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('old_expires_at', sa.DateTime(), nullable=True),
        sa.Column('new_expires_at', sa.DateTime(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscription_plans.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
    )
    op.create_index('idx_subscription_history_user_created', 'subscription_history', ['user_id', 'created_at'])

    op.create_table(
        'subscription_payments',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('subscription_id', sa.String(36), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('monthly_amount', sa.Float(), nullable=False),
        sa.Column('months', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('plan_type', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='COMPLETED'),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('is_renewal', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('expiration_before', sa.DateTime(), nullable=True),
        sa.Column('expiration_after', sa.DateTime(), nullable=True),
        sa.Column('payment_date', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscription_plans.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
        sa.UniqueConstraint('payment_reference'),
    )
    op.create_index('idx_subscription_payment_user_id', 'subscription_payments', ['user_id'])
    op.create_index('idx_subscription_payment_date', 'subscription_payments', ['payment_date'])

    # Activity
    op.create_table(
        'plays',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('educator_id', sa.String(36), nullable=False),
        sa.Column('media_id', sa.String(36), nullable=False),
        sa.Column('duration_watched', sa.Float(), nullable=False),
        sa.Column('media_duration', sa.Float(), nullable=False),
        sa.Column('watch_ratio', sa.Float(), nullable=False),
        sa.Column('session_id', sa.String(255), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.ForeignKeyConstraint(['educator_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
    )
    op.create_index('idx_play_user_media_created', 'plays', ['user_id', 'media_id', 'created_at'])
    op.create_index('idx_play_ip_created', 'plays', ['ip_address', 'created_at'])
    op.create_index('idx_play_educator_created', 'plays', ['educator_id', 'created_at'])

    op.create_table(
        'offline_downloads',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('educator_id', sa.String(36), nullable=False),
        sa.Column('media_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.ForeignKeyConstraint(['educator_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
    )
    op.create_index('idx_offline_download_educator_created', 'offline_downloads', ['educator_id', 'created_at'])

    op.create_table(
        'live_classes',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
    )
    op.create_index('idx_live_class_user_id', 'live_classes', ['user_id'])

    op.create_table(
        'live_class_attendees',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('live_class_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['live_class_id'], ['live_classes.uuid']),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
        sa.UniqueConstraint('live_class_id', 'user_id', name='uq_live_class_attendee'),
    )
    op.create_index('idx_live_class_attendee_joined', 'live_class_attendees', ['joined_at'])

    # Settlements
    op.create_table(
        'monthly_settlements',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('month', sa.DateTime(), nullable=False),
        sa.Column('total_revenue', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('distributable_revenue', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('revenue_source', sa.String(20), nullable=False, server_default='none'),
        sa.Column('total_subscribers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('media_play_points', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('offline_download_points', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('live_class_points', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('point_value', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('educator_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='DRAFT'),
        sa.Column('calculated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('finalized_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('uuid'),
        sa.UniqueConstraint('month'),
    )
    op.create_index('idx_monthly_settlement_status', 'monthly_settlements', ['status'])

    op.create_table(
        'educator_earnings',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('settlement_id', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('points', sa.Float(), nullable=False),
        sa.Column('percentage_of_total', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('earnings', sa.Float(), nullable=False),
        sa.Column('available_balance', sa.Float(), nullable=False),
        sa.Column('withdrawn', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['settlement_id'], ['monthly_settlements.uuid']),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
        sa.UniqueConstraint('settlement_id', 'user_id', name='uq_educator_earning_settlement_user'),
    )
    op.create_index('idx_educator_earning_user_id', 'educator_earnings', ['user_id'])

    # Withdrawals
    op.create_table(
        'withdrawal_requests',
        sa.Column('uuid', sa.String(36), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.uuid']),
        sa.PrimaryKeyConstraint('uuid'),
    )
    op.create_index('idx_withdrawal_request_user_status', 'withdrawal_requests', ['user_id', 'status'])


def downgrade() -> None:
    op.drop_table('withdrawal_requests')
    op.drop_table('educator_earnings')
    op.drop_table('monthly_settlements')
    op.drop_table('live_class_attendees')
    op.drop_table('live_classes')
    op.drop_table('offline_downloads')
    op.drop_table('plays')
    op.drop_table('subscription_payments')
    op.drop_table('subscription_history')
    op.drop_table('subscription_plans')
    op.drop_table('users')
