"""Initial schema: users, trading_signals, payment_requests

Revision ID: 0a1f3c9e2b7d
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0a1f3c9e2b7d'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, trading_signals and payment_requests tables"""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),

        # Identity
        sa.Column('email', sa.String(255), nullable=False, comment='Login email'),
        sa.Column('first_name', sa.String(255), nullable=True, comment='User first name'),
        sa.Column('last_name', sa.String(255), nullable=True, comment='User last name'),

        # Subscription
        sa.Column('subscription_tier', sa.String(20), nullable=False, server_default='free', comment='Tier: free, starter_trader, pro_trader, admin'),
        sa.Column('subscription_start_date', sa.DateTime(timezone=True), nullable=True, comment='Start of current paid period'),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True, comment='End of current paid period'),
        sa.Column('subscription_period', sa.Integer(), nullable=True, comment='Purchased period in months (1, 3, 12)'),
        sa.Column('grace_period_end_date', sa.DateTime(timezone=True), nullable=True, comment='subscription_end_date + 48h'),
        sa.Column('is_first_time_subscriber', sa.Boolean(), nullable=False, server_default='true', comment='Eligible for first-time discount'),

        # Credits & cooldown
        sa.Column('daily_credits', sa.Integer(), nullable=False, server_default='0', comment='Signals generated today'),
        sa.Column('monthly_credits', sa.Integer(), nullable=False, server_default='0', comment='Signals generated this billing cycle'),
        sa.Column('max_daily_credits', sa.Integer(), nullable=True, server_default='2', comment='Daily ceiling for display (NULL = unlimited)'),
        sa.Column('max_monthly_credits', sa.Integer(), nullable=True, server_default='10', comment='Monthly ceiling for display (NULL = unlimited)'),
        sa.Column('last_generation_time', sa.DateTime(timezone=True), nullable=True, comment='Last successful generation (cooldown anchor)'),
        sa.Column('last_credit_reset', sa.DateTime(timezone=True), nullable=True, comment='Last time counters were reconciled'),

        # Review challenge
        sa.Column('monthly_completion_streak', sa.Integer(), nullable=False, server_default='0', comment='Consecutive fully reviewed cycles'),
        sa.Column('pending_discount_code', sa.String(32), nullable=True, comment='Unclaimed loyalty discount code'),
        sa.Column('last_discount_code', sa.String(32), nullable=True, comment='Last issued loyalty code'),
        sa.Column('last_discount_cycle_start', sa.DateTime(timezone=True), nullable=True, comment='Billing cycle the last code was issued for'),
        sa.Column('last_notification_date', sa.Date(), nullable=True, comment='Local date of last pending-review notification'),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()'), comment='User registration timestamp'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1', comment='Optimistic lock counter'),

        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_subscription_tier', 'users', ['subscription_tier'])
    op.create_index('ix_users_subscription_end_date', 'users', ['subscription_end_date'])

    op.create_table(
        'trading_signals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Owner (foreign key)'),

        # Signal body
        sa.Column('pair', sa.String(20), nullable=False, server_default='XAUUSD', comment='Instrument'),
        sa.Column('direction', sa.String(4), nullable=False, comment='BUY or SELL'),
        sa.Column('timeframe', sa.String(4), nullable=False, comment='5M, 15M, 30M, 1H, 4H, 1D, 1W'),
        sa.Column('entry_price', sa.Float(), nullable=False),
        sa.Column('stop_loss', sa.Float(), nullable=False),
        sa.Column('take_profit', sa.Float(), nullable=False, comment='First take profit level'),
        sa.Column('take_profits', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='[{level, price, risk_reward_ratio}] ordered by risk_reward_ratio asc'),
        sa.Column('confidence', sa.Integer(), nullable=False, comment='Model confidence 1-100'),
        sa.Column('analysis', sa.Text(), nullable=False, server_default=''),

        # Lifecycle
        sa.Column('status', sa.String(20), nullable=False, server_default='fresh', comment='fresh, active, closed, stopped'),
        sa.Column('user_action', sa.String(20), nullable=False, server_default='pending', comment='pending, successful, unsuccessful, didnt_take'),
        sa.Column('pips', sa.Float(), nullable=True, comment='Result in pips once closed'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_trading_signals_user_id', 'trading_signals', ['user_id'])
    op.create_index('ix_trading_signals_status', 'trading_signals', ['status'])
    op.create_index('ix_trading_signals_created_at', 'trading_signals', ['created_at'])
    op.create_index('ix_trading_signals_closed_at', 'trading_signals', ['closed_at'])
    op.create_index('ix_trading_signals_user_status', 'trading_signals', ['user_id', 'status'])

    op.create_table(
        'payment_requests',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Requesting user (foreign key)'),
        sa.Column('user_email', sa.String(255), nullable=False),

        # Plan and price breakdown
        sa.Column('requested_plan', sa.String(20), nullable=False, comment='starter_trader or pro_trader'),
        sa.Column('subscription_period', sa.Integer(), nullable=False, comment='Months (1, 3, 12)'),
        sa.Column('reference_code', sa.String(20), nullable=False, comment='PAY-XXXXXX'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False, comment='Final amount in USD'),
        sa.Column('original_amount', sa.Numeric(10, 2), nullable=False, comment='Period base price in USD'),
        sa.Column('discount_percentage', sa.Integer(), nullable=False, server_default='0', comment='Period + first-time discount label'),
        sa.Column('period_discount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('first_time_discount', sa.Integer(), nullable=False, server_default='0'),

        # Status
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', comment='pending, completed, cancelled'),
        sa.Column('notes', sa.Text(), nullable=True, comment='Admin notes'),
        sa.Column('whatsapp_number', sa.String(32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by_admin_id', sa.Integer(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['completed_by_admin_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_payment_requests_user_id', 'payment_requests', ['user_id'])
    op.create_index('ix_payment_requests_reference_code', 'payment_requests', ['reference_code'], unique=True)
    op.create_index('ix_payment_requests_status', 'payment_requests', ['status'])
    op.create_index('ix_payment_requests_created_at', 'payment_requests', ['created_at'])


def downgrade() -> None:
    """Drop all tables"""
    op.drop_table('payment_requests')
    op.drop_table('trading_signals')
    op.drop_table('users')
