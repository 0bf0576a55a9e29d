"""Referral ledger schema

Revision ID: 3f2a9c1d7e10
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f2a9c1d7e10'
down_revision = None
branch_labels = None
depends_on = None


MONEY = sa.Numeric(precision=18, scale=2)
PERCENT = sa.Numeric(precision=7, scale=4)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('full_name', sa.String(length=150), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('referral_code', sa.String(length=20), nullable=True),
        sa.Column('referred_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['referred_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('phone'),
        sa.UniqueConstraint('referral_code'),
    )
    op.create_index('idx_user_referral_code', 'users', ['referral_code'])
    op.create_index(op.f('ix_users_role'), 'users', ['role'])
    op.create_index(op.f('ix_users_referred_by'), 'users', ['referred_by'])

    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('is_one_time', sa.Boolean(), nullable=True),
        sa.Column('commission_instant', sa.JSON(), nullable=True),
        sa.Column('commission_monthly', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'level_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('instant_percentage', PERCENT, nullable=False),
        sa.Column('monthly_percentage', PERCENT, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('level >= 1', name='chk_level_config_level'),
        sa.CheckConstraint('instant_percentage >= 0 AND monthly_percentage >= 0',
                           name='chk_level_config_percentages'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'level', name='uq_level_config_scope_level'),
    )
    op.create_index(op.f('ix_level_configs_plan_id'), 'level_configs', ['plan_id'])

    op.create_table(
        'referral_edges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('descendant_id', sa.Integer(), nullable=False),
        sa.Column('ancestor_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('level >= 1', name='chk_referral_edge_level'),
        sa.ForeignKeyConstraint(['ancestor_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['descendant_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('descendant_id', 'level', name='uq_referral_edge_descendant_level'),
        sa.UniqueConstraint('descendant_id', 'ancestor_id', name='uq_referral_edge_relationship'),
    )
    op.create_index(op.f('ix_referral_edges_descendant_id'), 'referral_edges', ['descendant_id'])
    op.create_index(op.f('ix_referral_edges_ancestor_id'), 'referral_edges', ['ancestor_id'])
    op.create_index('idx_referral_edge_ancestor_level', 'referral_edges', ['ancestor_id', 'level'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=True),
        sa.Column('classification', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('raw_response', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount > 0', name='chk_payment_amount'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference', name='uq_payments_reference'),
    )
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'])

    op.create_table(
        'commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('source_user_id', sa.Integer(), nullable=True),
        sa.Column('source_payment_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('commission_class', sa.String(length=20), nullable=False),
        sa.Column('percentage', PERCENT, nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='chk_commission_amount'),
        sa.ForeignKeyConstraint(['paid_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['recipient_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_payment_id', 'recipient_id', name='uq_commission_payment_recipient'),
    )
    op.create_index(op.f('ix_commissions_recipient_id'), 'commissions', ['recipient_id'])
    op.create_index(op.f('ix_commissions_source_user_id'), 'commissions', ['source_user_id'])
    op.create_index(op.f('ix_commissions_source_payment_id'), 'commissions', ['source_payment_id'])
    op.create_index(op.f('ix_commissions_status'), 'commissions', ['status'])
    op.create_index('idx_commission_recipient_level', 'commissions', ['recipient_id', 'level'])

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('referral_balance', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('saving_balance', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('total_balance', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('total_earnings', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('total_withdrawn', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('referral_balance >= 0', name='chk_wallet_referral_balance'),
        sa.CheckConstraint('saving_balance >= 0', name='chk_wallet_saving_balance'),
        sa.CheckConstraint('total_withdrawn >= 0', name='chk_wallet_total_withdrawn'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_wallets_user_id'), 'wallets', ['user_id'], unique=True)

    op.create_table(
        'withdrawal_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('payment_method', sa.String(length=30), nullable=False),
        sa.Column('payment_details', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('admin_id', sa.Integer(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='chk_withdrawal_amount'),
        sa.ForeignKeyConstraint(['admin_id'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_withdrawal_requests_user_id'), 'withdrawal_requests', ['user_id'])
    op.create_index(op.f('ix_withdrawal_requests_status'), 'withdrawal_requests', ['status'])
    op.create_index('idx_withdrawal_user_status', 'withdrawal_requests', ['user_id', 'status'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_audit_logs_actor_id'), 'audit_logs', ['actor_id'])
    op.create_index(op.f('ix_audit_logs_action'), 'audit_logs', ['action'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('withdrawal_requests')
    op.drop_table('wallets')
    op.drop_table('commissions')
    op.drop_table('payments')
    op.drop_table('referral_edges')
    op.drop_table('level_configs')
    op.drop_table('plans')
    op.drop_table('users')
