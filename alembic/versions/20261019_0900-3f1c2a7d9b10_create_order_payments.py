"""create_order_payments

Revision ID: 3f1c2a7d9b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1c2a7d9b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create order_payments table
    op.create_table(
        'order_payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=100), nullable=False, comment='订单ID'),
        sa.Column('cart_number', sa.String(length=100), nullable=False, comment='网关侧的订单编号'),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='支付网关: ogone/buckaroo/wannafind/...'),
        sa.Column('transaction_id', sa.String(length=200), nullable=True, comment='网关交易号'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='订单含税金额（权威金额）'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR', comment='货币代码 ISO-4217'),
        sa.Column('amount_authorized', sa.Numeric(precision=15, scale=2), nullable=True, comment='网关确认的金额'),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='initialized', comment='支付状态: initialized/authorized/captured/refunded/cancelled/error'),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default='false', comment='金额不一致等待复核'),
        sa.Column('review_reason', sa.Text(), nullable=True, comment='复核原因'),
        sa.Column('properties', postgresql.JSONB(astext_type=sa.Text()), nullable=True, server_default=sa.text("'{}'::jsonb"), comment='网关扩展属性'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'cart_number', name='uq_order_payments_provider_cart'),
        comment='订单支付表，每个订单一条'
    )
    op.create_index('ix_order_payments_id', 'order_payments', ['id'], unique=False)
    op.create_index('ix_order_payments_order_id', 'order_payments', ['order_id'], unique=True)
    op.create_index('ix_order_payments_provider', 'order_payments', ['provider'], unique=False)
    op.create_index('ix_order_payments_transaction_id', 'order_payments', ['transaction_id'], unique=False)
    op.create_index('ix_order_payments_state', 'order_payments', ['state'], unique=False)
    op.create_index('ix_order_payments_needs_review', 'order_payments', ['needs_review'], unique=False)
    op.create_index('ix_order_payments_created_at', 'order_payments', ['created_at'], unique=False)
    op.create_index('ix_order_payments_provider_state', 'order_payments', ['provider', 'state'], unique=False)

    # Create payment_transitions table (append-only history)
    op.create_table(
        'payment_transitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_payment_id', sa.Integer(), nullable=False, comment='关联的订单支付ID'),
        sa.Column('from_state', sa.String(length=20), nullable=False, comment='变更前状态'),
        sa.Column('to_state', sa.String(length=20), nullable=False, comment='变更后状态'),
        sa.Column('origin', sa.String(length=20), nullable=False, comment='来源: callback/status_poll/capture/refund/cancel'),
        sa.Column('status_code', sa.String(length=50), nullable=True, comment='网关原始状态码'),
        sa.Column('transaction_id', sa.String(length=200), nullable=True, comment='网关交易号'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='发生时间'),
        sa.ForeignKeyConstraint(['order_payment_id'], ['order_payments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='支付状态变更历史（只追加）'
    )
    op.create_index('ix_payment_transitions_id', 'payment_transitions', ['id'], unique=False)
    op.create_index('ix_payment_transitions_order_payment_id', 'payment_transitions', ['order_payment_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_transitions_order_payment_id', table_name='payment_transitions')
    op.drop_index('ix_payment_transitions_id', table_name='payment_transitions')
    op.drop_table('payment_transitions')

    op.drop_index('ix_order_payments_provider_state', table_name='order_payments')
    op.drop_index('ix_order_payments_created_at', table_name='order_payments')
    op.drop_index('ix_order_payments_needs_review', table_name='order_payments')
    op.drop_index('ix_order_payments_state', table_name='order_payments')
    op.drop_index('ix_order_payments_transaction_id', table_name='order_payments')
    op.drop_index('ix_order_payments_provider', table_name='order_payments')
    op.drop_index('ix_order_payments_order_id', table_name='order_payments')
    op.drop_index('ix_order_payments_id', table_name='order_payments')
    op.drop_table('order_payments')
