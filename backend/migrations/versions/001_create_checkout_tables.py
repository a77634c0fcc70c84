"""
Alembic migration: Create checkout tables.

Creates orders with their items, delivery zones and status history, plus
payments, invoices, the per-month invoice counter and processed webhook
events.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'pending',
    'confirmed',
    'processing',
    'ready',
    'out_for_delivery',
    'delivered',
    'cancelled',
)
PAYMENT_STATUSES = ('pending', 'completed', 'failed', 'refunded')
PAYMENT_GATEWAYS = ('stripe', 'paypal', 'afterpay', 'cod')
INVOICE_STATUSES = ('draft', 'pending', 'paid', 'overdue', 'cancelled')


def _enum(name: str, values: Sequence[str]) -> postgresql.ENUM:
    return postgresql.ENUM(*values, name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
    ]


def upgrade() -> None:
    """
    Upgrade database schema to add the checkout tables.
    """
    for name, values in (
        ('order_status', ORDER_STATUSES),
        ('payment_status', PAYMENT_STATUSES),
        ('payment_gateway', PAYMENT_GATEWAYS),
        ('invoice_status', INVOICE_STATUSES),
    ):
        postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    op.create_table(
        'delivery_zones',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=100), nullable=False, comment='Zone name'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column(
            'supports_cod',
            sa.Boolean(),
            nullable=False,
            server_default=sa.text('true'),
            comment='Whether Cash on Delivery is offered in this zone',
        ),
        *_timestamps(),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('order_number', sa.String(length=20), nullable=False, unique=True),
        sa.Column(
            'status',
            _enum('order_status', ORDER_STATUSES),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column(
            'delivery_zone_id',
            sa.BigInteger(),
            sa.ForeignKey('delivery_zones.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('subtotal', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            'delivery_fee',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        sa.Column(
            'discount',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        sa.Column('total', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default=sa.text("'AUD'")),
        sa.Column(
            'exchange_rate',
            sa.Numeric(precision=12, scale=6),
            nullable=False,
            server_default=sa.text('1'),
        ),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('total >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        comment='Customer orders',
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default=sa.text('1')),
        sa.Column('unit_price', sa.Numeric(precision=10, scale=2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('from_status', _enum('order_status', ORDER_STATUSES), nullable=True),
        sa.Column('to_status', _enum('order_status', ORDER_STATUSES), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
            comment='Associated order identifier',
        ),
        sa.Column('gateway', _enum('payment_gateway', PAYMENT_GATEWAYS), nullable=False),
        sa.Column(
            'transaction_id',
            sa.String(length=255),
            nullable=True,
            unique=True,
            comment='Provider transaction identifier',
        ),
        sa.Column(
            'status',
            _enum('payment_status', PAYMENT_STATUSES),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default=sa.text("'AUD'")),
        sa.Column(
            'refund_amount',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            server_default=sa.text('0'),
        ),
        sa.Column(
            'gateway_response',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Accumulated provider responses',
        ),
        *_timestamps(),
        sa.CheckConstraint('amount >= 0', name='ck_payments_amount_non_negative'),
        sa.CheckConstraint('refund_amount >= 0', name='ck_payments_refund_amount_non_negative'),
        sa.CheckConstraint('refund_amount <= amount', name='ck_payments_refund_not_exceed_amount'),
        comment='Payment attempts, one per order',
    )
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_gateway_status', 'payments', ['gateway', 'status'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            'order_id',
            sa.BigInteger(),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column('invoice_number', sa.String(length=20), nullable=False, unique=True),
        sa.Column('subtotal', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('delivery_fee', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('discount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('total', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default=sa.text("'AUD'")),
        sa.Column(
            'status',
            _enum('invoice_status', INVOICE_STATUSES),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('total >= 0', name='ck_invoices_total_non_negative'),
        comment='Invoices issued per order',
    )
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_status_due', 'invoices', ['status', 'due_date'])

    op.create_table(
        'invoice_sequences',
        sa.Column('period', sa.String(length=6), primary_key=True),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default=sa.text('0')),
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column(
            'received_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text('now()'),
        ),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event'),
    )


def downgrade() -> None:
    """
    Downgrade database schema by removing the checkout tables.
    """
    op.drop_table('webhook_events')
    op.drop_table('invoice_sequences')
    op.drop_index('ix_invoices_status_due', table_name='invoices')
    op.drop_index('ix_invoices_status', table_name='invoices')
    op.drop_table('invoices')
    op.drop_index('ix_payments_gateway_status', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_order_status_history_order_id', table_name='order_status_history')
    op.drop_table('order_status_history')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_table('orders')
    op.drop_table('delivery_zones')

    for name in ('invoice_status', 'payment_gateway', 'payment_status', 'order_status'):
        op.execute(f'DROP TYPE IF EXISTS {name}')
