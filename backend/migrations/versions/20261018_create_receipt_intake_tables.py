"""create receipt intake tables

Revision ID: 20261018_create_receipt_intake_tables
Revises:
Create Date: 2026-10-18 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_create_receipt_intake_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

processing_status = sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'DUPLICATE', name='processingstatus')
order_source = sa.Enum('MANUAL', 'EMAIL', 'API', name='ordersource')


def upgrade() -> None:
	"""Upgrade schema."""
	op.create_table(
		'products',
		sa.Column('id', sa.Integer(), primary_key=True),
		sa.Column('name', sa.String(length=255), nullable=False),
		sa.Column('description', sa.Text(), nullable=True),
		sa.Column('price', sa.Float(), nullable=True),
		sa.Column('is_draft', sa.Boolean(), nullable=False, server_default=sa.false()),
		sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
		sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
	)
	op.create_index('ix_products_id', 'products', ['id'])
	op.create_index('ix_products_is_draft', 'products', ['is_draft'])

	op.create_table(
		'orders',
		sa.Column('id', sa.Integer(), primary_key=True),
		sa.Column('name', sa.String(length=255), nullable=False),
		sa.Column('merchant_name', sa.String(length=255), nullable=True),
		sa.Column('purchase_date', sa.Date(), nullable=False),
		sa.Column('currency', sa.String(length=8), nullable=True),
		sa.Column('total', sa.Float(), nullable=True),
		sa.Column('is_draft', sa.Boolean(), nullable=False, server_default=sa.false()),
		sa.Column('source', order_source, nullable=False),
		sa.Column('original_fingerprint', sa.String(length=64), nullable=True),
		sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
	)
	op.create_index('ix_orders_id', 'orders', ['id'])
	op.create_index('ix_orders_original_fingerprint', 'orders', ['original_fingerprint'])

	op.create_table(
		'order_line_items',
		sa.Column('id', sa.Integer(), primary_key=True),
		sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
		sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
		sa.Column('quantity', sa.Integer(), nullable=False),
		sa.Column('unit_price', sa.Float(), nullable=True),
	)
	op.create_index('ix_order_line_items_id', 'order_line_items', ['id'])
	op.create_index('ix_order_line_items_order_id', 'order_line_items', ['order_id'])

	op.create_table(
		'email_processing_logs',
		sa.Column('id', sa.Integer(), primary_key=True),
		sa.Column('fingerprint', sa.String(length=64), nullable=False),
		sa.Column('sender_email', sa.String(), nullable=False),
		sa.Column('subject', sa.String(), nullable=True),
		sa.Column('raw_content', sa.Text(), nullable=False),
		sa.Column('status', processing_status, nullable=False),
		sa.Column('error_message', sa.Text(), nullable=True),
		sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
		sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
		sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
	)
	op.create_index('ix_email_processing_logs_id', 'email_processing_logs', ['id'])
	op.create_index('ix_email_processing_logs_fingerprint', 'email_processing_logs', ['fingerprint'], unique=True)
	op.create_index('ix_email_processing_logs_status', 'email_processing_logs', ['status'])


def downgrade() -> None:
	"""Downgrade schema."""
	op.drop_index('ix_email_processing_logs_status', table_name='email_processing_logs')
	op.drop_index('ix_email_processing_logs_fingerprint', table_name='email_processing_logs')
	op.drop_index('ix_email_processing_logs_id', table_name='email_processing_logs')
	op.drop_table('email_processing_logs')
	op.drop_index('ix_order_line_items_order_id', table_name='order_line_items')
	op.drop_index('ix_order_line_items_id', table_name='order_line_items')
	op.drop_table('order_line_items')
	op.drop_index('ix_orders_original_fingerprint', table_name='orders')
	op.drop_index('ix_orders_id', table_name='orders')
	op.drop_table('orders')
	op.drop_index('ix_products_is_draft', table_name='products')
	op.drop_index('ix_products_id', table_name='products')
	op.drop_table('products')
	processing_status.drop(op.get_bind(), checkfirst=True)
	order_source.drop(op.get_bind(), checkfirst=True)
