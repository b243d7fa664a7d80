"""Create customers and WooCommerce sync tables

Revision ID: 001
Revises: 
Create Date: 2025-02-03 09:00:00.000000

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


def upgrade() -> None:
    # Tables may already exist when Base.metadata.create_all ran first
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'customers' not in existing_tables:
        op.create_table(
            'customers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('phone', sa.String(length=50), nullable=True),
            sa.Column('custom_fields', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_customers_id', 'customers', ['id'])
        op.create_index('ix_customers_email', 'customers', ['email'], unique=True)

    if 'woocommerce_products' not in existing_tables:
        op.create_table(
            'woocommerce_products',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('woo_product_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=True),
            sa.Column('sku', sa.String(length=100), nullable=True),
            sa.Column('price', sa.Float(), nullable=True),
            sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_woocommerce_products_id', 'woocommerce_products', ['id'])
        op.create_index('ix_woocommerce_products_woo_product_id', 'woocommerce_products', ['woo_product_id'], unique=True)

    if 'woocommerce_orders' not in existing_tables:
        op.create_table(
            'woocommerce_orders',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('woo_order_id', sa.Integer(), nullable=False),
            sa.Column('customer_id', sa.Integer(), nullable=True),
            sa.Column('customer_email', sa.String(length=255), nullable=True),
            sa.Column('customer_name', sa.String(length=255), nullable=True),
            sa.Column('order_number', sa.String(length=50), nullable=True),
            sa.Column('order_status', sa.String(length=50), nullable=True),
            sa.Column('total_amount', sa.Float(), nullable=True),
            sa.Column('currency', sa.String(length=10), nullable=True),
            sa.Column('payment_method', sa.String(length=100), nullable=True),
            sa.Column('payment_method_title', sa.String(length=255), nullable=True),
            sa.Column('transaction_id', sa.String(length=255), nullable=True),
            sa.Column('order_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('completed_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('products', sa.JSON(), nullable=True),
            sa.Column('billing_info', sa.JSON(), nullable=True),
            sa.Column('shipping_info', sa.JSON(), nullable=True),
            sa.Column('customer_note', sa.Text(), nullable=True),
            sa.Column('order_metadata', sa.JSON(), nullable=True),
            sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_woocommerce_orders_id', 'woocommerce_orders', ['id'])
        op.create_index('ix_woocommerce_orders_woo_order_id', 'woocommerce_orders', ['woo_order_id'], unique=True)
        op.create_index('ix_woocommerce_orders_customer_id', 'woocommerce_orders', ['customer_id'])
        op.create_index('ix_woocommerce_orders_status_date', 'woocommerce_orders', ['order_status', 'order_date'])

    if 'woocommerce_subscriptions' not in existing_tables:
        op.create_table(
            'woocommerce_subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('woo_subscription_id', sa.String(length=255), nullable=False),
            sa.Column('customer_id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), nullable=False),
            sa.Column('product_id', sa.Integer(), nullable=True),
            sa.Column('status', sa.String(length=50), nullable=False),
            sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('next_payment_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
            sa.Column('billing_period', sa.String(length=20), nullable=False),
            sa.Column('billing_interval', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('total_amount', sa.Float(), nullable=True),
            sa.Column('subscription_metadata', sa.JSON(), nullable=True),
            sa.Column('reminder_first_sent', sa.Boolean(), nullable=False, server_default='false'),
            sa.Column('reminder_final_sent', sa.Boolean(), nullable=False, server_default='false'),
            sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['order_id'], ['woocommerce_orders.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['product_id'], ['woocommerce_products.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_woocommerce_subscriptions_id', 'woocommerce_subscriptions', ['id'])
        op.create_index('ix_woocommerce_subscriptions_woo_subscription_id', 'woocommerce_subscriptions', ['woo_subscription_id'])
        op.create_index('ix_woocommerce_subscriptions_customer_id', 'woocommerce_subscriptions', ['customer_id'])
        op.create_index('ix_woocommerce_subscriptions_order_id', 'woocommerce_subscriptions', ['order_id'])

    if 'woocommerce_sync_log' not in existing_tables:
        op.create_table(
            'woocommerce_sync_log',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('sync_type', sa.String(length=50), nullable=False),
            sa.Column('woo_id', sa.Integer(), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('payload', sa.JSON(), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_woocommerce_sync_log_id', 'woocommerce_sync_log', ['id'])
        op.create_index('ix_woocommerce_sync_log_woo_id', 'woocommerce_sync_log', ['woo_id'])
        op.create_index('ix_woocommerce_sync_log_status', 'woocommerce_sync_log', ['status'])
        op.create_index('ix_woocommerce_sync_log_created_at', 'woocommerce_sync_log', ['created_at'])


def downgrade() -> None:
    conn = op.get_bind()
    inspector = inspect(conn)
    existing_tables = inspector.get_table_names()

    # Reverse dependency order
    for table in (
        'woocommerce_sync_log',
        'woocommerce_subscriptions',
        'woocommerce_orders',
        'woocommerce_products',
        'customers',
    ):
        if table in existing_tables:
            op.drop_table(table)
