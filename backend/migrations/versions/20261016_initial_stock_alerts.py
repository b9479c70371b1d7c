"""initial stock alert schema

Revision ID: 20261016_initial
Revises:
Create Date: 2026-10-16 00:00:00.000000

Creates the stock ledger and alert tables:
- products: catalog with min_threshold (LOW trigger value)
- inventory: current stock per (product, location), never negative
- inventory_history: append-only audit of stock mutations
- alerts: LOW/HIGH alerts; active_key is unique while an alert is NEW
- alert_queue_messages: durable alert-request queue
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261016_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: catalog records
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('min_threshold', sa.Integer(), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('min_threshold >= 1', name='ck_products_min_threshold_positive'),
        sa.PrimaryKeyConstraint('product_id'),
    )
    op.create_index('ix_products_category', 'products', ['category'])
    op.create_index('ix_products_sku', 'products', ['sku'])

    # ============================================================================
    # inventory: source of truth for stock
    # ============================================================================
    op.create_table(
        'inventory',
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('location_id', sa.String(length=64), nullable=False),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('current_stock >= 0', name='ck_inventory_stock_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.product_id'], ),
        sa.PrimaryKeyConstraint('product_id', 'location_id'),
    )

    # ============================================================================
    # inventory_history: append-only mutation log
    # ============================================================================
    op.create_table(
        'inventory_history',
        sa.Column('history_id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('location_id', sa.String(length=64), nullable=False),
        sa.Column('change_amount', sa.Integer(), nullable=False),
        sa.Column('stock_before', sa.Integer(), nullable=False),
        sa.Column('stock_after', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.product_id'], ),
        sa.PrimaryKeyConstraint('history_id'),
    )
    op.create_index('ix_inventory_history_product_ts', 'inventory_history', ['product_id', 'timestamp'])
    op.create_index('ix_inventory_history_location_ts', 'inventory_history', ['location_id', 'timestamp'])

    # ============================================================================
    # alerts: at most one NEW alert per product (uq_alerts_active_key)
    # ============================================================================
    op.create_table(
        'alerts',
        sa.Column('alert_id', sa.String(length=32), nullable=False),
        sa.Column('product_id', sa.String(length=32), nullable=False),
        sa.Column('location_id', sa.String(length=64), nullable=False),
        sa.Column('alert_type', sa.String(length=16), nullable=False),
        sa.Column('threshold', sa.Integer(), nullable=False),
        sa.Column('current_stock', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('active_key', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('acknowledged_by', sa.String(length=64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('alert_id'),
        sa.UniqueConstraint('active_key', name='uq_alerts_active_key'),
    )
    op.create_index('ix_alerts_product_created', 'alerts', ['product_id', 'created_at'])
    op.create_index('ix_alerts_status_created', 'alerts', ['status', 'created_at'])

    # ============================================================================
    # alert_queue_messages: at-least-once alert request delivery
    # ============================================================================
    op.create_table(
        'alert_queue_messages',
        sa.Column('message_id', sa.String(length=32), nullable=False),
        sa.Column('message_type', sa.String(length=32), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('group_key', sa.String(length=64), nullable=True),
        sa.Column('dedup_key', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('receive_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('visible_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('message_id'),
    )
    op.create_index('ix_alert_queue_status_visible', 'alert_queue_messages', ['status', 'visible_at'])
    op.create_index('ix_alert_queue_group', 'alert_queue_messages', ['group_key', 'status'])
    op.create_index('ix_alert_queue_dedup', 'alert_queue_messages', ['dedup_key', 'created_at'])


def downgrade():
    op.drop_index('ix_alert_queue_dedup', table_name='alert_queue_messages')
    op.drop_index('ix_alert_queue_group', table_name='alert_queue_messages')
    op.drop_index('ix_alert_queue_status_visible', table_name='alert_queue_messages')
    op.drop_table('alert_queue_messages')

    op.drop_index('ix_alerts_status_created', table_name='alerts')
    op.drop_index('ix_alerts_product_created', table_name='alerts')
    op.drop_table('alerts')

    op.drop_index('ix_inventory_history_location_ts', table_name='inventory_history')
    op.drop_index('ix_inventory_history_product_ts', table_name='inventory_history')
    op.drop_table('inventory_history')

    op.drop_table('inventory')

    op.drop_index('ix_products_sku', table_name='products')
    op.drop_index('ix_products_category', table_name='products')
    op.drop_table('products')
