"""Initial schema - product mappings, ledger, price history, rates, webhook audit

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'product_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('shopify_variant_id', sa.String(), nullable=True),
        sa.Column('naver_product_id', sa.String(), nullable=True),
        sa.Column('margin_multiplier', sa.Float(), nullable=False),
        sa.Column('exchange_rate_mode', sa.String(length=20), nullable=False),
        sa.Column('manual_rate', sa.Float(), nullable=True),
        sa.Column('conflict_policy', sa.String(length=30), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('sync_status', sa.String(length=20), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_product_mappings_id', 'product_mappings', ['id'])
    op.create_index('ix_product_mappings_sku', 'product_mappings', ['sku'], unique=True)
    op.create_index('ix_product_mappings_shopify_variant_id', 'product_mappings', ['shopify_variant_id'])
    op.create_index('ix_product_mappings_naver_product_id', 'product_mappings', ['naver_product_id'])
    op.create_index('ix_product_mappings_is_active', 'product_mappings', ['is_active'])
    op.create_index('ix_product_mappings_sync_status', 'product_mappings', ['sync_status'])

    op.create_table(
        'inventory_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('platform', sa.String(length=20), nullable=False),
        sa.Column('transaction_type', sa.String(length=20), nullable=False),
        sa.Column('order_id', sa.String(), nullable=True),
        sa.Column('order_line_item_id', sa.String(), nullable=True),
        sa.Column('performed_by', sa.String(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('previous_quantity', sa.Integer(), nullable=True),
        sa.Column('new_quantity', sa.Integer(), nullable=True),
        sa.Column('sync_status', sa.String(length=20), nullable=False),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['sku'], ['product_mappings.sku']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_inventory_transactions_id', 'inventory_transactions', ['id'])
    op.create_index('ix_inventory_transactions_sku', 'inventory_transactions', ['sku'])
    op.create_index('ix_inventory_transactions_platform', 'inventory_transactions', ['platform'])
    op.create_index('ix_inventory_transactions_sync_status', 'inventory_transactions', ['sync_status'])
    op.create_index('ix_inventory_transactions_created_at', 'inventory_transactions', ['created_at'])
    # One ledger row per (order, line, type); rows without an order id are never deduplicated
    op.create_index(
        'uq_inventory_tx_event',
        'inventory_transactions',
        ['order_id', 'order_line_item_id', 'transaction_type'],
        unique=True,
        postgresql_where=sa.text('order_id IS NOT NULL'),
        sqlite_where=sa.text('order_id IS NOT NULL'),
    )

    op.create_table(
        'price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('source_platform', sa.String(length=20), nullable=False),
        sa.Column('target_platform', sa.String(length=20), nullable=False),
        sa.Column('source_price', sa.Float(), nullable=False),
        sa.Column('exchange_rate', sa.Float(), nullable=False),
        sa.Column('margin_multiplier', sa.Float(), nullable=False),
        sa.Column('computed_price', sa.Float(), nullable=False),
        sa.Column('sync_status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['sku'], ['product_mappings.sku']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_price_history_id', 'price_history', ['id'])
    op.create_index('ix_price_history_sku', 'price_history', ['sku'])
    op.create_index('ix_price_history_sync_status', 'price_history', ['sync_status'])
    op.create_index('ix_price_history_created_at', 'price_history', ['created_at'])
    op.create_index(
        'uq_price_history_pending_sku',
        'price_history',
        ['sku'],
        unique=True,
        postgresql_where=sa.text("sync_status = 'pending'"),
        sqlite_where=sa.text("sync_status = 'pending'"),
    )

    op.create_table(
        'exchange_rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('base_currency', sa.String(length=3), nullable=False),
        sa.Column('quote_currency', sa.String(length=3), nullable=False),
        sa.Column('rate', sa.Float(), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_exchange_rates_id', 'exchange_rates', ['id'])
    op.create_index(
        'ix_exchange_rates_pair_valid_from',
        'exchange_rates',
        ['base_currency', 'quote_currency', 'valid_from'],
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('topic', sa.String(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_webhook_events_source', 'webhook_events', ['source'])
    op.create_index('ix_webhook_events_status', 'webhook_events', ['status'])
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'])


def downgrade() -> None:
    op.drop_table('webhook_events')
    op.drop_table('exchange_rates')
    op.drop_index('uq_price_history_pending_sku', table_name='price_history')
    op.drop_table('price_history')
    op.drop_index('uq_inventory_tx_event', table_name='inventory_transactions')
    op.drop_table('inventory_transactions')
    op.drop_table('product_mappings')
