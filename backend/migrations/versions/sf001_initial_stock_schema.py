"""initial stock schema

Revision ID: sf001_initial_stock
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete StockFlow schema:
- businesses / document_sequences: tenant root and expense numbering
- products / suppliers: registry (name_key unique per business, version_id CAS)
- stock_conversions: conversion commands keyed by conversion_key
- inventory_receipts / inventory_movements: acquisition and movement ledgers
- sale_events / sale_reversals: single tagged sales stream
- expenses: loss and purchase sink
- product_metric_snapshots / supply_chain_insights: materialized analytics
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sf001_initial_stock'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # businesses: tenant root
    # ============================================================================
    op.create_table(
        'businesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_businesses_is_active', 'businesses', ['is_active'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'document_type', name='uq_doc_sequences_business_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_business_id', 'document_sequences', ['business_id'])
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ============================================================================
    # products / suppliers: registry
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('name_key', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('current_stock', sa.Float(), nullable=False, server_default='0'),
        sa.Column('selling_price', sa.Float(), nullable=True),
        sa.Column('last_sale_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sales_count_30d', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'name_key', name='uq_products_business_name_key'),
        sa.CheckConstraint('current_stock >= 0', name='ck_products_stock_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_business_id', 'products', ['business_id'])
    op.create_index('ix_products_business_name', 'products', ['business_id', 'name'])

    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('phone_number', sa.String(length=64), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_suppliers_business_id', 'suppliers', ['business_id'])
    op.create_index('ix_suppliers_business_name', 'suppliers', ['business_id', 'name'])

    # ============================================================================
    # stock_conversions: PROPOSED -> COMMITTED | CANCELLED
    # ============================================================================
    op.create_table(
        'stock_conversions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('conversion_key', sa.String(length=64), nullable=False),
        sa.Column('source_product_id', sa.Integer(), nullable=False),
        sa.Column('source_product_name', sa.String(length=255), nullable=False),
        sa.Column('destination_product_id', sa.Integer(), nullable=True),
        sa.Column('destination_product_name', sa.String(length=255), nullable=False),
        sa.Column('source_quantity', sa.Float(), nullable=False),
        sa.Column('destination_quantity', sa.Float(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('unit_cost', sa.Float(), nullable=True),
        sa.Column('selling_price', sa.Float(), nullable=True),
        sa.Column('source_unit_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('cost_impact', sa.Float(), nullable=False, server_default='0'),
        sa.Column('record_loss', sa.Boolean(), nullable=True),
        sa.Column('expense_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PROPOSED'),
        _timestamp('created_at'),
        sa.Column('committed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['source_product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['destination_product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'conversion_key', name='uq_conversions_business_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_conversions_business_id', 'stock_conversions', ['business_id'])
    op.create_index('ix_stock_conversions_source_product_id', 'stock_conversions', ['source_product_id'])
    op.create_index('ix_stock_conversions_destination_product_id', 'stock_conversions', ['destination_product_id'])
    op.create_index('ix_stock_conversions_status', 'stock_conversions', ['status'])

    # ============================================================================
    # inventory_receipts / inventory_movements: ledgers
    # ============================================================================
    op.create_table(
        'inventory_receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity_received', sa.Float(), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=True),
        sa.Column('total_cost', sa.Float(), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('conversion_id', sa.Integer(), nullable=True),
        sa.Column('received_date', sa.DateTime(timezone=True), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['conversion_id'], ['stock_conversions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity_received > 0', name='ck_receipts_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_receipts_business_id', 'inventory_receipts', ['business_id'])
    op.create_index('ix_inventory_receipts_product_id', 'inventory_receipts', ['product_id'])
    op.create_index('ix_inventory_receipts_supplier_id', 'inventory_receipts', ['supplier_id'])
    op.create_index('ix_inventory_receipts_conversion_id', 'inventory_receipts', ['conversion_id'])
    op.create_index('ix_inventory_receipts_received_date', 'inventory_receipts', ['received_date'])
    op.create_index('ix_receipts_business_product_received', 'inventory_receipts',
                    ['business_id', 'product_id', 'received_date'])

    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('conversion_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['conversion_id'], ['stock_conversions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_movements_business_id', 'inventory_movements', ['business_id'])
    op.create_index('ix_inventory_movements_product_id', 'inventory_movements', ['product_id'])
    op.create_index('ix_inventory_movements_movement_type', 'inventory_movements', ['movement_type'])
    op.create_index('ix_inventory_movements_conversion_id', 'inventory_movements', ['conversion_id'])
    op.create_index('ix_inventory_movements_created_at', 'inventory_movements', ['created_at'])
    op.create_index('ix_movements_business_product_type', 'inventory_movements',
                    ['business_id', 'product_id', 'movement_type'])

    # ============================================================================
    # sale_events / sale_reversals: one stream, exactly one origin per event
    # ============================================================================
    op.create_table(
        'sale_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('origin', sa.String(length=16), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('movement_id', name='uq_sale_events_movement'),
        sa.CheckConstraint("origin IN ('SALES_LEDGER', 'MOVEMENT')", name='ck_sale_events_origin'),
        sa.CheckConstraint(
            "(origin = 'MOVEMENT' AND movement_id IS NOT NULL) OR "
            "(origin = 'SALES_LEDGER' AND movement_id IS NULL)",
            name='ck_sale_events_single_origin'
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_events_business_id', 'sale_events', ['business_id'])
    op.create_index('ix_sale_events_product_id', 'sale_events', ['product_id'])
    op.create_index('ix_sale_events_origin', 'sale_events', ['origin'])
    op.create_index('ix_sale_events_sold_at', 'sale_events', ['sold_at'])
    op.create_index('ix_sale_events_business_product_sold', 'sale_events',
                    ['business_id', 'product_id', 'sold_at'])

    op.create_table(
        'sale_reversals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('restock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_events.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_reversals_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_reversals_sale_id', 'sale_reversals', ['sale_id'])

    # ============================================================================
    # expenses
    # ============================================================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('expense_number', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('vendor_name', sa.String(length=255), nullable=True),
        sa.Column('description', sa.String(length=512), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('conversion_id', sa.Integer(), nullable=True),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.Column('receipt_id', sa.Integer(), nullable=True),
        sa.Column('is_reversed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reversal_reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['conversion_id'], ['stock_conversions.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id']),
        sa.ForeignKeyConstraint(['receipt_id'], ['inventory_receipts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'expense_number', name='uq_expenses_business_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expenses_business_id', 'expenses', ['business_id'])
    op.create_index('ix_expenses_conversion_id', 'expenses', ['conversion_id'])
    op.create_index('ix_expenses_movement_id', 'expenses', ['movement_id'])
    op.create_index('ix_expenses_receipt_id', 'expenses', ['receipt_id'])
    op.create_index('ix_expenses_business_category', 'expenses', ['business_id', 'category'])

    # ============================================================================
    # analytics: metric snapshots and insights
    # ============================================================================
    op.create_table(
        'product_metric_snapshots',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('units_received', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_invested', sa.Float(), nullable=False, server_default='0'),
        sa.Column('supplier_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_inventory_age', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('units_remaining', sa.Float(), nullable=False, server_default='0'),
        sa.Column('units_sold', sa.Float(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Float(), nullable=False, server_default='0'),
        sa.Column('avg_selling_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('avg_unit_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('cost_of_goods_sold', sa.Float(), nullable=False, server_default='0'),
        sa.Column('turnover_times', sa.Float(), nullable=False, server_default='0'),
        sa.Column('turnover_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('profit_margin', sa.Float(), nullable=False, server_default='0'),
        sa.Column('break_even_point', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('is_stale', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.PrimaryKeyConstraint('product_id'),
    )
    op.create_index('ix_product_metric_snapshots_business_id', 'product_metric_snapshots', ['business_id'])
    op.create_index('ix_product_metric_snapshots_is_stale', 'product_metric_snapshots', ['is_stale'])

    op.create_table(
        'supply_chain_insights',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('insight_type', sa.String(length=64), nullable=False),
        sa.Column('message', sa.String(length=512), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_supply_chain_insights_business_id', 'supply_chain_insights', ['business_id'])
    op.create_index('ix_insights_business_type', 'supply_chain_insights', ['business_id', 'insight_type'])


def downgrade():
    op.drop_table('supply_chain_insights')
    op.drop_table('product_metric_snapshots')
    op.drop_table('expenses')
    op.drop_table('sale_reversals')
    op.drop_table('sale_events')
    op.drop_table('inventory_movements')
    op.drop_table('inventory_receipts')
    op.drop_table('stock_conversions')
    op.drop_table('suppliers')
    op.drop_table('products')
    op.drop_table('document_sequences')
    op.drop_table('businesses')
