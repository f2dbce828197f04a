"""initial ledger schema

Revision ID: 7c1e2d3f4a5b
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete TradeLedger schema:
- suppliers, clients: counterparties with running balances
- categories: product grouping
- products: catalogue rows carrying current_stock and average_cost aggregates
- stock_movements: append-only stock ledger with before/after snapshots
- quotations, invoices, purchases and their line/payment tables
- document_sequences: per-type, per-year numbering counters
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e2d3f4a5b'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def _money(name, nullable=False):
    return sa.Column(name, sa.Numeric(14, 2), nullable=nullable, server_default=None if nullable else '0')


def _line_columns():
    return [
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('item_code', sa.String(length=64), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='piece'),
        _money('discount'),
        sa.Column('tax_code', sa.String(length=8), nullable=False, server_default='A'),
        sa.Column('tax_rate', sa.Numeric(6, 2), nullable=False, server_default='0'),
        _money('subtotal'),
        _money('tax_amount'),
        _money('total_with_tax'),
    ]


def _payment_columns():
    return [
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('recorded_by', sa.Integer(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def _billing_columns():
    return [
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        _money('subtotal'),
        _money('total_discount'),
        _money('total_a_ex'),
        _money('total_tax_a'),
        _money('total_b18'),
        _money('total_tax_b'),
        _money('total_tax'),
        _money('grand_total'),
        _money('rounded_amount'),
        _money('amount_paid'),
        _money('balance'),
        sa.Column('balance_posted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='FRW'),
        sa.Column('payment_terms', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
    ]


def upgrade():
    """Create all tables from scratch."""

    # ============================================================================
    # suppliers / clients: counterparties
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('contact_person', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('tax_id', sa.String(length=64), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('payment_terms', sa.String(length=16), nullable=False, server_default='cash'),
        _money('outstanding_balance'),
        _money('total_purchases'),
        sa.Column('last_purchase_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_suppliers_code'),
    )
    op.create_index('ix_suppliers_name', 'suppliers', ['name'])
    op.create_index('ix_suppliers_is_active', 'suppliers', ['is_active'])

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('tax_id', sa.String(length=64), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('payment_terms', sa.String(length=16), nullable=False, server_default='cash'),
        _money('credit_limit'),
        _money('outstanding_balance'),
        _money('total_purchases'),
        sa.Column('last_purchase_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_clients_code'),
    )
    op.create_index('ix_clients_name', 'clients', ['name'])
    op.create_index('ix_clients_is_active', 'clients', ['is_active'])

    # ============================================================================
    # categories: product grouping
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_categories_name'),
    )
    op.create_index('ix_categories_is_active', 'categories', ['is_active'])

    # ============================================================================
    # products: catalogue + stock/cost aggregates
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='piece'),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('current_stock', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('average_cost', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Numeric(14, 3), nullable=False, server_default='10'),
        sa.Column('last_supply_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sale_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_archived', 'products', ['is_archived'])
    op.create_index('ix_products_supplier_id', 'products', ['supplier_id'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    # ============================================================================
    # stock_movements: append-only ledger
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('previous_stock', sa.Numeric(14, 3), nullable=False),
        sa.Column('new_stock', sa.Numeric(14, 3), nullable=False),
        sa.Column('previous_average_cost', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('new_average_cost', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('unit_cost', sa.Numeric(18, 6), nullable=True),
        sa.Column('total_cost', sa.Numeric(14, 2), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('lot_number', sa.String(length=64), nullable=True),
        sa.Column('expiry_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.Integer(), nullable=True),
        sa.Column('movement_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_product_id_id', 'stock_movements', ['product_id', 'id'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_reason', 'stock_movements', ['reason'])
    op.create_index('ix_stock_movements_supplier_id', 'stock_movements', ['supplier_id'])
    op.create_index('ix_stock_movements_movement_date', 'stock_movements', ['movement_date'])

    # ============================================================================
    # quotations
    # ============================================================================
    op.create_table(
        'quotations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quotation_number', sa.String(length=32), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('quotation_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),
        _money('subtotal'),
        _money('total_discount'),
        _money('total_tax'),
        _money('grand_total'),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='FRW'),
        sa.Column('payment_terms', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('terms', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.Integer(), nullable=True),
        sa.Column('converted_invoice_id', sa.Integer(), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('quotation_number', name='uq_quotations_number'),
    )
    op.create_index('ix_quotations_client_id', 'quotations', ['client_id'])
    op.create_index('ix_quotations_status', 'quotations', ['status'])
    op.create_index('ix_quotations_client_status', 'quotations', ['client_id', 'status'])
    op.create_index('ix_quotations_converted_invoice_id', 'quotations', ['converted_invoice_id'])

    op.create_table(
        'quotation_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quotation_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False),
        *_line_columns(),
        sa.ForeignKeyConstraint(['quotation_id'], ['quotations.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_quotation_items_quotation_id', 'quotation_items', ['quotation_id'])
    op.create_index('ix_quotation_items_product_id', 'quotation_items', ['product_id'])

    # ============================================================================
    # invoices: sales documents
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('quotation_id', sa.Integer(), nullable=True),
        sa.Column('invoice_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_deducted', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_billing_columns(),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.ForeignKeyConstraint(['quotation_id'], ['quotations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_number'),
    )
    op.create_index('ix_invoices_client_id', 'invoices', ['client_id'])
    op.create_index('ix_invoices_quotation_id', 'invoices', ['quotation_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_client_status', 'invoices', ['client_id', 'status'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False),
        *_line_columns(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])
    op.create_index('ix_invoice_items_product_id', 'invoice_items', ['product_id'])

    op.create_table(
        'invoice_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        *_payment_columns(),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invoice_payments_invoice_id', 'invoice_payments', ['invoice_id'])

    # ============================================================================
    # purchases: supplier documents
    # ============================================================================
    op.create_table(
        'purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_number', sa.String(length=32), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('supplier_invoice_number', sa.String(length=64), nullable=True),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expected_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_added', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_billing_columns(),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('purchase_number', name='uq_purchases_number'),
    )
    op.create_index('ix_purchases_supplier_id', 'purchases', ['supplier_id'])
    op.create_index('ix_purchases_status', 'purchases', ['status'])
    op.create_index('ix_purchases_supplier_status', 'purchases', ['supplier_id', 'status'])

    op.create_table(
        'purchase_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(14, 2), nullable=False),
        *_line_columns(),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_purchase_items_purchase_id', 'purchase_items', ['purchase_id'])
    op.create_index('ix_purchase_items_product_id', 'purchase_items', ['product_id'])

    op.create_table(
        'purchase_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_id', sa.Integer(), nullable=False),
        *_payment_columns(),
        sa.ForeignKeyConstraint(['purchase_id'], ['purchases.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_purchase_payments_purchase_id', 'purchase_payments', ['purchase_id'])

    # ============================================================================
    # document_sequences: numbering counters
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('period', sa.String(length=8), nullable=False, server_default=''),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'period', name='uq_doc_sequences_type_period'),
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('document_sequences')
    op.drop_table('purchase_payments')
    op.drop_table('purchase_items')
    op.drop_table('purchases')
    op.drop_table('invoice_payments')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('quotation_items')
    op.drop_table('quotations')
    op.drop_table('stock_movements')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('clients')
    op.drop_table('suppliers')
