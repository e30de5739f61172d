"""initial sawmill schema

Revision ID: s001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the sawmill admin schema from scratch:
- sites, products: reference data every record is scoped to
- stock_lots, inventory_movements: lot ledger (movements are append-only)
- cash_shifts, cash_movements: drawer ledger (movements are append-only)
- sales, sale_lines, sale_line_allocations: sale notes and their lot picks
- expenses: expense receipts
- cash_posting_outbox: cash income waiting to be posted (deferred mode)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 's001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text('CURRENT_TIMESTAMP')


def upgrade():
    # ============================================================================
    # sites / products: reference data
    # ============================================================================
    op.create_table(
        'sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sites_code', 'sites', ['code'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'sku', name='uq_products_site_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_site_id', 'products', ['site_id'])

    # ============================================================================
    # stock_lots / inventory_movements: lot ledger
    # ============================================================================
    op.create_table(
        'stock_lots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('location', sa.String(length=16), nullable=False),
        sa.Column('pieces', sa.Integer(), nullable=False),
        sa.Column('ingress_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('origin_order_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.CheckConstraint('pieces >= 0', name='ck_stock_lots_pieces_non_negative'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_lots_site_id', 'stock_lots', ['site_id'])
    op.create_index('ix_stock_lots_product_id', 'stock_lots', ['product_id'])
    op.create_index('ix_stock_lots_location', 'stock_lots', ['location'])
    op.create_index('ix_stock_lots_ingress_at', 'stock_lots', ['ingress_at'])
    op.create_index('ix_stock_lots_origin_order_id', 'stock_lots', ['origin_order_id'])
    op.create_index('ix_stock_lots_site_product_ingress', 'stock_lots', ['site_id', 'product_id', 'ingress_at'])

    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.Integer(), nullable=False),
        sa.Column('principal_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('pieces_delta', sa.Integer(), nullable=False),
        sa.Column('origin_location', sa.String(length=16), nullable=True),
        sa.Column('destination_location', sa.String(length=16), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('reversal_of_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('pieces_delta <> 0', name='ck_inventory_movements_nonzero'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['lot_id'], ['stock_lots.id']),
        sa.ForeignKeyConstraint(['reversal_of_id'], ['inventory_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_movements_site_id', 'inventory_movements', ['site_id'])
    op.create_index('ix_inventory_movements_lot_id', 'inventory_movements', ['lot_id'])
    op.create_index('ix_inventory_movements_kind', 'inventory_movements', ['kind'])
    op.create_index('ix_inventory_movements_sale_id', 'inventory_movements', ['sale_id'])
    op.create_index('ix_inventory_movements_reversal_of_id', 'inventory_movements', ['reversal_of_id'])
    op.create_index('ix_inventory_movements_occurred_at', 'inventory_movements', ['occurred_at'])
    op.create_index('ix_inventory_movements_lot_occurred', 'inventory_movements', ['lot_id', 'occurred_at'])

    # ============================================================================
    # cash_shifts / cash_movements: drawer ledger
    # ============================================================================
    op.create_table(
        'cash_shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('opening_float_cents', sa.Integer(), nullable=False),
        sa.Column('counted_amount_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=True),
        sa.Column('computed_cash_sales_cents', sa.Integer(), nullable=True),
        sa.Column('computed_expenses_cents', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('opened_by_principal_id', sa.Integer(), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by_principal_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_shifts_site_id', 'cash_shifts', ['site_id'])
    op.create_index('ix_cash_shifts_opened_at', 'cash_shifts', ['opened_at'])
    # At most one open shift per site
    op.create_index(
        'uq_cash_shifts_one_open_per_site',
        'cash_shifts',
        ['site_id'],
        unique=True,
        sqlite_where=sa.text('closed_at IS NULL'),
        postgresql_where=sa.text('closed_at IS NULL'),
    )

    op.create_table(
        'cash_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('expense_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_cash_movements_amount_positive'),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'kind', name='uq_cash_movements_sale_kind'),
        sa.UniqueConstraint('expense_id', 'kind', name='uq_cash_movements_expense_kind'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_movements_shift_id', 'cash_movements', ['shift_id'])
    op.create_index('ix_cash_movements_kind', 'cash_movements', ['kind'])
    op.create_index('ix_cash_movements_sale_id', 'cash_movements', ['sale_id'])
    op.create_index('ix_cash_movements_expense_id', 'cash_movements', ['expense_id'])
    op.create_index('ix_cash_movements_occurred_at', 'cash_movements', ['occurred_at'])
    op.create_index('ix_cash_movements_shift_occurred', 'cash_movements', ['shift_id', 'occurred_at'])

    # ============================================================================
    # sales / sale_lines / sale_line_allocations
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('folio', sa.String(length=32), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('created_by_principal_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_principal_id', sa.Integer(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('site_id', 'folio', name='uq_sales_site_folio'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_site_id', 'sales', ['site_id'])
    op.create_index('ix_sales_shift_id', 'sales', ['shift_id'])
    op.create_index('ix_sales_client_id', 'sales', ['client_id'])
    op.create_index('ix_sales_payment_method', 'sales', ['payment_method'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_site_status_created', 'sales', ['site_id', 'status', 'created_at'])

    op.create_table(
        'sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])
    op.create_index('ix_sale_lines_product_id', 'sale_lines', ['product_id'])

    op.create_table(
        'sale_line_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_line_id', sa.Integer(), nullable=False),
        sa.Column('lot_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_lines.id']),
        sa.ForeignKeyConstraint(['lot_id'], ['stock_lots.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['inventory_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_line_allocations_sale_line_id', 'sale_line_allocations', ['sale_line_id'])
    op.create_index('ix_sale_line_allocations_lot_id', 'sale_line_allocations', ['lot_id'])

    # ============================================================================
    # expenses
    # ============================================================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('beneficiary', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('concept', sa.String(length=64), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_principal_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_principal_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_expenses_amount_positive'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expenses_site_id', 'expenses', ['site_id'])
    op.create_index('ix_expenses_shift_id', 'expenses', ['shift_id'])
    op.create_index('ix_expenses_concept', 'expenses', ['concept'])
    op.create_index('ix_expenses_payment_status', 'expenses', ['payment_status'])
    op.create_index('ix_expenses_status', 'expenses', ['status'])
    op.create_index('ix_expenses_site_issued', 'expenses', ['site_id', 'issued_at'])

    # ============================================================================
    # cash_posting_outbox: deferred cash income
    # ============================================================================
    op.create_table(
        'cash_posting_outbox',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id']),
        sa.ForeignKeyConstraint(['shift_id'], ['cash_shifts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cash_posting_outbox_site_id', 'cash_posting_outbox', ['site_id'])
    op.create_index('ix_cash_posting_outbox_shift_id', 'cash_posting_outbox', ['shift_id'])
    op.create_index('ix_cash_posting_outbox_status', 'cash_posting_outbox', ['status'])


def downgrade():
    op.drop_table('cash_posting_outbox')
    op.drop_table('expenses')
    op.drop_table('sale_line_allocations')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('cash_movements')
    op.drop_index('uq_cash_shifts_one_open_per_site', table_name='cash_shifts')
    op.drop_table('cash_shifts')
    op.drop_table('inventory_movements')
    op.drop_table('stock_lots')
    op.drop_table('products')
    op.drop_table('sites')
