"""initial schema

Revision ID: ts001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete tile stock schema:
- shops: tenant root with address/contact/settings
- users, session_tokens: authentication with role and shop captured per session
- tiles, tile_images: catalogue with on-hand + reserved stock in pieces
- stock_transactions: append-only audit of every stock movement
- sales, sale_items: customer sales that reserve stock until delivery
- sequences: atomic counters for TILE-###### and SALE-YYYYMM-######
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'ts001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # shops: tenant root
    # ============================================================================
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('address_street', sa.String(length=255), nullable=True),
        sa.Column('address_city', sa.String(length=120), nullable=True),
        sa.Column('address_state', sa.String(length=120), nullable=True),
        sa.Column('address_zip_code', sa.String(length=32), nullable=True),
        sa.Column('address_country', sa.String(length=120), nullable=True),
        sa.Column('contact_phone', sa.String(length=64), nullable=True),
        sa.Column('contact_email', sa.String(length=255), nullable=True),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shops_is_active', 'shops', ['is_active'])
    op.create_index('ix_shops_active_name', 'shops', ['is_active', 'name'])

    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='staff'),
        sa.Column('shop_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_shop_id', 'users', ['shop_id'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=True),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('low_stock_alert_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # tiles / tile_images
    # ============================================================================
    op.create_table(
        'tiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('items_per_packet', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('minimum_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_tiles_sku'),
        sa.CheckConstraint('quantity >= 0', name='ck_tiles_quantity_non_negative'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_tiles_reserved_non_negative'),
        sa.CheckConstraint('reserved_quantity <= quantity', name='ck_tiles_reserved_within_on_hand'),
        sa.CheckConstraint('items_per_packet >= 1', name='ck_tiles_items_per_packet_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tiles_shop_id', 'tiles', ['shop_id'])
    op.create_index('ix_tiles_is_deleted', 'tiles', ['is_deleted'])
    op.create_index('ix_tiles_shop_name', 'tiles', ['shop_id', 'name'])
    op.create_index('ix_tiles_shop_active', 'tiles', ['shop_id', 'is_active'])
    op.create_index('ix_tiles_quantity', 'tiles', ['quantity'])

    op.create_table(
        'tile_images',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tile_id', sa.Integer(), nullable=False),
        sa.Column('url', sa.String(length=1024), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tile_id'], ['tiles.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_tile_images_tile_id', 'tile_images', ['tile_id'])

    # ============================================================================
    # stock_transactions: append-only audit
    # ============================================================================
    op.create_table(
        'stock_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tile_id', sa.Integer(), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=True),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('packets', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pieces', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('performed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['tile_id'], ['tiles.id']),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.ForeignKeyConstraint(['performed_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_transactions_tile_id', 'stock_transactions', ['tile_id'])
    op.create_index('ix_stock_transactions_shop_id', 'stock_transactions', ['shop_id'])
    op.create_index('ix_stock_transactions_reference_number', 'stock_transactions', ['reference_number'])
    op.create_index('ix_stock_transactions_performed_by_user_id', 'stock_transactions', ['performed_by_user_id'])
    op.create_index('ix_stock_transactions_created_at', 'stock_transactions', ['created_at'])
    op.create_index('ix_stocktx_tile_created', 'stock_transactions', ['tile_id', 'created_at'])
    op.create_index('ix_stocktx_shop_created', 'stock_transactions', ['shop_id', 'created_at'])
    op.create_index('ix_stocktx_type', 'stock_transactions', ['transaction_type'])

    # ============================================================================
    # sales / sale_items
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=32), nullable=False),
        sa.Column('shop_id', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=64), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_address', sa.String(length=500), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('sold_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['shop_id'], ['shops.id']),
        sa.ForeignKeyConstraint(['sold_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_number', name='uq_sales_sale_number'),
        sa.CheckConstraint('total_amount_cents >= 0', name='ck_sales_total_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_shop_id', 'sales', ['shop_id'])
    op.create_index('ix_sales_sold_by_user_id', 'sales', ['sold_by_user_id'])
    op.create_index('ix_sales_shop_created', 'sales', ['shop_id', 'created_at'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_customer_name', 'sales', ['customer_name'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('tile_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['tile_id'], ['tiles.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity >= 1', name='ck_sale_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_tile_id', 'sale_items', ['tile_id'])

    # ============================================================================
    # sequences: atomic identifier counters
    # ============================================================================
    op.create_table(
        'sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.Column('period', sa.String(length=16), nullable=False, server_default=''),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', 'period', name='uq_sequences_name_period'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sequences_name', 'sequences', ['name'])


def downgrade():
    op.drop_table('sequences')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('stock_transactions')
    op.drop_table('tile_images')
    op.drop_table('tiles')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('shops')
