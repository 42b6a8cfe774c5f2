"""initial d1 store schema

Revision ID: d1s001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates:
- stores: stores that staff belong to
- staff: staff members with optional cumulative uniform allowance
- stock_items: uniform stock keyed on (ean, name) with a mutable on-hand qty
- uniform_requests: staff requests with tracking id and dispatch status
- deliveries: delivery record written alongside each request
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'd1s001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_stores_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'staff',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='STAFF'),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('uniform_limit', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.CheckConstraint('uniform_limit IS NULL OR uniform_limit > 0', name='ck_staff_uniform_limit_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_staff_store_id', 'staff', ['store_id'])
    op.create_index('ix_staff_store_display_name', 'staff', ['store_id', 'display_name'])

    op.create_table(
        'stock_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ean', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('qty >= 0', name='ck_stock_items_qty_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ean', 'name', name='uq_stock_items_ean_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_items_ean', 'stock_items', ['ean'])
    op.create_index('ix_stock_items_name', 'stock_items', ['name'])

    op.create_table(
        'uniform_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('stock_item_id', sa.Integer(), nullable=False),
        sa.Column('ean', sa.String(length=32), nullable=False),
        sa.Column('item_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('tracking_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='REQUEST'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reorder_of_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['stock_item_id'], ['stock_items.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reorder_of_id'], ['uniform_requests.id']),
        sa.CheckConstraint('quantity > 0', name='ck_uniform_requests_quantity_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tracking_id', name='uq_uniform_requests_tracking_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_uniform_requests_staff_id', 'uniform_requests', ['staff_id'])
    op.create_index('ix_uniform_requests_stock_item_id', 'uniform_requests', ['stock_item_id'])
    op.create_index('ix_uniform_requests_staff_created', 'uniform_requests', ['staff_id', 'created_at'])
    op.create_index('ix_uniform_requests_status', 'uniform_requests', ['status'])

    op.create_table(
        'deliveries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('tracking_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tracking_id', name='uq_deliveries_tracking_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_deliveries_store_id', 'deliveries', ['store_id'])
    op.create_index('ix_deliveries_staff_id', 'deliveries', ['staff_id'])


def downgrade():
    op.drop_table('deliveries')
    op.drop_table('uniform_requests')
    op.drop_table('stock_items')
    op.drop_table('staff')
    op.drop_table('stores')
