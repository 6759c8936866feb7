"""add indexes for cooldown checks and order tracking

Revision ID: 0002_add_order_lookup_indexes
Revises: 0001_init
Create Date: 2025-01-16

"""
from alembic import op

revision = '0002_add_order_lookup_indexes'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    # Cooldown lookups filter by identifier inside a time window
    op.create_index('ix_orders_contact_created', 'orders', ['contact_number', 'created_at'])
    op.create_index('ix_orders_ip_created', 'orders', ['ip_address', 'created_at'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])


def downgrade() -> None:
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_index('ix_orders_ip_created', table_name='orders')
    op.drop_index('ix_orders_contact_created', table_name='orders')
    op.drop_index('ix_orders_created_at', table_name='orders')
