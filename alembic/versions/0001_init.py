from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'menu_items',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('base_price', sa.Numeric(10,2), nullable=False, server_default='0'),
        sa.Column('available', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('track_inventory', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('stock_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_menu_items_stock_non_negative'),
        sa.CheckConstraint('low_stock_threshold >= 0', name='ck_menu_items_threshold_non_negative'),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('contact_number', sa.String(50), nullable=True),
        sa.Column('service_type', sa.String(20), nullable=False),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('pickup_time', sa.String(100), nullable=True),
        sa.Column('party_size', sa.Integer, nullable=True),
        sa.Column('dine_in_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=False),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('receipt_url', sa.Text, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('total', sa.Numeric(10,2), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("service_type IN ('dine-in', 'pickup', 'delivery')", name='ck_orders_service_type'),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('variation', sa.JSON, nullable=True),
        sa.Column('add_ons', sa.JSON, nullable=False),
        sa.Column('unit_price', sa.Numeric(10,2), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('subtotal', sa.Numeric(10,2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )

def downgrade():
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('menu_items')
