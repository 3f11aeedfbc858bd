from alembic import op
import sqlalchemy as sa

revision = "20261019093000"
down_revision = None

UTC_NOW = sa.text("(now() at time zone 'utc')")

def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=240), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('price_cents', sa.BigInteger(), nullable=False),
        sa.Column('category', sa.String(length=120), server_default=''),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
    )
    op.create_table(
        'inventory',
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('in_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('in_stock >= 0', name='ck_inventory_in_stock_non_negative'),
    )
    op.create_table(
        'vouchers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=64), nullable=False, unique=True, index=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False, server_default='PERCENT'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('min_spend_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('publish_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('expire_at', sa.DateTime(), nullable=False),
    )
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), index=True, nullable=False),
        sa.Column('delivery_method', sa.String(length=32), nullable=False),
        sa.Column('address', sa.String(length=512), server_default=''),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('payment_reference', sa.String(length=255)),
        sa.Column('provider_payment_id', sa.String(length=255), unique=True),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=False),
        sa.Column('discount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('voucher_code', sa.String(length=64)),
        sa.Column('total_cents', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='SGD'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='CREATED'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
    )
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=False),
        sa.Column('title_snapshot', sa.String(length=255), nullable=False),
    )
    op.create_table(
        'pending_payments',
        sa.Column('provider_payment_id', sa.String(length=255), primary_key=True),
        sa.Column('gateway', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('raw_payload', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column('last_updated', sa.DateTime(), nullable=False, server_default=UTC_NOW),
    )

def downgrade():
    op.drop_table('pending_payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('vouchers')
    op.drop_table('inventory')
    op.drop_table('products')
