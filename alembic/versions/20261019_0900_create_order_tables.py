"""Create member, catalog, order, points, return and gateway notification tables

Revision ID: create_order_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'create_order_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'pending', 'paid', 'shipped', 'arrived', 'completed',
    'cancelled', 'return_requested', 'returned', 'refunded',
)


def upgrade() -> None:
    """Create ShopHub order tables"""

    op.create_table('members',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, comment='登录邮箱'),
        sa.Column('name', sa.String(length=100), nullable=True, comment='会员姓名'),
        sa.Column('phone', sa.String(length=20), nullable=True, comment='手机'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0', comment='当前点数余额'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='乐观锁版本号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('points >= 0', name='ck_members_points_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    op.create_table('products',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='商品名称'),
        sa.Column('image', sa.Text(), nullable=True, comment='主图 URL'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='售价'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0', comment='库存'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('product_variants',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False, comment='规格名称'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=True, comment='规格售价，空则沿用商品价'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0', comment='库存'),
        sa.CheckConstraint('stock >= 0', name='ck_product_variants_stock_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_product_variants_product', 'product_variants', ['product_id'], unique=False)

    op.create_table('site_settings',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('setting_key', sa.String(length=100), nullable=False),
        sa.Column('setting_value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('setting_key')
    )

    op.create_table('orders',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_no', sa.String(length=32), nullable=False, comment='订单编号'),
        sa.Column('member_id', sa.BigInteger(), nullable=False, comment='下单会员'),
        sa.Column('receiver_name', sa.String(length=100), nullable=False),
        sa.Column('receiver_phone', sa.String(length=20), nullable=False),
        sa.Column('receiver_email', sa.String(length=255), nullable=True),
        sa.Column('receiver_address', sa.Text(), nullable=True, comment='宅配地址'),
        sa.Column('store_id', sa.String(length=20), nullable=True, comment='超商门市代号'),
        sa.Column('store_name', sa.String(length=100), nullable=True),
        sa.Column('store_address', sa.Text(), nullable=True),
        sa.Column('shipping_method', sa.String(length=20), nullable=False, comment='cvs/home/pickup'),
        sa.Column('shipping_sub_type', sa.String(length=20), nullable=True, comment='超商类别，如 UNIMART'),
        sa.Column('shipping_fee', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=20), nullable=False, comment='credit/atm/cod'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='unpaid'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('stock_released', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('invoice_type', sa.String(length=20), nullable=True, comment='personal/company/donate'),
        sa.Column('invoice_company', sa.String(length=100), nullable=True),
        sa.Column('invoice_tax_id', sa.String(length=20), nullable=True),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('gateway_trade_no', sa.String(length=50), nullable=True, comment='金流交易编号'),
        sa.Column('gateway_shipment_id', sa.String(length=50), nullable=True, comment='物流交易编号'),
        sa.Column('pickup_code', sa.String(length=50), nullable=True, comment='寄货编号'),
        sa.Column('validation_code', sa.String(length=20), nullable=True, comment='验证码'),
        sa.Column('shipment_claimed_at', sa.DateTime(timezone=True), nullable=True, comment='建立物流单进行中的占用标记'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('total = subtotal + shipping_fee', name='ck_orders_total'),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint("status IN ('" + "','".join(ORDER_STATUSES) + "')", name='ck_orders_status'),
        sa.CheckConstraint("payment_status IN ('unpaid','paid')", name='ck_orders_payment_status'),
        sa.CheckConstraint("shipping_method IN ('cvs','home','pickup')", name='ck_orders_shipping_method'),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_no')
    )
    op.create_index('ix_orders_member', 'orders', ['member_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_shipment_id', 'orders', ['gateway_shipment_id'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('variant_id', sa.BigInteger(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('variant_name', sa.String(length=100), nullable=True),
        sa.Column('product_image', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='成交单价'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False, comment='小计'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_order', 'order_items', ['order_id'], unique=False)

    # 订单流水号：每个站点本地日期一行
    op.create_table('order_sequences',
        sa.Column('seq_date', sa.Date(), nullable=False),
        sa.Column('last_number', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('seq_date')
    )

    op.create_table('point_transactions',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('member_id', sa.BigInteger(), nullable=False),
        sa.Column('order_no', sa.String(length=32), nullable=True, comment='关联订单编号'),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False, comment='earn/deduct'),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint("type IN ('earn','deduct')", name='ck_point_transactions_type'),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_point_transactions_member', 'point_transactions', ['member_id', 'created_at'], unique=False)
    op.create_index('ix_point_transactions_order_no', 'point_transactions', ['order_no'], unique=False)

    op.create_table('return_requests',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('member_id', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False, comment='退货原因'),
        sa.Column('refund_bank_code', sa.String(length=10), nullable=True),
        sa.Column('refund_account_name', sa.String(length=100), nullable=True),
        sa.Column('refund_account_number', sa.String(length=30), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('admin_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected','refunded')",
            name='ck_return_requests_status'
        ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_return_requests_order', 'return_requests', ['order_id'], unique=False)
    op.create_index('ix_return_requests_status', 'return_requests', ['status'], unique=False)

    op.create_table('gateway_notifications',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False, comment='payment/logistics'),
        sa.Column('order_no', sa.String(length=32), nullable=True),
        sa.Column('gateway_ref', sa.String(length=50), nullable=True, comment='TradeNo 或 AllPayLogisticsID'),
        sa.Column('rtn_code', sa.String(length=10), nullable=True),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default='false', comment='检查码是否通过'),
        sa.Column('outcome', sa.String(length=50), nullable=False, comment='处理结果'),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='原始回调内容'),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_gateway_notifications_order_no', 'gateway_notifications', ['order_no'], unique=False)
    op.create_index('ix_gateway_notifications_received', 'gateway_notifications', ['kind', 'received_at'], unique=False)


def downgrade() -> None:
    """Drop ShopHub order tables"""
    op.drop_index('ix_gateway_notifications_received', table_name='gateway_notifications')
    op.drop_index('ix_gateway_notifications_order_no', table_name='gateway_notifications')
    op.drop_table('gateway_notifications')

    op.drop_index('ix_return_requests_status', table_name='return_requests')
    op.drop_index('ix_return_requests_order', table_name='return_requests')
    op.drop_table('return_requests')

    op.drop_index('ix_point_transactions_order_no', table_name='point_transactions')
    op.drop_index('ix_point_transactions_member', table_name='point_transactions')
    op.drop_table('point_transactions')

    op.drop_table('order_sequences')

    op.drop_index('ix_order_items_order', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_shipment_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_member', table_name='orders')
    op.drop_table('orders')

    op.drop_table('site_settings')

    op.drop_index('ix_product_variants_product', table_name='product_variants')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('members')
