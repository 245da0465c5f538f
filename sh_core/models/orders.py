"""
订单相关数据模型
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, Numeric, String, Text, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK

ORDER_STATUSES = (
    "pending", "paid", "shipped", "arrived", "completed",
    "cancelled", "return_requested", "returned", "refunded",
)


class Order(Base):
    """订单表"""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    # 订单编号：建立后不可变
    order_no: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, comment="订单编号")
    member_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
        comment="下单会员"
    )

    # 收件人快照 - PII 数据
    receiver_name: Mapped[str] = mapped_column(String(100), nullable=False)
    receiver_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    receiver_email: Mapped[Optional[str]] = mapped_column(String(255))
    receiver_address: Mapped[Optional[str]] = mapped_column(Text, comment="宅配地址")
    store_id: Mapped[Optional[str]] = mapped_column(String(20), comment="超商门市代号")
    store_name: Mapped[Optional[str]] = mapped_column(String(100))
    store_address: Mapped[Optional[str]] = mapped_column(Text)

    # 配送
    shipping_method: Mapped[str] = mapped_column(String(20), nullable=False, comment="cvs/home/pickup")
    shipping_sub_type: Mapped[Optional[str]] = mapped_column(String(20), comment="超商类别，如 UNIMART")
    shipping_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # 付款
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, comment="credit/atm/cod")
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    # 取消时已回补库存；后台重开订单时重新扣减
    stock_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # 发票
    invoice_type: Mapped[Optional[str]] = mapped_column(String(20), comment="personal/company/donate")
    invoice_company: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_tax_id: Mapped[Optional[str]] = mapped_column(String(20))

    # 金额
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # 金流/物流回写
    gateway_trade_no: Mapped[Optional[str]] = mapped_column(String(50), comment="金流交易编号")
    gateway_shipment_id: Mapped[Optional[str]] = mapped_column(String(50), comment="物流交易编号")
    pickup_code: Mapped[Optional[str]] = mapped_column(String(50), comment="寄货编号")
    validation_code: Mapped[Optional[str]] = mapped_column(String(20), comment="验证码")
    shipment_claimed_at: Mapped[Optional[datetime]] = mapped_column(comment="建立物流单进行中的占用标记")
    paid_at: Mapped[Optional[datetime]] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("total = subtotal + shipping_fee", name="ck_orders_total"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint(
            "status IN ('" + "','".join(ORDER_STATUSES) + "')",
            name="ck_orders_status"
        ),
        CheckConstraint("payment_status IN ('unpaid','paid')", name="ck_orders_payment_status"),
        CheckConstraint("shipping_method IN ('cvs','home','pickup')", name="ck_orders_shipping_method"),
        Index("ix_orders_member", "member_id"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_shipment_id", "gateway_shipment_id"),
        Index("ix_orders_created_at", "created_at"),
    )

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    """订单明细（下单时的商品快照）"""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )

    product_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    variant_id: Mapped[Optional[int]] = mapped_column(BigIntPK)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_name: Mapped[Optional[str]] = mapped_column(String(100))
    product_image: Mapped[Optional[str]] = mapped_column(Text)

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="成交单价")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="小计")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
        Index("ix_order_items_order", "order_id"),
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderSequence(Base):
    """订单流水号（按站点本地日期）"""
    __tablename__ = "order_sequences"

    seq_date: Mapped[date] = mapped_column(Date, primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
