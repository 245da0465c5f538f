"""
退货申请数据模型
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK
from .orders import Order


class ReturnRequest(Base):
    """退货申请表"""
    __tablename__ = "return_requests"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )
    member_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False, comment="退货原因")

    # 退款账户（货到付款/人工退款使用）
    refund_bank_code: Mapped[Optional[str]] = mapped_column(String(10))
    refund_account_name: Mapped[Optional[str]] = mapped_column(String(100))
    refund_account_number: Mapped[Optional[str]] = mapped_column(String(30))

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    admin_note: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','rejected','refunded')",
            name="ck_return_requests_status"
        ),
        Index("ix_return_requests_order", "order_id"),
        Index("ix_return_requests_status", "status"),
    )

    order: Mapped["Order"] = relationship("Order")
