"""
会员点数流水（只追加，不修改）
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class PointTransaction(Base):
    """点数交易记录"""
    __tablename__ = "point_transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    member_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False
    )
    order_no: Mapped[Optional[str]] = mapped_column(String(32), comment="关联订单编号")

    # 正数为获得，负数为扣回
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False, comment="earn/deduct")
    description: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('earn','deduct')", name="ck_point_transactions_type"),
        Index("ix_point_transactions_member", "member_id", "created_at"),
        Index("ix_point_transactions_order_no", "order_no"),
    )
