"""
会员数据模型（仅保留订单/点数流程需要的字段）
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class Member(Base):
    """会员表"""
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, comment="登录邮箱")
    name: Mapped[Optional[str]] = mapped_column(String(100), comment="会员姓名")
    phone: Mapped[Optional[str]] = mapped_column(String(20), comment="手机")

    # 点数余额缓存，流水见 point_transactions
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="当前点数余额")

    # 版本号（乐观锁）
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="乐观锁版本号")

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_members_points_non_negative"),
    )
