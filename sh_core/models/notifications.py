"""
金物流回调记录
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, JSONType


class GatewayNotification(Base):
    """每次回调投递的审计记录（含重复投递）"""
    __tablename__ = "gateway_notifications"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, comment="payment/logistics")
    order_no: Mapped[Optional[str]] = mapped_column(String(32))
    gateway_ref: Mapped[Optional[str]] = mapped_column(String(50), comment="TradeNo 或 AllPayLogisticsID")
    rtn_code: Mapped[Optional[str]] = mapped_column(String(10))
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, comment="检查码是否通过")
    outcome: Mapped[str] = mapped_column(String(50), nullable=False, comment="处理结果")
    payload: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, comment="原始回调内容")
    received_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_gateway_notifications_order_no", "order_no"),
        Index("ix_gateway_notifications_received", "kind", "received_at"),
    )
