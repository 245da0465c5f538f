"""
站点设置（键值表）
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK


class SiteSetting(Base):
    """站点设置表，例如 home_delivery_fee"""
    __tablename__ = "site_settings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    setting_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    setting_value: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )
