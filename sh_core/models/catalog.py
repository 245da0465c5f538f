"""
商品与规格数据模型

目录管理不在本服务范围内，这里只保留下单快照和库存扣减需要的字段。
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, ForeignKey, Index, Integer, Numeric, String, Text, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK


class Product(Base):
    """商品表"""
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="商品名称")
    image: Mapped[Optional[str]] = mapped_column(Text, comment="主图 URL")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="售价")
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="库存")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    variants: Mapped[List["ProductVariant"]] = relationship(
        "ProductVariant", back_populates="product", cascade="all, delete-orphan"
    )


class ProductVariant(Base):
    """商品规格表（颜色/尺寸等）"""
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        BigIntPK,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, comment="规格名称")
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), comment="规格售价，空则沿用商品价")
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="库存")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        Index("ix_product_variants_product", "product_id"),
    )

    product: Mapped["Product"] = relationship("Product", back_populates="variants")
