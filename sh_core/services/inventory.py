"""
库存服务
所有扣减都是单条带条件的 UPDATE，库存不会被扣成负数
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sh_core.models import Product, ProductVariant
from sh_core.utils.errors import InsufficientStockError, NotFoundError, ValidationError
from sh_core.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemRef:
    """库存定位：有规格时扣规格库存，否则扣商品库存"""
    product_id: int
    variant_id: Optional[int] = None
    name: Optional[str] = None

    def __str__(self) -> str:
        label = self.name or f"product {self.product_id}"
        if self.variant_id is not None:
            return f"{label} (variant {self.variant_id})"
        return label

    @property
    def model(self):
        return ProductVariant if self.variant_id is not None else Product

    @property
    def row_id(self) -> int:
        return self.variant_id if self.variant_id is not None else self.product_id


class InventoryService:
    """库存扣减/回补，均在调用方的事务中执行"""

    @staticmethod
    async def get_stock(session: AsyncSession, item_ref: ItemRef) -> Optional[int]:
        """读取当前库存，行不存在返回 None"""
        model = item_ref.model
        result = await session.execute(
            select(model.stock).where(model.id == item_ref.row_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def reserve(session: AsyncSession, item_ref: ItemRef, qty: int) -> None:
        """
        扣减库存

        Raises:
            ValidationError: 数量不为正
            NotFoundError: 商品/规格不存在
            InsufficientStockError: 库存不足
        """
        if qty <= 0:
            raise ValidationError(
                code="INVALID_QUANTITY",
                detail=f"Quantity must be positive for {item_ref}: {qty}"
            )

        model = item_ref.model
        result = await session.execute(
            update(model)
            .where(model.id == item_ref.row_id)
            .where(model.stock >= qty)
            .values(stock=model.stock - qty)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            return

        # 条件未命中：区分不存在和库存不足
        available = await InventoryService.get_stock(session, item_ref)
        if available is None:
            raise NotFoundError(
                code="PRODUCT_NOT_FOUND" if item_ref.variant_id is None else "VARIANT_NOT_FOUND",
                resource=str(item_ref)
            )

        logger.warning(
            "Insufficient stock",
            item=str(item_ref),
            requested=qty,
            available=available
        )
        raise InsufficientStockError(item_ref, qty, available)

    @staticmethod
    async def release(session: AsyncSession, item_ref: ItemRef, qty: int) -> None:
        """回补库存（取消订单时调用）"""
        if qty <= 0:
            return

        model = item_ref.model
        result = await session.execute(
            update(model)
            .where(model.id == item_ref.row_id)
            .values(stock=model.stock + qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # 商品已被删除，库存无处回补
            logger.warning("Release skipped, item no longer exists", item=str(item_ref), qty=qty)
