"""
会员点数服务
"""
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sh_core.config import get_settings
from sh_core.models import Member, PointTransaction
from sh_core.utils.errors import ConflictError, NotFoundError, ValidationError
from sh_core.utils.logger import get_logger

logger = get_logger(__name__)


def points_for_subtotal(subtotal: Union[Decimal, int], per_amount: Optional[int] = None) -> int:
    """每满 per_amount 元得 1 点，无条件舍去"""
    per_amount = per_amount or get_settings().points_per_amount
    return int(Decimal(subtotal) // per_amount)


class PointService:
    """
    点数服务

    功能：
    1. 发放点数（订单完成）
    2. 扣回点数（取消/退款，扣到 0 为止）
    3. 按订单汇总已发/未扣回点数
    """

    @staticmethod
    async def earn(
        session: AsyncSession,
        member_id: int,
        order_no: Optional[str],
        points: int,
        description: Optional[str] = None
    ) -> PointTransaction:
        """发放点数：追加 earn 流水并原子累加余额"""
        if points <= 0:
            raise ValidationError(code="INVALID_POINTS", detail=f"Points must be positive: {points}")

        result = await session.execute(
            update(Member)
            .where(Member.id == member_id)
            .values(points=Member.points + points, version=Member.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(code="MEMBER_NOT_FOUND", resource=f"Member {member_id}")

        transaction = PointTransaction(
            member_id=member_id,
            order_no=order_no,
            points=points,
            type="earn",
            description=description,
        )
        session.add(transaction)
        await session.flush()

        logger.info("Points earned", target_member=member_id, order_no=order_no, points=points)
        return transaction

    @staticmethod
    async def deduct(
        session: AsyncSession,
        member_id: int,
        order_no: Optional[str],
        points: int,
        description: Optional[str] = None,
        max_retries: int = 3
    ) -> int:
        """
        扣回点数，最多扣到余额为 0

        使用乐观锁：
        1. 读取余额和版本号
        2. 计算实际扣除 min(points, 余额)
        3. 带版本号条件更新，不匹配则重试

        Returns:
            实际扣除的点数

        Raises:
            ConflictError: 并发冲突重试失败
        """
        if points <= 0:
            return 0

        for retry in range(max_retries):
            row = (await session.execute(
                select(Member.points, Member.version).where(Member.id == member_id)
            )).one_or_none()
            if row is None:
                raise NotFoundError(code="MEMBER_NOT_FOUND", resource=f"Member {member_id}")

            balance, version = row
            actual = min(points, balance)
            if actual <= 0:
                logger.info(
                    "Point deduction skipped, balance is zero",
                    target_member=member_id, order_no=order_no, requested=points
                )
                return 0

            result = await session.execute(
                update(Member)
                .where(Member.id == member_id)
                .where(Member.version == version)
                .values(points=balance - actual, version=version + 1)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 1:
                session.add(PointTransaction(
                    member_id=member_id,
                    order_no=order_no,
                    points=-actual,
                    type="deduct",
                    description=description,
                ))
                await session.flush()
                logger.info(
                    "Points deducted",
                    target_member=member_id, order_no=order_no,
                    requested=points, deducted=actual
                )
                return actual

            logger.warning(f"Point deduction version conflict, retry {retry + 1}/{max_retries}")

        raise ConflictError(code="POINTS_CONCURRENT_UPDATE", detail="Point balance changed concurrently, please retry")

    @staticmethod
    async def total_earned_for(session: AsyncSession, order_no: str) -> int:
        """订单累计发放的点数"""
        result = await session.execute(
            select(func.coalesce(func.sum(PointTransaction.points), 0))
            .where(PointTransaction.order_no == order_no)
            .where(PointTransaction.type == "earn")
        )
        return int(result.scalar_one())

    @staticmethod
    async def outstanding_for(session: AsyncSession, order_no: str) -> int:
        """订单尚未扣回的点数（发放减已扣回）"""
        result = await session.execute(
            select(func.coalesce(func.sum(PointTransaction.points), 0))
            .where(PointTransaction.order_no == order_no)
        )
        return int(result.scalar_one())

    @staticmethod
    async def balance(session: AsyncSession, member_id: int) -> int:
        result = await session.execute(select(Member.points).where(Member.id == member_id))
        points = result.scalar_one_or_none()
        if points is None:
            raise NotFoundError(code="MEMBER_NOT_FOUND", resource=f"Member {member_id}")
        return int(points)

    @staticmethod
    async def list_transactions(
        session: AsyncSession,
        member_id: int,
        limit: int = 100
    ) -> List[PointTransaction]:
        result = await session.execute(
            select(PointTransaction)
            .where(PointTransaction.member_id == member_id)
            .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
