"""
订单编号生成

每个站点本地日期一行计数器，分配时在调用方事务内原子地
INSERT ... ON CONFLICT DO UPDATE ... RETURNING，订单建立失败时计数随事务回滚。
"""
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from sh_core.config import Settings, get_settings
from sh_core.models import OrderSequence
from sh_core.utils.logger import get_logger

logger = get_logger(__name__)


def site_today(settings: Optional[Settings] = None) -> date:
    """站点时区的今天"""
    settings = settings or get_settings()
    return datetime.now(ZoneInfo(settings.site_timezone)).date()


def format_order_no(prefix: str, day: date, seq: int, width: int = 3) -> str:
    """前缀 + YYYYMMDD + 补零流水号

    流水号超过 width 位时完整输出，不截断，例如 ORD202610191000。
    """
    return f"{prefix}{day.strftime('%Y%m%d')}{str(seq).zfill(width)}"


def _dialect_insert(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Unsupported database dialect: {dialect}")


class OrderSequenceGenerator:
    """按日期递增的订单流水号"""

    @staticmethod
    async def next_value(session: AsyncSession, day: date) -> int:
        """返回 day 的下一个流水号（从 1 开始）"""
        insert = _dialect_insert(session)
        stmt = insert(OrderSequence).values(seq_date=day, last_number=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[OrderSequence.seq_date],
            set_={"last_number": OrderSequence.last_number + 1},
        ).returning(OrderSequence.last_number)

        result = await session.execute(stmt)
        return int(result.scalar_one())


async def allocate_order_no(
    session: AsyncSession,
    day: Optional[date] = None,
    settings: Optional[Settings] = None
) -> str:
    """在当前事务内分配一个订单编号"""
    settings = settings or get_settings()
    day = day or site_today(settings)
    seq = await OrderSequenceGenerator.next_value(session, day)
    order_no = format_order_no(settings.order_no_prefix, day, seq, settings.order_no_seq_width)
    logger.debug("Allocated order number", order_no=order_no)
    return order_no
