"""
路由依赖：身份与服务注入
"""
from fastapi import Request

from sh_core.services import OrdersService, ReconciliationService, ReturnsService
from sh_core.utils.errors import ForbiddenError, UnauthorizedError


def get_current_member_id(request: Request) -> int:
    """当前会员 ID（由 AuthMiddleware 写入）"""
    member_id = getattr(request.state, "member_id", None)
    if member_id is None:
        raise UnauthorizedError()
    return member_id


def require_admin(request: Request) -> int:
    """仅管理员可访问，返回管理员会员 ID"""
    member_id = get_current_member_id(request)
    if getattr(request.state, "role", None) != "admin":
        raise ForbiddenError(code="ADMIN_REQUIRED", detail="Administrator role required")
    return member_id


async def get_orders_service() -> OrdersService:
    """依赖注入：获取订单服务"""
    return OrdersService()


async def get_returns_service() -> ReturnsService:
    return ReturnsService()


async def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService()
