"""
后台订单管理 API
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from sh_core.services import OrdersService
from sh_core.utils.logger import get_logger
from .deps import get_orders_service, require_admin
from .models import ApiResponse, DashboardStats, PaginatedResponse, UpdateStatusRequest

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


@router.get("/all", response_model=ApiResponse[PaginatedResponse[Dict[str, Any]]])
async def list_orders(
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(20, ge=1, le=100, description="每页大小"),
    search: Optional[str] = Query(None, description="订单编号/收件人"),
    status: Optional[str] = Query(None, description="订单状态"),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """订单列表"""
    result = await orders_service.admin_list_orders(page=page, limit=limit, search=search, status=status)
    return ApiResponse.success(PaginatedResponse(
        items=result["items"],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        has_more=result["page"] * result["limit"] < result["total"],
    ))


@router.get("/stats", response_model=ApiResponse[DashboardStats])
async def dashboard_stats(orders_service: OrdersService = Depends(get_orders_service)):
    """后台首页统计"""
    return ApiResponse.success(DashboardStats(**await orders_service.dashboard_stats()))


@router.get("/{order_no}", response_model=ApiResponse[Dict[str, Any]])
async def get_order(order_no: str, orders_service: OrdersService = Depends(get_orders_service)):
    return ApiResponse.success(await orders_service.admin_get_order(order_no))


@router.put("/{order_no}/status", response_model=ApiResponse[Dict[str, Any]])
async def update_status(
    order_no: str,
    payload: UpdateStatusRequest,
    admin_id: int = Depends(require_admin),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """修改订单状态"""
    result = await orders_service.admin_set_status(order_no, payload.status)
    logger.info("Admin updated order status", order_no=order_no, status=payload.status, admin_id=admin_id)
    return ApiResponse.success(result)


@router.delete("/{order_no}", response_model=ApiResponse[Dict[str, Any]])
async def delete_order(
    order_no: str,
    admin_id: int = Depends(require_admin),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """删除订单"""
    await orders_service.delete_order(order_no)
    logger.info("Admin deleted order", order_no=order_no, admin_id=admin_id)
    return ApiResponse.success({"order_no": order_no, "deleted": True})
