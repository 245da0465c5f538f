"""
订单 API 路由（会员）
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from sh_core.services import OrdersService, ReturnsService
from sh_core.utils.logger import get_logger
from .deps import get_current_member_id, get_orders_service, get_returns_service
from .models import ApiResponse, CreateOrderRequest, CreateOrderResponse, CreateReturnRequest

router = APIRouter()
logger = get_logger(__name__)


@router.post("/create", response_model=ApiResponse[CreateOrderResponse])
async def create_order(
    payload: CreateOrderRequest,
    member_id: int = Depends(get_current_member_id),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """建立订单"""
    result = await orders_service.create_order(member_id, payload.model_dump())
    return ApiResponse.success(CreateOrderResponse(**result))


@router.get("/mine", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_my_orders(
    member_id: int = Depends(get_current_member_id),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """我的订单"""
    orders = await orders_service.list_member_orders(member_id)
    return ApiResponse.success(orders, metadata={"total": len(orders)})


@router.get("/{order_no}", response_model=ApiResponse[Dict[str, Any]])
async def get_my_order(
    order_no: str,
    member_id: int = Depends(get_current_member_id),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """订单详情（仅本人）"""
    return ApiResponse.success(await orders_service.get_order(member_id, order_no))


@router.put("/{order_no}/cancel", response_model=ApiResponse[Dict[str, Any]])
async def cancel_my_order(
    order_no: str,
    member_id: int = Depends(get_current_member_id),
    orders_service: OrdersService = Depends(get_orders_service)
):
    """取消订单（待付款/已付款）"""
    return ApiResponse.success(await orders_service.cancel_by_member(member_id, order_no))


@router.post("/{order_no}/return", response_model=ApiResponse[Dict[str, Any]])
async def request_return(
    order_no: str,
    payload: CreateReturnRequest,
    member_id: int = Depends(get_current_member_id),
    returns_service: ReturnsService = Depends(get_returns_service)
):
    """申请退货（已到店/已完成）"""
    result = await returns_service.request_return(
        member_id,
        order_no,
        payload.reason,
        refund_bank_code=payload.refund_bank_code,
        refund_account_name=payload.refund_account_name,
        refund_account_number=payload.refund_account_number,
    )
    return ApiResponse.success(result)
