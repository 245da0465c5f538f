"""
后台退货管理 API
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from sh_core.services import ReturnsService
from sh_core.utils.logger import get_logger
from .deps import get_returns_service, require_admin
from .models import ApiResponse, UpdateReturnRequest

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


@router.get("", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_returns(
    status: Optional[str] = Query(None, description="pending / approved / rejected / refunded"),
    returns_service: ReturnsService = Depends(get_returns_service)
):
    """退货申请列表"""
    return ApiResponse.success(await returns_service.admin_list_returns(status))


@router.put("/{return_id}", response_model=ApiResponse[Dict[str, Any]])
async def update_return(
    return_id: int,
    payload: UpdateReturnRequest,
    admin_id: int = Depends(require_admin),
    returns_service: ReturnsService = Depends(get_returns_service)
):
    """审核退货申请"""
    result = await returns_service.admin_update_return(return_id, payload.status, payload.admin_note)
    logger.info("Admin updated return request", return_id=return_id, status=payload.status, admin_id=admin_id)
    return ApiResponse.success(result)
