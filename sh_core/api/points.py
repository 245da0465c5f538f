"""
会员点数 API
"""
from fastapi import APIRouter, Depends

from sh_core.database import get_db_manager
from sh_core.services import PointService
from .deps import get_current_member_id
from .models import ApiResponse, PointsSummary, PointTransactionResponse

router = APIRouter()


@router.get("/mine", response_model=ApiResponse[PointsSummary])
async def my_points(member_id: int = Depends(get_current_member_id)):
    """点数余额与最近流水"""
    async with get_db_manager().get_session() as session:
        balance = await PointService.balance(session, member_id)
        transactions = await PointService.list_transactions(session, member_id)

    return ApiResponse.success(PointsSummary(
        balance=balance,
        transactions=[
            PointTransactionResponse(
                id=t.id,
                order_no=t.order_no,
                points=t.points,
                type=t.type,
                description=t.description,
                created_at=t.created_at.isoformat() if t.created_at else None,
            )
            for t in transactions
        ],
    ))
