"""
退货服务
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sh_core.models import Order, ReturnRequest
from sh_core.utils.errors import ConflictError, NotFoundError, ValidationError
from .base import BaseService
from .order_state import OrderStatus, RETURNABLE
from .orders import OrdersService, issue_order_points, reverse_order_points

RETURN_STATUSES = ("pending", "approved", "rejected", "refunded")
OPEN_RETURN_STATUSES = ("pending", "approved")

# 退货申请状态流转
RETURN_TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": {"refunded"},
}


def serialize_return(request: ReturnRequest) -> Dict[str, Any]:
    data = request.to_dict()
    if request.order is not None:
        data["order_no"] = request.order.order_no
        data["order_status"] = request.order.status
        data["order_total"] = str(request.order.total)
    return data


class ReturnsService(BaseService):
    """
    退货服务

    - 会员对已到店/已完成的订单申请退货
    - 后台审核：通过/拒绝，通过后退款
    - 退回商品不自动回补库存
    """

    def __init__(self, orders: Optional[OrdersService] = None):
        super().__init__()
        self.orders = orders or OrdersService()

    async def request_return(
        self,
        member_id: int,
        order_no: str,
        reason: str,
        refund_bank_code: Optional[str] = None,
        refund_account_name: Optional[str] = None,
        refund_account_number: Optional[str] = None
    ) -> Dict[str, Any]:
        if not reason or not reason.strip():
            raise ValidationError(code="MISSING_RETURN_REASON", detail="Return reason is required")

        async def _request(session: AsyncSession):
            order = await self.orders.load_order(session, order_no, member_id)

            existing = (await session.execute(
                select(ReturnRequest.id)
                .where(ReturnRequest.order_id == order.id)
                .where(ReturnRequest.status.in_(OPEN_RETURN_STATUSES))
            )).first()
            if existing is not None:
                raise ConflictError(
                    code="RETURN_ALREADY_REQUESTED",
                    detail=f"Order {order_no} already has an open return request"
                )

            result = await session.execute(
                update(Order)
                .where(Order.id == order.id)
                .where(Order.status.in_([s.value for s in RETURNABLE]))
                .values(status=OrderStatus.RETURN_REQUESTED.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    code="ORDER_NOT_RETURNABLE",
                    detail=f"Order {order_no} cannot be returned in status {order.status}"
                )

            request = ReturnRequest(
                order_id=order.id,
                member_id=member_id,
                reason=reason.strip(),
                refund_bank_code=refund_bank_code,
                refund_account_name=refund_account_name,
                refund_account_number=refund_account_number,
                status="pending",
            )
            session.add(request)
            await session.flush()
            return serialize_return(await self._reload_return(session, request.id))

        data = await self.execute_with_transaction(_request)
        self.logger.info("Return requested", order_no=order_no, return_id=data["id"])
        return data

    async def admin_list_returns(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        if status is not None and status not in RETURN_STATUSES:
            raise ValidationError(code="INVALID_RETURN_STATUS", detail=f"Unknown return status: {status}")

        async def _list(session: AsyncSession):
            stmt = (
                select(ReturnRequest)
                .options(selectinload(ReturnRequest.order))
                .order_by(ReturnRequest.created_at.desc(), ReturnRequest.id.desc())
            )
            if status:
                stmt = stmt.where(ReturnRequest.status == status)
            result = await session.execute(stmt)
            return [serialize_return(r) for r in result.scalars().all()]

        return await self.execute_with_session(_list)

    async def admin_update_return(
        self,
        return_id: int,
        status: str,
        admin_note: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        审核退货申请

        - rejected：订单回到 completed
        - refunded：订单改为 refunded，扣回点数（扣到 0 为止）
        """
        if status not in RETURN_STATUSES:
            raise ValidationError(code="INVALID_RETURN_STATUS", detail=f"Unknown return status: {status}")

        async def _update(session: AsyncSession):
            request = (await session.execute(
                select(ReturnRequest)
                .options(selectinload(ReturnRequest.order))
                .where(ReturnRequest.id == return_id)
            )).scalar_one_or_none()
            if request is None:
                raise NotFoundError(code="RETURN_NOT_FOUND", resource=f"Return request {return_id}")

            current = request.status
            if status not in RETURN_TRANSITIONS.get(current, set()):
                raise ConflictError(
                    code="INVALID_RETURN_TRANSITION",
                    detail=f"Return request cannot move from {current} to {status}"
                )

            values: Dict[str, Any] = {"status": status}
            if admin_note is not None:
                values["admin_note"] = admin_note
            result = await session.execute(
                update(ReturnRequest)
                .where(ReturnRequest.id == return_id)
                .where(ReturnRequest.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    code="RETURN_STATUS_CHANGED",
                    detail=f"Return request {return_id} was modified concurrently"
                )

            order = request.order
            if status == "rejected":
                await self._move_order(session, order, (OrderStatus.RETURN_REQUESTED,), OrderStatus.COMPLETED)
                await issue_order_points(session, order)
            elif status == "refunded":
                await self._move_order(
                    session, order,
                    (OrderStatus.RETURN_REQUESTED, OrderStatus.RETURNED),
                    OrderStatus.REFUNDED
                )
                await reverse_order_points(session, order, "退款")

            return serialize_return(await self._reload_return(session, return_id))

        data = await self.execute_with_transaction(_update)
        self.logger.info("Return request updated", return_id=return_id, status=status)
        return data

    async def _move_order(self, session: AsyncSession, order: Order, sources, target: OrderStatus) -> None:
        result = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.status.in_([s.value for s in sources]))
            .values(status=target.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                code="ORDER_STATUS_CHANGED",
                detail=f"Order {order.order_no} is no longer awaiting return (status {order.status})"
            )

    async def _reload_return(self, session: AsyncSession, return_id: int) -> ReturnRequest:
        result = await session.execute(
            select(ReturnRequest)
            .options(selectinload(ReturnRequest.order))
            .where(ReturnRequest.id == return_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
