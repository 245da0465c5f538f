"""
退货流程测试
"""
import pytest

from sh_core.services import OrdersService, PointService, ReturnsService
from sh_core.utils.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def service(db_manager):
    return ReturnsService()


@pytest.fixture
async def completed_order(db_manager, seed, order_payload):
    orders = OrdersService()
    result = await orders.create_order(1, order_payload())
    await orders.admin_set_status(result["order_no"], "completed")
    return result["order_no"]


async def _balance(db_manager):
    async with db_manager.get_session() as session:
        return await PointService.balance(session, 1)


async def test_request_return(db_manager, service, completed_order):
    request = await service.request_return(
        1, completed_order, "尺寸不合",
        refund_bank_code="812", refund_account_name="Amy Chen", refund_account_number="00012345678"
    )

    assert request["status"] == "pending"
    assert request["order_no"] == completed_order
    assert request["order_status"] == "return_requested"
    assert request["refund_bank_code"] == "812"


async def test_duplicate_request_conflicts(db_manager, service, completed_order):
    await service.request_return(1, completed_order, "尺寸不合")

    with pytest.raises(ConflictError) as exc_info:
        await service.request_return(1, completed_order, "再申请一次")
    assert exc_info.value.code == "RETURN_ALREADY_REQUESTED"


async def test_pending_order_not_returnable(db_manager, seed, service, order_payload):
    result = await OrdersService().create_order(1, order_payload())

    with pytest.raises(ConflictError) as exc_info:
        await service.request_return(1, result["order_no"], "不想要了")
    assert exc_info.value.code == "ORDER_NOT_RETURNABLE"


async def test_reason_required(db_manager, service, completed_order):
    with pytest.raises(ValidationError):
        await service.request_return(1, completed_order, "   ")


async def test_other_member_cannot_request(db_manager, service, completed_order):
    with pytest.raises(NotFoundError):
        await service.request_return(2, completed_order, "尺寸不合")


async def test_reject_restores_completed_without_double_points(db_manager, service, completed_order):
    request = await service.request_return(1, completed_order, "尺寸不合")

    updated = await service.admin_update_return(request["id"], "rejected", admin_note="商品已使用")

    assert updated["status"] == "rejected"
    assert updated["admin_note"] == "商品已使用"
    assert updated["order_status"] == "completed"
    assert await _balance(db_manager) == 2


async def test_rejected_order_can_request_again(db_manager, service, completed_order):
    request = await service.request_return(1, completed_order, "尺寸不合")
    await service.admin_update_return(request["id"], "rejected")

    again = await service.request_return(1, completed_order, "商品瑕疵")
    assert again["id"] != request["id"]


async def test_approve_then_refund_reverses_points(db_manager, service, completed_order):
    request = await service.request_return(1, completed_order, "商品瑕疵")

    approved = await service.admin_update_return(request["id"], "approved")
    assert approved["order_status"] == "return_requested"

    refunded = await service.admin_update_return(request["id"], "refunded")
    assert refunded["status"] == "refunded"
    assert refunded["order_status"] == "refunded"
    assert await _balance(db_manager) == 0


async def test_invalid_transition(db_manager, service, completed_order):
    request = await service.request_return(1, completed_order, "商品瑕疵")

    with pytest.raises(ConflictError) as exc_info:
        await service.admin_update_return(request["id"], "refunded")
    assert exc_info.value.code == "INVALID_RETURN_TRANSITION"


async def test_unknown_return(db_manager, seed, service):
    with pytest.raises(NotFoundError):
        await service.admin_update_return(404, "approved")


async def test_list_filters_by_status(db_manager, service, completed_order):
    request = await service.request_return(1, completed_order, "商品瑕疵")
    await service.admin_update_return(request["id"], "approved")

    assert len(await service.admin_list_returns()) == 1
    assert len(await service.admin_list_returns("approved")) == 1
    assert await service.admin_list_returns("pending") == []

    with pytest.raises(ValidationError):
        await service.admin_list_returns("lost")
