"""
物流状态回调测试
"""
import pytest
from sqlalchemy import select, update

from sh_core.gateways.ecpay import ACK_OK, LogisticsGateway
from sh_core.models import GatewayNotification, Order
from sh_core.services import OrdersService, PointService, ReconciliationService
from sh_core.utils.errors import ConflictError


def _logistics_form(shipment_id: str, code: str, signed: bool = True) -> dict:
    form = {
        "MerchantID": "2000933",
        "MerchantTradeNo": "ORD20261019001",
        "RtnCode": code,
        "RtnMsg": "status update",
        "AllPayLogisticsID": shipment_id,
        "LogisticsType": "CVS",
        "LogisticsSubType": "UNIMARTC2C",
        "GoodsAmount": "310",
        "UpdateStatusDate": "2026/10/19 15:00:00",
    }
    if signed:
        form["CheckMacValue"] = LogisticsGateway().sign(form)
    return form


async def _attach_shipment(db_manager, order_no: str, shipment_id: str, status: str) -> None:
    async with db_manager.get_transaction() as session:
        await session.execute(
            update(Order)
            .where(Order.order_no == order_no)
            .values(gateway_shipment_id=shipment_id, status=status)
        )


async def _outcomes(db_manager):
    async with db_manager.get_session() as session:
        result = await session.execute(
            select(GatewayNotification.outcome)
            .where(GatewayNotification.kind == "logistics")
            .order_by(GatewayNotification.id)
        )
        return list(result.scalars().all())


async def _balance(db_manager):
    async with db_manager.get_session() as session:
        return await PointService.balance(session, 1)


@pytest.fixture
def reconciliation(db_manager):
    return ReconciliationService()


@pytest.fixture
async def paid_order(db_manager, seed, order_payload):
    result = await OrdersService().create_order(1, order_payload())
    await _attach_shipment(db_manager, result["order_no"], "1718546", "paid")
    return result["order_no"]


async def test_shipped_code_moves_paid_order(db_manager, reconciliation, paid_order):
    ack = await reconciliation.handle_logistics_notification(_logistics_form("1718546", "3001"))

    assert ack == ACK_OK
    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "shipped"
    assert await _outcomes(db_manager) == ["applied"]


async def test_pickup_completes_and_issues_points_once(db_manager, reconciliation, paid_order):
    for code in ("3001", "2030", "2067", "2067"):
        assert await reconciliation.handle_logistics_notification(_logistics_form("1718546", code)) == ACK_OK

    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "completed"
    assert await _balance(db_manager) == 2
    assert await _outcomes(db_manager) == ["applied", "applied", "applied", "unchanged"]


async def test_late_shipped_code_does_not_regress(db_manager, reconciliation, paid_order):
    await reconciliation.handle_logistics_notification(_logistics_form("1718546", "2067"))
    await reconciliation.handle_logistics_notification(_logistics_form("1718546", "3001"))

    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "completed"
    assert await _outcomes(db_manager) == ["applied", "ignored_regression"]


async def test_unmapped_code_leaves_status(db_manager, reconciliation, paid_order):
    ack = await reconciliation.handle_logistics_notification(_logistics_form("1718546", "300"))

    assert ack == ACK_OK
    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "paid"
    assert await _outcomes(db_manager) == ["unmapped_code"]


async def test_unknown_shipment_acknowledged(db_manager, reconciliation, paid_order):
    ack = await reconciliation.handle_logistics_notification(_logistics_form("9999999", "3001"))

    assert ack == ACK_OK
    assert await _outcomes(db_manager) == ["unknown_shipment"]


async def test_bad_checksum_is_recorded_not_applied(db_manager, reconciliation, paid_order):
    form = _logistics_form("1718546", "2067")
    form["RtnCode"] = "3001"

    assert await reconciliation.handle_logistics_notification(form) == ACK_OK

    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "paid"
    assert await _outcomes(db_manager) == ["checksum_mismatch"]


async def test_unsigned_notification_is_rejected(db_manager, reconciliation, paid_order):
    ack = await reconciliation.handle_logistics_notification({"AllPayLogisticsID": "1718546", "RtnCode": "2067"})

    assert ack == ACK_OK
    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "paid"
    assert await _balance(db_manager) == 0
    assert await _outcomes(db_manager) == ["checksum_mismatch"]

    async with db_manager.get_session() as session:
        verified = (await session.execute(select(GatewayNotification.verified))).scalar_one()
    assert verified is False


async def test_forged_checksum_cannot_complete_order(db_manager, reconciliation, paid_order):
    form = _logistics_form("1718546", "2067", signed=False)
    form["CheckMacValue"] = "0" * 32

    assert await reconciliation.handle_logistics_notification(form) == ACK_OK

    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "paid"
    assert await _balance(db_manager) == 0


async def test_malformed_notification_acknowledged(db_manager, reconciliation, paid_order):
    form = _logistics_form("1718546", "3001", signed=False)
    del form["AllPayLogisticsID"]
    form["CheckMacValue"] = LogisticsGateway().sign(form)

    assert await reconciliation.handle_logistics_notification(form) == ACK_OK
    assert await _outcomes(db_manager) == ["malformed"]


async def test_cod_pickup_marks_order_paid(db_manager, seed, reconciliation, order_payload):
    result = await OrdersService().create_order(1, order_payload(payment_method="cod"))
    await _attach_shipment(db_manager, result["order_no"], "1718547", "shipped")

    await reconciliation.handle_logistics_notification(_logistics_form("1718547", "2067"))

    order = await OrdersService().admin_get_order(result["order_no"])
    assert order["status"] == "completed"
    assert order["payment_status"] == "paid"
    assert order["paid_at"] is not None


async def test_prepaid_pending_order_not_moved_by_logistics(db_manager, seed, reconciliation, order_payload):
    result = await OrdersService().create_order(1, order_payload())
    await _attach_shipment(db_manager, result["order_no"], "1718548", "pending")

    await reconciliation.handle_logistics_notification(_logistics_form("1718548", "3001"))

    order = await OrdersService().admin_get_order(result["order_no"])
    assert order["status"] == "pending"
    assert await _outcomes(db_manager) == ["ignored_regression"]


async def test_processing_error_is_still_recorded(db_manager, paid_order):
    class FailingOrders(OrdersService):
        async def apply_logistics_status(self, session, shipment_id, code):
            raise ConflictError(code="ORDER_STATUS_CHANGED", detail="order locked")

    reconciliation = ReconciliationService(orders=FailingOrders())
    ack = await reconciliation.handle_logistics_notification(_logistics_form("1718546", "3001"))

    assert ack == ACK_OK
    assert await _outcomes(db_manager) == ["error"]
    order = await OrdersService().admin_get_order(paid_order)
    assert order["status"] == "paid"
