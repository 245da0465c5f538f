"""
超商物流测试：回传解析、建立物流单、列印托运单
"""
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import update

from sh_core.gateways.ecpay import (
    LogisticsGateway, ShipmentCreated, ShipmentRejected,
    classify_failure, parse_create_response, to_c2c_sub_type,
)
from sh_core.models import Order
from sh_core.services import OrdersService, ReconciliationService
from sh_core.services.orders import utcnow
from sh_core.utils.errors import (
    AlreadyCreatedError, ConflictError, GatewayError, ValidationError
)

CREATED_RESPONSE = "1|AllPayLogisticsID=1718546&CVSPaymentNo=C9876543&CVSValidationNo=1234&RtnCode=300"


def _transport(text: str, status_code: int = 200, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, text=text)
    return httpx.MockTransport(handler)


def _timeout_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)
    return httpx.MockTransport(handler)


def _reconciliation(transport) -> ReconciliationService:
    return ReconciliationService(logistics=LogisticsGateway(transport=transport))


async def _order(order_no: str) -> dict:
    return await OrdersService().admin_get_order(order_no)


@pytest.fixture
async def cod_order(db_manager, seed, order_payload):
    result = await OrdersService().create_order(1, order_payload(payment_method="cod"))
    return result["order_no"]


class TestResponseParsing:

    def test_sub_type_mapping(self):
        assert to_c2c_sub_type("unimart") == "UNIMARTC2C"
        assert to_c2c_sub_type("FAMIC2C") == "FAMIC2C"
        with pytest.raises(ValidationError):
            to_c2c_sub_type("SEVEN")

    @pytest.mark.parametrize("text,category", [
        ("0|廠商帳戶餘額為負數，無法建立物流訂單", "INSUFFICIENT_BALANCE"),
        ("0|訂單編號重複", "DUPLICATE_SHIPMENT"),
        ("0|門市代號錯誤", "INVALID_STORE"),
        ("0|(CheckMacValue Error)", "GATEWAY_REJECTED"),
    ])
    def test_classify_failure(self, text, category):
        assert classify_failure(text)[0] == category

    def test_parenthesized_message_is_surfaced(self):
        assert classify_failure("0|Failed (ReceiverName invalid)") == ("GATEWAY_REJECTED", "ReceiverName invalid")

    def test_parse_success(self):
        created = parse_create_response(CREATED_RESPONSE)
        assert created == ShipmentCreated("1718546", "C9876543", "1234")

    def test_parse_rejection(self):
        rejected = parse_create_response("0|訂單編號重複")
        assert isinstance(rejected, ShipmentRejected)
        assert rejected.raw_detail == "0|訂單編號重複"

    def test_parse_unrecognised_failure(self):
        with pytest.raises(GatewayError) as exc_info:
            parse_create_response("0|unknown")
        assert exc_info.value.code == "LOGISTICS_CREATE_FAILED"

    def test_parse_success_without_id(self):
        with pytest.raises(GatewayError) as exc_info:
            parse_create_response("1|CVSPaymentNo=C1")
        assert exc_info.value.code == "MALFORMED_GATEWAY_RESPONSE"


class TestCreateShipment:

    async def test_create_shipment_for_cod_order(self, db_manager, cod_order):
        calls = []
        result = await _reconciliation(_transport(CREATED_RESPONSE, calls=calls)).create_shipment(cod_order)

        assert result.success
        assert result.shipment_id == "1718546"
        assert result.pickup_code == "C9876543"

        sent = dict(httpx.QueryParams(calls[0].content.decode()))
        assert calls[0].url.path == "/Express/Create"
        assert sent["IsCollection"] == "Y"
        assert sent["CollectionAmount"] == "310"
        assert sent["LogisticsSubType"] == "UNIMARTC2C"
        assert sent["ReceiverStoreID"] == "131386"

        order = await _order(cod_order)
        assert order["status"] == "shipped"
        assert order["gateway_shipment_id"] == "1718546"
        assert order["validation_code"] == "1234"
        assert order["shipment_claimed_at"] is None

    async def test_second_create_is_rejected(self, db_manager, cod_order):
        service = _reconciliation(_transport(CREATED_RESPONSE))
        await service.create_shipment(cod_order)

        with pytest.raises(AlreadyCreatedError) as exc_info:
            await service.create_shipment(cod_order)
        assert exc_info.value.code == "SHIPMENT_ALREADY_CREATED"

    async def test_unpaid_credit_order_not_shippable(self, db_manager, seed, order_payload):
        order = await OrdersService().create_order(1, order_payload())

        with pytest.raises(ConflictError) as exc_info:
            await _reconciliation(_transport(CREATED_RESPONSE)).create_shipment(order["order_no"])
        assert exc_info.value.code == "ORDER_NOT_SHIPPABLE"

    async def test_home_delivery_not_supported(self, db_manager, seed, order_payload):
        order = await OrdersService().create_order(1, order_payload(shipping_method="home", payment_method="cod"))

        with pytest.raises(ValidationError) as exc_info:
            await _reconciliation(_transport(CREATED_RESPONSE)).create_shipment(order["order_no"])
        assert exc_info.value.code == "UNSUPPORTED_SHIPPING_METHOD"

    async def test_gateway_rejection_releases_claim(self, db_manager, cod_order):
        text = "0|廠商帳戶餘額為負數，無法建立物流訂單"
        result = await _reconciliation(_transport(text)).create_shipment(cod_order)

        assert not result.success
        assert result.error_category == "INSUFFICIENT_BALANCE"
        assert result.raw_detail == text

        order = await _order(cod_order)
        assert order["status"] == "pending"
        assert order["shipment_claimed_at"] is None
        assert order["gateway_shipment_id"] is None

    async def test_timeout_releases_claim_and_allows_retry(self, db_manager, cod_order):
        with pytest.raises(GatewayError) as exc_info:
            await _reconciliation(_timeout_transport()).create_shipment(cod_order)
        assert exc_info.value.code == "GATEWAY_TIMEOUT"

        order = await _order(cod_order)
        assert order["shipment_claimed_at"] is None

        result = await _reconciliation(_transport(CREATED_RESPONSE)).create_shipment(cod_order)
        assert result.success

    async def test_http_error_is_gateway_error(self, db_manager, cod_order):
        with pytest.raises(GatewayError) as exc_info:
            await _reconciliation(_transport("Service Unavailable", status_code=503)).create_shipment(cod_order)
        assert exc_info.value.code == "GATEWAY_HTTP_ERROR"

    async def test_active_claim_blocks_concurrent_create(self, db_manager, cod_order):
        async with db_manager.get_transaction() as session:
            await session.execute(
                update(Order).where(Order.order_no == cod_order).values(shipment_claimed_at=utcnow())
            )

        with pytest.raises(ConflictError) as exc_info:
            await _reconciliation(_transport(CREATED_RESPONSE)).create_shipment(cod_order)
        assert exc_info.value.code == "SHIPMENT_IN_PROGRESS"

    async def test_stale_claim_is_taken_over(self, db_manager, cod_order):
        async with db_manager.get_transaction() as session:
            await session.execute(
                update(Order)
                .where(Order.order_no == cod_order)
                .values(shipment_claimed_at=utcnow() - timedelta(hours=1))
            )

        result = await _reconciliation(_transport(CREATED_RESPONSE)).create_shipment(cod_order)
        assert result.success


class CancelDuringCallGateway(LogisticsGateway):
    """物流接口呼叫期间尝试取消订单"""

    def __init__(self, cancel, **kwargs):
        super().__init__(**kwargs)
        self.cancel = cancel
        self.cancel_error = None

    async def create_shipment(self, order):
        try:
            await self.cancel(order.order_no)
        except ConflictError as e:
            self.cancel_error = e
        return await super().create_shipment(order)


class TestCancelDuringShipment:

    async def test_member_cancel_blocked_while_shipment_in_flight(self, db_manager, cod_order):
        gateway = CancelDuringCallGateway(
            lambda order_no: OrdersService().cancel_by_member(1, order_no),
            transport=_transport(CREATED_RESPONSE)
        )
        result = await ReconciliationService(logistics=gateway).create_shipment(cod_order)

        assert result.success
        assert gateway.cancel_error is not None
        assert gateway.cancel_error.code == "SHIPMENT_IN_PROGRESS"

        order = await _order(cod_order)
        assert order["status"] == "shipped"
        assert order["gateway_shipment_id"] == "1718546"
        assert order["stock_released"] is False

    async def test_admin_cancel_blocked_while_shipment_in_flight(self, db_manager, cod_order):
        gateway = CancelDuringCallGateway(
            lambda order_no: OrdersService().admin_set_status(order_no, "cancelled"),
            transport=_transport(CREATED_RESPONSE)
        )
        result = await ReconciliationService(logistics=gateway).create_shipment(cod_order)

        assert result.success
        assert gateway.cancel_error.code == "SHIPMENT_IN_PROGRESS"
        assert (await _order(cod_order))["status"] == "shipped"

    async def test_shipment_not_recorded_on_cancelled_order(self, db_manager, cod_order):
        async def force_cancel(order_no):
            async with db_manager.get_transaction() as session:
                await session.execute(
                    update(Order).where(Order.order_no == order_no).values(status="cancelled")
                )

        gateway = CancelDuringCallGateway(force_cancel, transport=_transport(CREATED_RESPONSE))

        with pytest.raises(ConflictError) as exc_info:
            await ReconciliationService(logistics=gateway).create_shipment(cod_order)
        assert exc_info.value.code == "SHIPMENT_NOT_RECORDED"

        order = await _order(cod_order)
        assert order["status"] == "cancelled"
        assert order["gateway_shipment_id"] is None
        assert order["shipment_claimed_at"] is None


class TestPrintLabel:

    async def test_print_requires_shipment(self, db_manager, cod_order):
        with pytest.raises(ConflictError) as exc_info:
            await ReconciliationService().print_shipping_label(cod_order)
        assert exc_info.value.code == "SHIPMENT_NOT_CREATED"

    async def test_print_label_form(self, db_manager, cod_order):
        service = _reconciliation(_transport(CREATED_RESPONSE))
        await service.create_shipment(cod_order)

        page = await service.print_shipping_label(cod_order)
        assert "/Express/PrintUniMartC2COrderInfo" in page
        assert 'name="AllPayLogisticsID" value="1718546"' in page
        assert 'name="CVSValidationNo" value="1234"' in page
