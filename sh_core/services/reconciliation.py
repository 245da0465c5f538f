"""
金物流对账服务

处理 ECPay 付款/物流回调，建立物流单、列印托运单。
回调一律记录到 gateway_notifications；只有付款回调检查码不符时回应 0|ErrorMessage。
"""
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from sh_core.gateways.ecpay.logistics import LogisticsGateway
from sh_core.gateways.ecpay.payment import (
    ACK_CHECKSUM_FAILED, ACK_OK, RTN_SUCCESS, PaymentGateway, render_auto_submit_page
)
from sh_core.gateways.ecpay.schemas import (
    LogisticsNotification, PaymentNotification, ShipmentRejected, ShipmentResult
)
from sh_core.models import GatewayNotification, Order
from sh_core.utils.errors import (
    ConflictError, IntegrityError, ShopHubException, ValidationError
)
from .base import BaseService
from .order_state import COD_PAYMENT_METHOD, OrderStatus, PaymentStatus
from .orders import OrdersService


class ReconciliationService(BaseService):
    """金物流对账服务"""

    def __init__(
        self,
        orders: Optional[OrdersService] = None,
        payment: Optional[PaymentGateway] = None,
        logistics: Optional[LogisticsGateway] = None
    ):
        super().__init__()
        self.orders = orders or OrdersService()
        self.payment = payment or PaymentGateway()
        self.logistics = logistics or LogisticsGateway()

    async def _record(
        self,
        session: AsyncSession,
        kind: str,
        form: Dict[str, Any],
        verified: bool,
        outcome: str
    ) -> None:
        session.add(GatewayNotification(
            kind=kind,
            order_no=form.get("MerchantTradeNo"),
            gateway_ref=form.get("TradeNo") if kind == "payment" else form.get("AllPayLogisticsID"),
            rtn_code=str(form["RtnCode"]) if form.get("RtnCode") is not None else None,
            verified=verified,
            outcome=outcome,
            payload=form,
        ))
        await session.flush()

    async def _record_only(self, kind: str, form: Dict[str, Any], verified: bool, outcome: str) -> None:
        await self.execute_with_transaction(self._record, kind, form, verified, outcome)

    # ------------------------------------------------------------------
    # 付款回调
    # ------------------------------------------------------------------

    async def handle_payment_notification(self, form: Mapping[str, Any]) -> str:
        """
        处理付款结果通知

        Returns:
            回给 ECPay 的纯文本：检查码不符为 0|ErrorMessage，其余一律 1|OK
        """
        form = dict(form)
        self.logger.info(
            "Payment notification received",
            merchant_trade_no=form.get("MerchantTradeNo"),
            rtn_code=form.get("RtnCode"),
            trade_no=form.get("TradeNo")
        )

        try:
            notification = self.payment.parse_notification(form)
        except IntegrityError:
            await self._record_only("payment", form, verified=False, outcome="checksum_mismatch")
            return ACK_CHECKSUM_FAILED
        except ValidationError as e:
            self.logger.warning("Malformed payment notification", error=e.detail)
            await self._record_only("payment", form, verified=True, outcome="malformed")
            return ACK_OK

        if notification.rtn_code != RTN_SUCCESS:
            self.logger.info(
                "Payment not successful",
                order_no=notification.merchant_trade_no,
                rtn_code=notification.rtn_code,
                rtn_msg=notification.rtn_msg
            )
            await self._record_only("payment", form, verified=True, outcome=f"rtn_{notification.rtn_code}")
            return ACK_OK

        await self.execute_with_transaction(self._apply_payment_tx, notification, form)
        return ACK_OK

    async def _apply_payment_tx(
        self,
        session: AsyncSession,
        notification: PaymentNotification,
        form: Dict[str, Any]
    ) -> str:
        outcome = await self.orders.apply_payment(
            session,
            notification.merchant_trade_no,
            notification.trade_no,
            notification.trade_amt
        )
        await self._record(session, "payment", form, verified=True, outcome=outcome)
        return outcome

    # ------------------------------------------------------------------
    # 物流回调
    # ------------------------------------------------------------------

    async def handle_logistics_notification(self, form: Mapping[str, Any]) -> str:
        """处理物流状态通知，一律回应 1|OK"""
        form = dict(form)
        self.logger.info(
            "Logistics notification received",
            shipment_id=form.get("AllPayLogisticsID"),
            rtn_code=form.get("RtnCode"),
            rtn_msg=form.get("RtnMsg")
        )

        try:
            notification = self.logistics.parse_notification(form)
        except IntegrityError:
            self.logger.warning(
                "Logistics notification checksum missing or mismatched",
                shipment_id=form.get("AllPayLogisticsID"),
                rtn_code=form.get("RtnCode")
            )
            await self._record_only("logistics", form, verified=False, outcome="checksum_mismatch")
            return ACK_OK
        except ValidationError as e:
            self.logger.warning("Malformed logistics notification", error=e.detail)
            await self._record_only("logistics", form, verified=True, outcome="malformed")
            return ACK_OK

        try:
            await self.execute_with_transaction(self._apply_logistics_tx, notification, form)
        except ShopHubException:
            # 业务冲突不让 ECPay 重送，留日志人工处理
            self.logger.error(
                "Logistics notification processing failed",
                shipment_id=notification.logistics_id,
                rtn_code=notification.rtn_code,
                exc_info=True
            )
            await self._record_only("logistics", form, verified=True, outcome="error")
        return ACK_OK

    async def _apply_logistics_tx(
        self,
        session: AsyncSession,
        notification: LogisticsNotification,
        form: Dict[str, Any]
    ) -> str:
        outcome = await self.orders.apply_logistics_status(
            session, notification.logistics_id, notification.rtn_code
        )
        await self._record(session, "logistics", form, verified=True, outcome=outcome)
        return outcome

    # ------------------------------------------------------------------
    # 建立物流单 / 列印
    # ------------------------------------------------------------------

    async def create_shipment(self, order_no: str) -> ShipmentResult:
        """
        建立超商物流单

        1. 占用订单（CAS），防止并发重复建立
        2. 事务外呼叫物流接口
        3. 成功写回物流编号并改为 shipped；失败释放占用

        Raises:
            AlreadyCreatedError: 已建立过
            ConflictError: 状态不可出货或另一请求进行中
            ConflictError: 物流单建立期间订单被取消（物流编号已记录在日志）
            GatewayError: 接口超时/连线失败（已释放占用，可重试）
        """
        order = await self.orders.claim_shipment(order_no)

        try:
            outcome = await self.logistics.create_shipment(order)
        except Exception:
            await self.orders.release_shipment_claim(order.id)
            raise

        if isinstance(outcome, ShipmentRejected):
            await self.orders.release_shipment_claim(order.id)
            self.logger.warning(
                "Shipment rejected by logistics gateway",
                order_no=order_no,
                error_category=outcome.error_category,
                raw_response=outcome.raw_detail
            )
            return ShipmentResult(
                success=False,
                order_no=order_no,
                error_category=outcome.error_category,
                error=outcome.message,
                raw_detail=outcome.raw_detail,
            )

        try:
            await self.orders.record_shipment(order.id, outcome)
        except ConflictError:
            await self.orders.release_shipment_claim(order.id)
            raise
        self.logger.info("Shipment created", order_no=order_no, shipment_id=outcome.shipment_id)
        return ShipmentResult(
            success=True,
            order_no=order_no,
            shipment_id=outcome.shipment_id,
            pickup_code=outcome.pickup_code,
            validation_code=outcome.validation_code,
        )

    async def print_shipping_label(self, order_no: str) -> str:
        """列印托运单：返回自动提交到 ECPay 列印页的 HTML"""
        async def _load(session):
            return await self.orders.load_order(session, order_no)

        order: Order = await self.execute_with_session(_load)
        if not order.gateway_shipment_id:
            raise ConflictError(
                code="SHIPMENT_NOT_CREATED",
                detail=f"Order {order_no} has no shipment yet, create the shipment first"
            )

        form = self.logistics.build_print_form(
            order.gateway_shipment_id,
            order.shipping_sub_type,
            order.pickup_code,
            order.validation_code
        )
        return render_auto_submit_page(form, title="列印託運單", message="正在前往列印頁面...")

    # ------------------------------------------------------------------
    # 结帐
    # ------------------------------------------------------------------

    async def _payable_order(self, order_no: str, member_id: Optional[int]) -> Order:
        async def _load(session):
            return await self.orders.load_order(session, order_no, member_id)

        order: Order = await self.execute_with_session(_load)
        if order.payment_method == COD_PAYMENT_METHOD:
            raise ValidationError(code="COD_ORDER", detail=f"Order {order_no} is cash on delivery")
        if order.payment_status == PaymentStatus.PAID.value:
            raise ConflictError(code="ORDER_ALREADY_PAID", detail=f"Order {order_no} is already paid")
        if order.status != OrderStatus.PENDING.value:
            raise ConflictError(code="ORDER_NOT_PAYABLE", detail=f"Order {order_no} cannot be paid in status {order.status}")
        return order

    async def checkout_for_order(self, order_no: str, member_id: int) -> Dict[str, Any]:
        """会员自己的待付款订单的结帐参数"""
        order = await self._payable_order(order_no, member_id)
        return self.payment.build_checkout(order).to_dict()

    async def payment_page(self, order_no: str) -> str:
        """App 内付款页：自动提交到 ECPay 的 HTML"""
        order = await self._payable_order(order_no, None)
        return render_auto_submit_page(self.payment.build_checkout(order))
