"""
订单服务
处理订单建立、查询、取消、后台改状态，以及金物流回写
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sh_core.config import get_settings
from sh_core.gateways.ecpay.logistics import to_c2c_sub_type
from sh_core.gateways.ecpay.payment import PaymentGateway
from sh_core.gateways.ecpay.schemas import ShipmentCreated
from sh_core.models import (
    Member, Order, OrderItem, Product, ReturnRequest, SiteSetting
)
from sh_core.utils.errors import (
    AlreadyCreatedError, ConflictError, NotFoundError, ValidationError
)
from .base import BaseService, RepositoryMixin
from .inventory import InventoryService, ItemRef
from .order_sequence import allocate_order_no
from .order_state import (
    COD_PAYMENT_METHOD, MEMBER_CANCELLABLE, POINT_REVERSAL_STATES,
    OrderStatus, PaymentStatus, ShippingMethod,
    calculate_shipping_fee, can_apply_logistics, parse_status,
    shippable_states, status_for_logistics_code,
)
from .points import PointService, points_for_subtotal

HOME_DELIVERY_FEE_KEY = "home_delivery_fee"
CENT = Decimal("0.01")


def utcnow():
    """返回UTC时区的当前时间"""
    return datetime.now(timezone.utc)


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(code="INVALID_AMOUNT", detail=f"Invalid amount for {field}: {value!r}")
    if not result.is_finite():
        raise ValidationError(code="INVALID_AMOUNT", detail=f"Invalid amount for {field}: {value!r}")
    return result.quantize(CENT)


def serialize_order(order: Order, include_items: bool = True) -> Dict[str, Any]:
    """订单转字典（API 输出）"""
    data = order.to_dict()
    if include_items:
        data["items"] = [item.to_dict() for item in order.items]
    return data


async def issue_order_points(session: AsyncSession, order: Order) -> int:
    """
    订单完成发放点数

    订单已有未扣回的点数时不重复发放；取消/退款扣回后再次完成会重新发放。
    """
    outstanding = await PointService.outstanding_for(session, order.order_no)
    if outstanding > 0:
        return 0

    points = points_for_subtotal(order.subtotal)
    if points <= 0:
        return 0

    await PointService.earn(
        session, order.member_id, order.order_no, points,
        description=f"订单 {order.order_no} 完成获得点数"
    )
    return points


async def reverse_order_points(session: AsyncSession, order: Order, reason: str) -> int:
    """扣回订单尚未扣回的点数，余额不足时扣到 0"""
    outstanding = await PointService.outstanding_for(session, order.order_no)
    if outstanding <= 0:
        return 0
    return await PointService.deduct(
        session, order.member_id, order.order_no, outstanding,
        description=f"订单 {order.order_no} {reason}扣回点数"
    )


class OrdersService(BaseService, RepositoryMixin):
    """订单服务"""

    def __init__(self):
        super().__init__()
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # 建立订单
    # ------------------------------------------------------------------

    async def create_order(self, member_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        建立订单

        编号分配、订单、明细、库存扣减在同一事务内完成，任何一步失败整体回滚。
        非货到付款订单在提交后返回金流结帐参数。
        """
        data = self._validate_create_payload(payload)
        order = await self.execute_with_transaction(self._create_order_tx, member_id, data)

        self.logger.info(
            "Order created",
            order_no=order.order_no,
            total=str(order.total),
            items=len(order.items),
            payment_method=order.payment_method
        )

        checkout = None
        if order.payment_method != COD_PAYMENT_METHOD:
            checkout = PaymentGateway(self.settings).build_checkout(order).to_dict()

        return {
            "order_no": order.order_no,
            "order_id": order.id,
            "subtotal": str(order.subtotal),
            "shipping_fee": str(order.shipping_fee),
            "total": str(order.total),
            "gateway_checkout_params": checkout,
        }

    def _validate_create_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """验证下单数据"""
        raw_items = payload.get("items") or []
        if not raw_items:
            raise ValidationError(code="EMPTY_ORDER_ITEMS", detail="Order must contain at least one item")

        try:
            method = ShippingMethod(payload.get("shipping_method"))
        except ValueError:
            raise ValidationError(
                code="INVALID_SHIPPING_METHOD",
                detail=f"Unknown shipping method: {payload.get('shipping_method')!r}"
            )

        payment_method = str(payload.get("payment_method") or "").strip().lower()
        if not payment_method:
            raise ValidationError(code="MISSING_PAYMENT_METHOD", detail="Payment method is required")

        info = payload.get("shipping_info") or {}
        self.validate_required_fields(info, ["name", "phone"])

        sub_type = payload.get("shipping_sub_type")
        if method == ShippingMethod.CVS:
            self.validate_required_fields(info, ["store_id"])
            # 提前校验超商类别，避免建立物流单时才失败
            to_c2c_sub_type(sub_type)
        elif method == ShippingMethod.HOME:
            self.validate_required_fields(info, ["address"])

        items = []
        computed = Decimal(0)
        for i, item in enumerate(raw_items):
            try:
                product_id = int(item["product_id"])
                variant_id = int(item["variant_id"]) if item.get("variant_id") is not None else None
                quantity = int(item["quantity"])
            except (KeyError, TypeError, ValueError):
                raise ValidationError(code="INVALID_ORDER_ITEM", detail=f"Invalid product or quantity for item {i}")

            if quantity <= 0:
                raise ValidationError(
                    code="INVALID_QUANTITY",
                    detail=f"Quantity must be positive for item {i}: {quantity}"
                )

            price = _to_decimal(item.get("price"), f"item {i} price")
            if price < 0:
                raise ValidationError(code="INVALID_PRICE", detail=f"Price cannot be negative for item {i}")

            computed += price * quantity
            items.append({
                "product_id": product_id,
                "variant_id": variant_id,
                "quantity": quantity,
                "price": price,
                "name": item.get("name"),
                "variant_name": item.get("variant_name"),
                "image": item.get("image"),
            })

        subtotal = _to_decimal(payload.get("subtotal"), "subtotal")
        if subtotal != computed:
            raise ValidationError(
                code="SUBTOTAL_MISMATCH",
                detail=f"Subtotal {subtotal} does not match item total {computed}"
            )

        return {
            "shipping_method": method,
            "shipping_sub_type": sub_type.strip().upper() if sub_type else None,
            "payment_method": payment_method,
            "shipping_info": info,
            "invoice_type": payload.get("invoice_type"),
            "invoice_company": payload.get("invoice_company"),
            "invoice_tax_id": payload.get("invoice_tax_id"),
            "subtotal": subtotal,
            "items": items,
        }

    async def _home_delivery_fee(self, session: AsyncSession) -> Optional[Decimal]:
        """读取站点设置中的宅配运费，未设置或格式错误时返回 None"""
        setting = await self.get_by_field(session, SiteSetting, "setting_key", HOME_DELIVERY_FEE_KEY)
        if setting is None or setting.setting_value in (None, ""):
            return None
        try:
            return Decimal(setting.setting_value.strip())
        except InvalidOperation:
            self.logger.warning("Invalid home delivery fee setting", value=setting.setting_value)
            return None

    async def _item_display_name(self, session: AsyncSession, item: Dict[str, Any]) -> str:
        if item["name"]:
            return item["name"]
        product = await session.get(Product, item["product_id"])
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {item['product_id']}")
        return product.name

    async def _create_order_tx(self, session: AsyncSession, member_id: int, data: Dict[str, Any]) -> Order:
        """事务中的建单逻辑"""
        if await session.get(Member, member_id) is None:
            raise NotFoundError(code="MEMBER_NOT_FOUND", resource=f"Member {member_id}")

        home_fee = await self._home_delivery_fee(session)
        subtotal = data["subtotal"]
        shipping_fee = calculate_shipping_fee(data["shipping_method"], subtotal, home_fee, self.settings).quantize(CENT)
        order_no = await allocate_order_no(session, settings=self.settings)

        info = data["shipping_info"]
        order = Order(
            order_no=order_no,
            member_id=member_id,
            receiver_name=info["name"].strip(),
            receiver_phone=info["phone"].strip(),
            receiver_email=info.get("email"),
            receiver_address=info.get("address"),
            store_id=info.get("store_id"),
            store_name=info.get("store_name"),
            store_address=info.get("store_address"),
            shipping_method=data["shipping_method"].value,
            shipping_sub_type=data["shipping_sub_type"],
            shipping_fee=shipping_fee,
            payment_method=data["payment_method"],
            payment_status=PaymentStatus.UNPAID.value,
            status=OrderStatus.PENDING.value,
            invoice_type=data["invoice_type"],
            invoice_company=data["invoice_company"],
            invoice_tax_id=data["invoice_tax_id"],
            subtotal=subtotal,
            total=subtotal + shipping_fee,
        )

        for item in data["items"]:
            name = await self._item_display_name(session, item)
            ref = ItemRef(item["product_id"], item["variant_id"], name)
            await InventoryService.reserve(session, ref, item["quantity"])

            order.items.append(OrderItem(
                product_id=item["product_id"],
                variant_id=item["variant_id"],
                product_name=name,
                variant_name=item["variant_name"],
                product_image=item["image"],
                price=item["price"],
                quantity=item["quantity"],
                subtotal=item["price"] * item["quantity"],
            ))

        session.add(order)
        await session.flush()
        return order

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def load_order(
        self,
        session: AsyncSession,
        order_no: str,
        member_id: Optional[int] = None
    ) -> Order:
        """按编号加载订单（含明细），指定 member_id 时只返回本人的订单"""
        stmt = select(Order).options(selectinload(Order.items)).where(Order.order_no == order_no)
        if member_id is not None:
            stmt = stmt.where(Order.member_id == member_id)
        order = (await session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_no}")
        return order

    async def reload_order(self, session: AsyncSession, order_id: int) -> Order:
        """条件更新后重新读取订单，覆盖会话中的旧值"""
        result = await session.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get_order(self, member_id: int, order_no: str) -> Dict[str, Any]:
        """会员查询自己的订单"""
        async def _get(session):
            return serialize_order(await self.load_order(session, order_no, member_id))
        return await self.execute_with_session(_get)

    async def list_member_orders(self, member_id: int) -> List[Dict[str, Any]]:
        """会员订单列表（新到旧）"""
        async def _list(session):
            result = await session.execute(
                select(Order)
                .options(selectinload(Order.items))
                .where(Order.member_id == member_id)
                .order_by(Order.created_at.desc(), Order.id.desc())
            )
            return [serialize_order(order) for order in result.scalars().all()]
        return await self.execute_with_session(_list)

    async def admin_get_order(self, order_no: str) -> Dict[str, Any]:
        async def _get(session):
            return serialize_order(await self.load_order(session, order_no))
        return await self.execute_with_session(_get)

    async def admin_list_orders(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        status: Optional[str] = None
    ) -> Dict[str, Any]:
        """后台订单列表：按编号/收件人搜索，按状态筛选，分页"""
        page = max(page, 1)
        limit = min(max(limit, 1), 100)

        filters = []
        if status:
            filters.append(Order.status == parse_status(status).value)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(
                Order.order_no.ilike(pattern),
                Order.receiver_name.ilike(pattern),
                Order.receiver_phone.like(pattern),
            ))

        async def _list(session):
            total = (await session.execute(
                select(func.count()).select_from(Order).where(*filters)
            )).scalar_one()

            result = await session.execute(
                select(Order)
                .options(selectinload(Order.items))
                .where(*filters)
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return {
                "items": [serialize_order(order) for order in result.scalars().all()],
                "total": total,
                "page": page,
                "limit": limit,
            }

        return await self.execute_with_session(_list)

    async def dashboard_stats(self) -> Dict[str, Any]:
        """后台首页统计"""
        async def _stats(session):
            product_count = (await session.execute(select(func.count()).select_from(Product))).scalar_one()
            member_count = (await session.execute(select(func.count()).select_from(Member))).scalar_one()
            order_count = (await session.execute(select(func.count()).select_from(Order))).scalar_one()
            pending_count = (await session.execute(
                select(func.count()).select_from(Order).where(Order.status == OrderStatus.PENDING.value)
            )).scalar_one()
            revenue = (await session.execute(
                select(func.coalesce(func.sum(Order.total), 0))
                .where(Order.status != OrderStatus.CANCELLED.value)
            )).scalar_one()
            return {
                "total_products": product_count,
                "total_members": member_count,
                "total_orders": order_count,
                "pending_orders": pending_count,
                "total_revenue": str(Decimal(str(revenue))),
            }
        return await self.execute_with_session(_stats)

    # ------------------------------------------------------------------
    # 状态变更
    # ------------------------------------------------------------------

    async def admin_set_status(self, order_no: str, status: str) -> Dict[str, Any]:
        """
        后台改状态（唯一允许任意流转的入口）

        - 进入 completed：发放点数（已有未扣回点数时不重复发）
        - 进入 cancelled / refunded：扣回未扣回的点数
        - 从 pending / paid 进入 cancelled：回补库存
        - 从 cancelled 改回其他状态（退款除外）：重新扣减已回补的库存
        - 物流单建立进行中不可取消
        """
        target = parse_status(status)
        return await self.execute_with_transaction(self._admin_set_status_tx, order_no, target)

    async def _admin_set_status_tx(self, session: AsyncSession, order_no: str, target: OrderStatus) -> Dict[str, Any]:
        order = await self.load_order(session, order_no)
        current = parse_status(order.status)
        if current == target:
            return serialize_order(order)

        values: Dict[str, Any] = {"status": target.value}
        if target == OrderStatus.PAID and order.payment_status != PaymentStatus.PAID.value:
            values["payment_status"] = PaymentStatus.PAID.value
            values["paid_at"] = utcnow()

        stmt = (
            update(Order)
            .where(Order.id == order.id)
            .where(Order.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if target == OrderStatus.CANCELLED:
            stmt = stmt.where(self._no_active_claim())
        result = await session.execute(stmt)
        if result.rowcount != 1:
            if target == OrderStatus.CANCELLED and order.shipment_claimed_at is not None:
                raise self._shipment_in_progress(order_no)
            raise ConflictError(
                code="ORDER_STATUS_CHANGED",
                detail=f"Order {order_no} was modified concurrently, please reload"
            )

        if target == OrderStatus.COMPLETED:
            await issue_order_points(session, order)
        if target in POINT_REVERSAL_STATES:
            await reverse_order_points(session, order, "取消" if target == OrderStatus.CANCELLED else "退款")
        if target == OrderStatus.CANCELLED and current in MEMBER_CANCELLABLE:
            await self._release_items(session, order)
        if current == OrderStatus.CANCELLED and target != OrderStatus.REFUNDED:
            await self._reserve_items_again(session, order)

        order = await self.reload_order(session, order.id)
        self.logger.info(
            "Order status changed by admin",
            order_no=order_no,
            from_status=current.value,
            to_status=target.value
        )
        return serialize_order(order)

    async def cancel_by_member(self, member_id: int, order_no: str) -> Dict[str, Any]:
        """会员取消订单：仅待付款/已付款可取消，并回补库存"""
        return await self.execute_with_transaction(self._cancel_by_member_tx, member_id, order_no)

    async def _cancel_by_member_tx(self, session: AsyncSession, member_id: int, order_no: str) -> Dict[str, Any]:
        order = await self.load_order(session, order_no, member_id)

        result = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.member_id == member_id)
            .where(Order.status.in_([s.value for s in MEMBER_CANCELLABLE]))
            .where(self._no_active_claim())
            .values(status=OrderStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if order.shipment_claimed_at is not None and parse_status(order.status) in MEMBER_CANCELLABLE:
                raise self._shipment_in_progress(order_no)
            raise ConflictError(
                code="ORDER_NOT_CANCELLABLE",
                detail=f"Order {order_no} cannot be cancelled in status {order.status}"
            )

        await self._release_items(session, order)
        await reverse_order_points(session, order, "取消")

        if order.payment_status == PaymentStatus.PAID.value:
            # 已付款订单取消后需人工退款
            self.logger.warning("Paid order cancelled by member, manual refund required", order_no=order_no)

        order = await self.reload_order(session, order.id)
        self.logger.info("Order cancelled by member", order_no=order_no)
        return serialize_order(order)

    async def _release_items(self, session: AsyncSession, order: Order) -> bool:
        """回补库存；同一订单在重新扣减前只回补一次"""
        result = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.stock_released.is_(False))
            .values(stock_released=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.logger.info("Order stock already released", order_no=order.order_no)
            return False
        for item in order.items:
            ref = ItemRef(item.product_id, item.variant_id, item.product_name)
            await InventoryService.release(session, ref, item.quantity)
        return True

    async def _reserve_items_again(self, session: AsyncSession, order: Order) -> bool:
        """
        后台把已取消订单改回其他状态时，重新扣减已回补的库存

        Raises:
            InsufficientStockError: 库存已不足，整个改状态操作回滚
        """
        result = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.stock_released.is_(True))
            .values(stock_released=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        for item in order.items:
            ref = ItemRef(item.product_id, item.variant_id, item.product_name)
            await InventoryService.reserve(session, ref, item.quantity)
        self.logger.info("Order stock reserved again", order_no=order.order_no)
        return True

    def _no_active_claim(self):
        """没有进行中的物流单建立（占用不存在或已过期）"""
        cutoff = utcnow() - timedelta(seconds=self.settings.shipment_claim_ttl_seconds)
        return or_(Order.shipment_claimed_at.is_(None), Order.shipment_claimed_at < cutoff)

    
    @staticmethod
    def _shipment_in_progress(order_no: str) -> ConflictError:
        return ConflictError(
            code="SHIPMENT_IN_PROGRESS",
            detail=f"Shipment for order {order_no} is being created, try again later"
        )

    async def delete_order(self, order_no: str) -> None:
        """物理删除订单及明细"""
        async def _delete(session):
            order = await self.load_order(session, order_no)
            await session.execute(delete(OrderItem).where(OrderItem.order_id == order.id))
            await session.execute(delete(ReturnRequest).where(ReturnRequest.order_id == order.id))
            await session.execute(delete(Order).where(Order.id == order.id))

        await self.execute_with_transaction(_delete)
        self.logger.info("Order deleted", order_no=order_no)

    # ------------------------------------------------------------------
    # 金物流回写（由对账引擎调用）
    # ------------------------------------------------------------------

    async def apply_payment(
        self,
        session: AsyncSession,
        order_no: str,
        trade_no: Optional[str],
        amount: Optional[int]
    ) -> str:
        """
        付款成功回写

        payment_status 仅从 unpaid 变为 paid 一次，status 仅在 pending 时改为 paid。

        Returns:
            处理结果：applied / already_paid / paid_after_cancel / unknown_order / amount_mismatch
        """
        row = (await session.execute(
            select(Order.id, Order.status, Order.total).where(Order.order_no == order_no)
        )).one_or_none()
        if row is None:
            self.logger.warning("Payment notification for unknown order", order_no=order_no)
            return "unknown_order"

        if amount is not None and int(amount) != int(row.total):
            self.logger.warning(
                "Payment amount mismatch",
                order_no=order_no,
                expected=str(row.total),
                received=amount
            )
            return "amount_mismatch"

        result = await session.execute(
            update(Order)
            .where(Order.id == row.id)
            .where(Order.payment_status == PaymentStatus.UNPAID.value)
            .values(
                payment_status=PaymentStatus.PAID.value,
                status=case(
                    (Order.status == OrderStatus.PENDING.value, OrderStatus.PAID.value),
                    else_=Order.status
                ),
                gateway_trade_no=trade_no,
                paid_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.logger.info("Duplicate payment notification ignored", order_no=order_no)
            return "already_paid"

        if row.status == OrderStatus.CANCELLED.value:
            self.logger.warning("Payment received for cancelled order", order_no=order_no, trade_no=trade_no)
            return "paid_after_cancel"

        self.logger.info("Order paid", order_no=order_no, trade_no=trade_no)
        return "applied"

    async def claim_shipment(self, order_no: str) -> Order:
        """
        占用订单以建立物流单

        Raises:
            AlreadyCreatedError: 已有物流编号
            ConflictError: 状态不可出货，或另一请求正在建立
            ValidationError: 非超商取货订单
        """
        return await self.execute_with_transaction(self._claim_shipment_tx, order_no)

    async def _claim_shipment_tx(self, session: AsyncSession, order_no: str) -> Order:
        order = await self.load_order(session, order_no)
        if order.gateway_shipment_id:
            raise AlreadyCreatedError(order_no, order.gateway_shipment_id)

        if order.shipping_method != ShippingMethod.CVS.value:
            raise ValidationError(
                code="UNSUPPORTED_SHIPPING_METHOD",
                detail=f"Shipment creation only supports CVS orders, got {order.shipping_method}"
            )

        allowed = shippable_states(order.payment_method)
        if parse_status(order.status) not in allowed:
            raise ConflictError(
                code="ORDER_NOT_SHIPPABLE",
                detail=f"Order {order_no} cannot be shipped in status {order.status}"
            )

        result = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.gateway_shipment_id.is_(None))
            .where(Order.status.in_([s.value for s in allowed]))
            .where(self._no_active_claim())
            .values(shipment_claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                code="SHIPMENT_IN_PROGRESS",
                detail=f"Shipment for order {order_no} is being created by another request"
            )
        return order

    async def release_shipment_claim(self, order_id: int) -> None:
        """释放占用（物流单未建立成功时）"""
        async def _release(session):
            await session.execute(
                update(Order)
                .where(Order.id == order_id)
                .where(Order.gateway_shipment_id.is_(None))
                .values(shipment_claimed_at=None)
                .execution_options(synchronize_session=False)
            )
        await self.execute_with_transaction(_release)

    async def record_shipment(self, order_id: int, created: ShipmentCreated) -> None:
        """
        写入物流编号并改为 shipped

        订单须仍可出货（已付款，或货到付款的待付款）且尚无物流编号。

        Raises:
            ConflictError: 订单已取消或已有物流编号，物流单成为孤儿需人工作废
        """
        async def _record(session):
            result = await session.execute(
                update(Order)
                .where(Order.id == order_id)
                .where(Order.gateway_shipment_id.is_(None))
                .where(or_(
                    Order.status == OrderStatus.PAID.value,
                    and_(
                        Order.status == OrderStatus.PENDING.value,
                        Order.payment_method == COD_PAYMENT_METHOD
                    ),
                ))
                .values(
                    gateway_shipment_id=created.shipment_id,
                    pickup_code=created.pickup_code,
                    validation_code=created.validation_code,
                    shipment_claimed_at=None,
                    status=OrderStatus.SHIPPED.value,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.logger.error(
                    "Shipment created for an order that is no longer shippable",
                    order_id=order_id,
                    orphan_shipment_id=created.shipment_id
                )
                raise ConflictError(
                    code="SHIPMENT_NOT_RECORDED",
                    detail=f"Order {order_id} is no longer shippable, shipment {created.shipment_id} must be voided"
                )
        await self.execute_with_transaction(_record)

    async def apply_logistics_status(self, session: AsyncSession, shipment_id: str, code: str) -> str:
        """
        物流状态回写（只向前推进）

        Returns:
            处理结果：applied / unchanged / ignored_regression / unmapped_code / unknown_shipment / conflict
        """
        target = status_for_logistics_code(code)
        if target is None:
            self.logger.info("Unmapped logistics status code", shipment_id=shipment_id, rtn_code=code)
            return "unmapped_code"

        order = await self.get_by_field(session, Order, "gateway_shipment_id", shipment_id)
        if order is None:
            self.logger.warning("Logistics notification for unknown shipment", shipment_id=shipment_id)
            return "unknown_shipment"

        current = parse_status(order.status)
        if current == target:
            return "unchanged"
        if not can_apply_logistics(current, target, order.payment_method):
            self.logger.warning(
                "Logistics status regression ignored",
                order_no=order.order_no,
                from_status=current.value,
                to_status=target.value,
                rtn_code=code
            )
            return "ignored_regression"

        values: Dict[str, Any] = {"status": target.value}
        # 货到付款：取件即付款
        if (
            target == OrderStatus.COMPLETED
            and order.payment_method == COD_PAYMENT_METHOD
            and order.payment_status == PaymentStatus.UNPAID.value
        ):
            values["payment_status"] = PaymentStatus.PAID.value
            values["paid_at"] = utcnow()

        result = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.logger.warning("Logistics status update lost race", order_no=order.order_no, rtn_code=code)
            return "conflict"

        if target == OrderStatus.COMPLETED:
            await issue_order_points(session, order)

        self.logger.info(
            "Order status updated by logistics",
            order_no=order.order_no,
            from_status=current.value,
            to_status=target.value,
            rtn_code=code
        )
        return "applied"
