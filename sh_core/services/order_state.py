"""
订单状态机与运费规则
"""
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from sh_core.config import Settings, get_settings
from sh_core.utils.errors import InvalidStateError, ValidationError


class OrderStatus(str, Enum):
    """订单状态"""
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class ShippingMethod(str, Enum):
    CVS = "cvs"        # 超商取货
    HOME = "home"      # 宅配
    PICKUP = "pickup"  # 自取


# 货到付款
COD_PAYMENT_METHOD = "cod"

# 物流状态码 -> 订单状态
LOGISTICS_STATUS_CODES: Dict[str, OrderStatus] = {
    "3001": OrderStatus.SHIPPED,    # 已出货（寄件门市收件）
    "3002": OrderStatus.SHIPPED,
    "3003": OrderStatus.SHIPPED,
    "3024": OrderStatus.SHIPPED,
    "2001": OrderStatus.SHIPPED,
    "2030": OrderStatus.ARRIVED,    # 已到取件门市
    "2067": OrderStatus.COMPLETED,  # 消费者已取件
    "2063": OrderStatus.RETURNED,   # 退货
    "2068": OrderStatus.RETURNED,
    "2073": OrderStatus.RETURNED,
}

# 物流回调只能向前推进：目标状态 -> 允许的当前状态
LOGISTICS_SOURCE_STATES: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.SHIPPED: frozenset({OrderStatus.PENDING, OrderStatus.PAID}),
    OrderStatus.ARRIVED: frozenset({OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.SHIPPED}),
    OrderStatus.COMPLETED: frozenset({
        OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.ARRIVED
    }),
    OrderStatus.RETURNED: frozenset({
        OrderStatus.SHIPPED, OrderStatus.ARRIVED, OrderStatus.RETURN_REQUESTED
    }),
}

MEMBER_CANCELLABLE: FrozenSet[OrderStatus] = frozenset({OrderStatus.PENDING, OrderStatus.PAID})
RETURNABLE: FrozenSet[OrderStatus] = frozenset({OrderStatus.ARRIVED, OrderStatus.COMPLETED})
# 进入这些状态时扣回点数
POINT_REVERSAL_STATES: FrozenSet[OrderStatus] = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


def parse_status(value: Union[str, OrderStatus, None]) -> OrderStatus:
    """解析状态字符串，未知值抛 InvalidStateError"""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStateError(value)


def status_for_logistics_code(code: Optional[str]) -> Optional[OrderStatus]:
    """物流状态码对应的订单状态，无对应返回 None"""
    if code is None:
        return None
    return LOGISTICS_STATUS_CODES.get(str(code).strip())


def shippable_states(payment_method: str) -> FrozenSet[OrderStatus]:
    """可建立物流单的状态：已付款；货到付款订单允许待付款"""
    if payment_method == COD_PAYMENT_METHOD:
        return frozenset({OrderStatus.PAID, OrderStatus.PENDING})
    return frozenset({OrderStatus.PAID})


def can_apply_logistics(current: OrderStatus, target: OrderStatus, payment_method: str) -> bool:
    """物流回调是否可把订单从 current 推进到 target；待付款只有货到付款订单可推进"""
    if current == OrderStatus.PENDING and payment_method != COD_PAYMENT_METHOD:
        return False
    return current in LOGISTICS_SOURCE_STATES.get(target, frozenset())


def calculate_shipping_fee(
    method: Union[str, ShippingMethod],
    subtotal: Union[Decimal, int],
    home_fee: Optional[Union[Decimal, int]] = None,
    settings: Optional[Settings] = None
) -> Decimal:
    """
    计算运费

    - 超商：满 cvs_free_threshold 免运，否则 cvs_fee
    - 宅配：满 home_free_threshold 免运，否则 home_fee（站点设置）
    - 自取：免运
    """
    settings = settings or get_settings()
    subtotal = Decimal(subtotal)
    try:
        method = ShippingMethod(method)
    except ValueError:
        raise ValidationError(code="INVALID_SHIPPING_METHOD", detail=f"Unknown shipping method: {method}")

    if method == ShippingMethod.CVS:
        return Decimal(0) if subtotal >= settings.cvs_free_threshold else Decimal(settings.cvs_fee)
    if method == ShippingMethod.HOME:
        if subtotal >= settings.home_free_threshold:
            return Decimal(0)
        fee = home_fee if home_fee is not None else settings.home_delivery_fee_default
        return Decimal(fee)
    return Decimal(0)
