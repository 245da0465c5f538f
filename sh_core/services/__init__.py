"""
ShopHub 业务服务层
"""
from .base import BaseService, RepositoryMixin
from .inventory import InventoryService, ItemRef
from .order_sequence import OrderSequenceGenerator, allocate_order_no, format_order_no, site_today
from .order_state import (
    OrderStatus, PaymentStatus, ShippingMethod,
    calculate_shipping_fee, parse_status, status_for_logistics_code,
)
from .points import PointService, points_for_subtotal
from .orders import OrdersService
from .reconciliation import ReconciliationService
from .returns import ReturnsService

__all__ = [
    "BaseService",
    "RepositoryMixin",
    "InventoryService",
    "ItemRef",
    "OrderSequenceGenerator",
    "allocate_order_no",
    "format_order_no",
    "site_today",
    "OrderStatus",
    "PaymentStatus",
    "ShippingMethod",
    "calculate_shipping_fee",
    "parse_status",
    "status_for_logistics_code",
    "PointService",
    "points_for_subtotal",
    "OrdersService",
    "ReconciliationService",
    "ReturnsService",
]
