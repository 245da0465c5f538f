"""
ShopHub 数据模型包
"""
from .base import Base
from .members import Member
from .catalog import Product, ProductVariant
from .settings import SiteSetting
from .orders import Order, OrderItem, OrderSequence
from .points import PointTransaction
from .returns import ReturnRequest
from .notifications import GatewayNotification

__all__ = [
    "Base",
    "Member",
    "Product",
    "ProductVariant",
    "SiteSetting",
    "Order",
    "OrderItem",
    "OrderSequence",
    "PointTransaction",
    "ReturnRequest",
    "GatewayNotification",
]
