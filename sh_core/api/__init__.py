"""
ShopHub API 路由模块
"""
from fastapi import APIRouter

from .admin_orders import router as admin_orders_router
from .orders import router as orders_router
from .points import router as points_router
from .returns import router as returns_router
from .ecpay import router as ecpay_router

# 创建主路由器
api_router = APIRouter()

# 后台路由需先于 /orders/{order_no} 注册
api_router.include_router(admin_orders_router, prefix="/orders/admin", tags=["Admin Orders"])
api_router.include_router(orders_router, prefix="/orders", tags=["Orders"])
api_router.include_router(returns_router, prefix="/returns/admin", tags=["Admin Returns"])
api_router.include_router(points_router, prefix="/points", tags=["Points"])
api_router.include_router(ecpay_router, prefix="/ecpay", tags=["ECPay"])

__all__ = ["api_router"]
