"""
API 请求/响应模型
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar('T')


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""
    ok: bool = Field(description="操作是否成功")
    data: Optional[T] = Field(default=None, description="响应数据")
    error: Optional[Dict[str, Any]] = Field(default=None, description="错误信息（RFC7807 Problem Details）")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="元数据")

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        """创建成功响应"""
        return cls(ok=True, data=data, metadata=metadata)


class PaginatedResponse(BaseModel, Generic[T]):
    """分页响应"""
    items: List[T] = Field(description="数据列表")
    total: int = Field(description="总数量")
    page: int = Field(description="页码（从 1 开始）")
    limit: int = Field(description="每页大小")
    has_more: bool = Field(description="是否有更多数据")


class CamelModel(BaseModel):
    """前端使用 camelCase，服务层使用 snake_case"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# 下单
class ShippingInfo(CamelModel):
    """收件人信息"""
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    store_address: Optional[str] = None


class CreateOrderItem(CamelModel):
    """下单商品"""
    product_id: int
    variant_id: Optional[int] = None
    quantity: int
    price: Decimal
    name: Optional[str] = None
    variant_name: Optional[str] = None
    image: Optional[str] = None


class CreateOrderRequest(CamelModel):
    """建立订单请求"""
    shipping_info: ShippingInfo
    shipping_method: str = Field(description="cvs / home / pickup")
    shipping_sub_type: Optional[str] = Field(default=None, description="超商类别：UNIMART / FAMI / HILIFE / OKMART")
    payment_method: str = Field(description="credit / atm / cod")
    invoice_type: Optional[str] = None
    invoice_company: Optional[str] = None
    invoice_tax_id: Optional[str] = None
    subtotal: Decimal
    items: List[CreateOrderItem]


class CreateOrderResponse(BaseModel):
    order_no: str
    order_id: int
    subtotal: str
    shipping_fee: str
    total: str
    gateway_checkout_params: Optional[Dict[str, Any]] = None


# 后台
class UpdateStatusRequest(BaseModel):
    status: str


class DashboardStats(BaseModel):
    total_products: int
    total_members: int
    total_orders: int
    pending_orders: int
    total_revenue: str


# 退货
class CreateReturnRequest(CamelModel):
    reason: str
    refund_bank_code: Optional[str] = None
    refund_account_name: Optional[str] = None
    refund_account_number: Optional[str] = None


class UpdateReturnRequest(CamelModel):
    status: str = Field(description="approved / rejected / refunded")
    admin_note: Optional[str] = None


# 点数
class PointTransactionResponse(BaseModel):
    id: int
    order_no: Optional[str] = None
    points: int
    type: str
    description: Optional[str] = None
    created_at: Optional[str] = None


class PointsSummary(BaseModel):
    balance: int
    transactions: List[PointTransactionResponse]


# ECPay
class CheckoutRequest(CamelModel):
    order_no: str


class CreateShippingRequest(CamelModel):
    order_no: str


class ShipmentResponse(BaseModel):
    success: bool
    order_no: str
    shipment_id: Optional[str] = None
    pickup_code: Optional[str] = None
    validation_code: Optional[str] = None
    error_category: Optional[str] = None
    error: Optional[str] = None
    raw_detail: Optional[str] = None
