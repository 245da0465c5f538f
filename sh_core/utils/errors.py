"""
ShopHub 错误处理系统
遵循 RFC7807 Problem Details 标准
"""
from typing import Any, Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


class ProblemDetail(BaseModel):
    """RFC7807 Problem Details 模型"""
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "about:blank",
                "title": "Insufficient stock",
                "status": 409,
                "detail": "Insufficient stock for product 12: requested 3, available 1",
                "code": "INSUFFICIENT_STOCK"
            }
        }
    )

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: Optional[str] = None
    instance: Optional[str] = None
    code: Optional[str] = None  # 业务错误码


class ShopHubException(Exception):
    """ShopHub 基础异常类"""

    def __init__(
        self,
        status: int,
        code: str,
        title: str,
        detail: Optional[str] = None,
        **kwargs
    ):
        self.status = status
        self.code = code
        self.title = title
        self.detail = detail
        self.extra = kwargs
        super().__init__(detail or title)

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        """转换为 Problem Details 格式"""
        return ProblemDetail(
            type="about:blank",
            title=self.title,
            status=self.status,
            detail=self.detail,
            instance=instance,
            code=self.code,
            **self.extra
        )

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        """转换为 JSON 响应"""
        instance = str(request.url) if request else None
        problem = self.to_problem_detail(instance)

        return JSONResponse(
            status_code=self.status,
            content={
                "ok": False,
                "error": problem.model_dump(exclude_none=True)
            }
        )


# 预定义错误类
class UnauthorizedError(ShopHubException):
    """401 未授权"""
    def __init__(self, code: str = "UNAUTHORIZED", detail: str = "Authentication required"):
        super().__init__(
            status=401,
            code=code,
            title="Unauthorized",
            detail=detail
        )


class ForbiddenError(ShopHubException):
    """403 禁止访问"""
    def __init__(self, code: str = "FORBIDDEN", detail: str = "Access denied"):
        super().__init__(
            status=403,
            code=code,
            title="Forbidden",
            detail=detail
        )


class NotFoundError(ShopHubException):
    """404 未找到"""
    def __init__(self, code: str, resource: str):
        super().__init__(
            status=404,
            code=code,
            title="Not Found",
            detail=f"{resource} not found"
        )


class ConflictError(ShopHubException):
    """409 冲突（重复处理、非法流转、并发竞争失败）"""
    def __init__(self, code: str, detail: str, **kwargs):
        super().__init__(
            status=409,
            code=code,
            title="Conflict",
            detail=detail,
            **kwargs
        )


class AlreadyCreatedError(ConflictError):
    """409 物流单已建立"""
    def __init__(self, order_no: str, shipment_id: str):
        super().__init__(
            code="SHIPMENT_ALREADY_CREATED",
            detail=f"Shipment already created for order {order_no}",
            shipment_id=shipment_id
        )


class InsufficientStockError(ShopHubException):
    """409 库存不足"""
    def __init__(self, item_ref: Any, requested: int, available: Optional[int]):
        self.item_ref = item_ref
        self.requested = requested
        self.available = available
        super().__init__(
            status=409,
            code="INSUFFICIENT_STOCK",
            title="Insufficient Stock",
            detail=f"Insufficient stock for {item_ref}: requested {requested}, available {available}",
            item=str(item_ref),
            requested=requested,
            available=available
        )


class ValidationError(ShopHubException):
    """422 验证失败"""
    def __init__(self, code: str, detail: str):
        super().__init__(
            status=422,
            code=code,
            title="Validation Failed",
            detail=detail
        )


class InvalidStateError(ShopHubException):
    """422 无效的订单状态"""
    def __init__(self, value: Any):
        super().__init__(
            status=422,
            code="INVALID_STATE",
            title="Invalid State",
            detail=f"Unknown order status: {value!r}"
        )


class IntegrityError(ShopHubException):
    """400 回调检查码验证失败"""
    def __init__(self, code: str = "CHECK_MAC_MISMATCH", detail: str = "CheckMacValue verification failed"):
        super().__init__(
            status=400,
            code=code,
            title="Integrity Check Failed",
            detail=detail
        )


class GatewayError(ShopHubException):
    """502 外部金物流接口失败（可重试）"""
    def __init__(
        self,
        code: str,
        detail: str,
        raw_response: Optional[str] = None,
        retryable: bool = True
    ):
        self.raw_response = raw_response
        self.retryable = retryable
        super().__init__(
            status=502,
            code=code,
            title="Bad Gateway",
            detail=detail,
            raw_response=raw_response,
            retryable=retryable
        )


class InternalServerError(ShopHubException):
    """500 内部错误"""
    def __init__(self, code: str = "INTERNAL_ERROR", detail: str = "An internal error occurred"):
        super().__init__(
            status=500,
            code=code,
            title="Internal Server Error",
            detail=detail
        )
