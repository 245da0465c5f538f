"""
ECPay 数据结构
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PaymentNotification(BaseModel):
    """金流付款结果通知（ReturnURL）"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    merchant_id: Optional[str] = Field(None, alias="MerchantID")
    merchant_trade_no: str = Field(..., alias="MerchantTradeNo", min_length=1)
    rtn_code: str = Field(..., alias="RtnCode")
    rtn_msg: Optional[str] = Field(None, alias="RtnMsg")
    trade_no: Optional[str] = Field(None, alias="TradeNo")
    trade_amt: Optional[int] = Field(None, alias="TradeAmt")
    payment_date: Optional[str] = Field(None, alias="PaymentDate")
    payment_type: Optional[str] = Field(None, alias="PaymentType")
    simulate_paid: Optional[str] = Field(None, alias="SimulatePaid")

    @field_validator("rtn_code", mode="before")
    @classmethod
    def _code_as_str(cls, v):
        return str(v).strip()


class LogisticsNotification(BaseModel):
    """物流状态通知（ServerReplyURL）"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    merchant_id: Optional[str] = Field(None, alias="MerchantID")
    merchant_trade_no: Optional[str] = Field(None, alias="MerchantTradeNo")
    logistics_id: str = Field(..., alias="AllPayLogisticsID", min_length=1)
    rtn_code: str = Field(..., alias="RtnCode")
    rtn_msg: Optional[str] = Field(None, alias="RtnMsg")
    logistics_sub_type: Optional[str] = Field(None, alias="LogisticsSubType")
    update_status_date: Optional[str] = Field(None, alias="UpdateStatusDate")

    @field_validator("rtn_code", mode="before")
    @classmethod
    def _code_as_str(cls, v):
        return str(v).strip()


@dataclass
class CheckoutForm:
    """自动提交表单：目标地址 + 隐藏字段"""
    action_url: str
    fields: Dict[str, Union[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Union[str, int]]:
        return {"actionUrl": self.action_url, **self.fields}


@dataclass
class ShipmentCreated:
    shipment_id: str
    pickup_code: Optional[str] = None
    validation_code: Optional[str] = None


@dataclass
class ShipmentRejected:
    """物流单被拒（业务性失败，不重试）"""
    error_category: str
    message: str
    raw_detail: str


@dataclass
class ShipmentResult:
    """建立物流单的结果"""
    success: bool
    order_no: str
    shipment_id: Optional[str] = None
    pickup_code: Optional[str] = None
    validation_code: Optional[str] = None
    error_category: Optional[str] = None
    error: Optional[str] = None
    raw_detail: Optional[str] = None
