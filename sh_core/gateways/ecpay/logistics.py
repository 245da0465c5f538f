"""
ECPay 超商 C2C 物流适配器

建立物流单、列印托运单、电子地图选店、物流状态通知
"""
import re
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qs
from zoneinfo import ZoneInfo

import httpx
from pydantic import ValidationError as PydanticValidationError

from sh_core.config import Settings, get_settings
from sh_core.utils.errors import GatewayError, IntegrityError, ValidationError
from sh_core.utils.external_api_timing import timed_external_api
from sh_core.utils.logger import get_logger
from .checkmac import CHECK_MAC_FIELD, CheckMacMethod, compute_check_mac_value, verify_check_mac_value
from .schemas import CheckoutForm, LogisticsNotification, ShipmentCreated, ShipmentRejected

logger = get_logger(__name__)

STAGE_BASE_URL = "https://logistics-stage.ecpay.com.tw"
PRODUCTION_BASE_URL = "https://logistics.ecpay.com.tw"

CREATE_PATH = "/Express/Create"
MAP_PATH = "/Express/map"

# 店到店子类型
C2C_SUB_TYPES = {
    "UNIMART": "UNIMARTC2C",  # 7-ELEVEN
    "FAMI": "FAMIC2C",        # 全家
    "HILIFE": "HILIFEC2C",    # 莱尔富
    "OKMART": "OKMARTC2C",    # OK
}

PRINT_PATHS = {
    "UNIMARTC2C": "/Express/PrintUniMartC2COrderInfo",
    "FAMIC2C": "/Express/PrintFAMIC2COrderInfo",
    "HILIFEC2C": "/Express/PrintHILIFEC2COrderInfo",
    "OKMARTC2C": "/Express/PrintOKMARTC2COrderInfo",
}

GOODS_NAME_MAX_LENGTH = 50

# 失败原因分类：按顺序匹配回传文字
FAILURE_PATTERNS = (
    (("餘額為負數", "不足支付"), "INSUFFICIENT_BALANCE", "綠界帳戶餘額不足，請先至綠界後台儲值"),
    (("重複",), "DUPLICATE_SHIPMENT", "此訂單已建立過物流單"),
    (("門市",), "INVALID_STORE", "超商門市資訊有誤，請確認門市代碼"),
)
_PARENTHESIZED = re.compile(r"\(([^)]+)\)")


def to_c2c_sub_type(sub_type: Optional[str]) -> str:
    """转换为店到店子类型；已是 C2C 代码原样返回"""
    value = (sub_type or "").strip().upper()
    if value in C2C_SUB_TYPES:
        return C2C_SUB_TYPES[value]
    if value in PRINT_PATHS:
        return value
    raise ValidationError(code="INVALID_LOGISTICS_SUB_TYPE", detail=f"Unknown logistics sub type: {sub_type!r}")


def classify_failure(text: str) -> Optional[Tuple[str, str]]:
    """
    对建立物流单的失败回传分类

    Returns:
        (error_category, message)，无法分类时返回 None
    """
    for needles, category, message in FAILURE_PATTERNS:
        if any(needle in text for needle in needles):
            return category, message

    match = _PARENTHESIZED.search(text)
    if match:
        return "GATEWAY_REJECTED", match.group(1)
    return None


def parse_create_response(text: str) -> Union[ShipmentCreated, ShipmentRejected]:
    """
    解析建立物流单回传

    成功格式：1|AllPayLogisticsID=...&CVSPaymentNo=...&CVSValidationNo=...

    Raises:
        GatewayError: 成功回传缺少物流编号，或失败回传无法分类
    """
    text = (text or "").strip()

    if text.startswith("1|"):
        fields = parse_qs(text.split("|", 1)[1], keep_blank_values=True)

        def first(name: str) -> Optional[str]:
            values = fields.get(name)
            return values[0] if values and values[0] else None

        shipment_id = first("AllPayLogisticsID")
        if not shipment_id:
            raise GatewayError(
                code="MALFORMED_GATEWAY_RESPONSE",
                detail="Logistics response missing AllPayLogisticsID",
                raw_response=text,
                retryable=False
            )
        return ShipmentCreated(
            shipment_id=shipment_id,
            pickup_code=first("CVSPaymentNo"),
            validation_code=first("CVSValidationNo"),
        )

    classified = classify_failure(text)
    if classified is None:
        raise GatewayError(
            code="LOGISTICS_CREATE_FAILED",
            detail="Logistics gateway rejected the shipment",
            raw_response=text,
            retryable=False
        )

    category, message = classified
    return ShipmentRejected(error_category=category, message=message, raw_detail=text)


class LogisticsGateway:
    """超商物流网关"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings or get_settings()
        self.transport = transport

    @property
    def base_url(self) -> str:
        return STAGE_BASE_URL if self.settings.ecpay_stage else PRODUCTION_BASE_URL

    def _now(self) -> datetime:
        return datetime.now(ZoneInfo(self.settings.site_timezone))

    def sign(self, params: Mapping[str, Any]) -> str:
        return compute_check_mac_value(
            params,
            self.settings.ecpay_logistics_hash_key,
            self.settings.ecpay_logistics_hash_iv,
            CheckMacMethod.MD5
        )

    def build_create_params(self, order) -> dict:
        """组装建立物流单参数（MD5 检查码）"""
        if not order.store_id:
            raise ValidationError(code="MISSING_STORE", detail=f"Order {order.order_no} has no pickup store")

        is_cod = order.payment_method == "cod"
        goods_name = order.items[0].product_name if order.items else "ShopHub 商品"
        if len(order.items) > 1:
            goods_name = f"{goods_name} 等{len(order.items)}件"

        params = {
            "MerchantID": self.settings.ecpay_logistics_merchant_id,
            "MerchantTradeNo": order.order_no,
            "MerchantTradeDate": self._now().strftime("%Y/%m/%d %H:%M:%S"),
            "LogisticsType": "CVS",
            "LogisticsSubType": to_c2c_sub_type(order.shipping_sub_type),
            "GoodsAmount": int(order.total),
            "IsCollection": "Y" if is_cod else "N",
            "CollectionAmount": int(order.total) if is_cod else 0,
            "GoodsName": goods_name[:GOODS_NAME_MAX_LENGTH],
            "SenderName": self.settings.ecpay_sender_name,
            "SenderCellPhone": self.settings.ecpay_sender_cellphone,
            "ReceiverName": order.receiver_name,
            "ReceiverCellPhone": order.receiver_phone,
            "ReceiverEmail": order.receiver_email or "",
            "ReceiverStoreID": order.store_id,
            "ServerReplyURL": self.settings.ecpay_logistics_reply_url,
        }
        params[CHECK_MAC_FIELD] = self.sign(params)
        return params

    async def create_shipment(self, order) -> Union[ShipmentCreated, ShipmentRejected]:
        """
        呼叫物流接口建立物流单

        Raises:
            GatewayError: 超时、连线失败、HTTP 错误（可重试），或无法解析的回传
        """
        params = self.build_create_params(order)
        url = f"{self.base_url}{CREATE_PATH}"

        try:
            async with httpx.AsyncClient(timeout=self.settings.ecpay_timeout, transport=self.transport) as client:
                async with timed_external_api("ECPay", "POST", CREATE_PATH, order_no=order.order_no):
                    response = await client.post(url, data=params)
        except httpx.TimeoutException as e:
            logger.error("Logistics gateway timeout", order_no=order.order_no, error=str(e))
            raise GatewayError(code="GATEWAY_TIMEOUT", detail=f"Logistics gateway timed out: {e}")
        except httpx.HTTPError as e:
            logger.error("Logistics gateway unreachable", order_no=order.order_no, error=str(e))
            raise GatewayError(code="GATEWAY_UNAVAILABLE", detail=f"Logistics gateway request failed: {e}")

        text = response.text
        logger.info(
            "Logistics gateway response",
            order_no=order.order_no,
            http_status=response.status_code,
            raw_response=text[:500]
        )

        if response.status_code >= 400:
            raise GatewayError(
                code="GATEWAY_HTTP_ERROR",
                detail=f"Logistics gateway returned HTTP {response.status_code}",
                raw_response=text,
                retryable=response.status_code >= 500
            )

        return parse_create_response(text)

    def build_print_form(self, shipment_id: str, sub_type: Optional[str],
                         pickup_code: Optional[str], validation_code: Optional[str]) -> CheckoutForm:
        """列印托运单的自动提交表单"""
        c2c = to_c2c_sub_type(sub_type or "UNIMARTC2C")
        fields = {
            "MerchantID": self.settings.ecpay_logistics_merchant_id,
            "AllPayLogisticsID": shipment_id,
            "CVSPaymentNo": pickup_code or "",
        }
        # 仅 7-ELEVEN 需要验证码
        if c2c == "UNIMARTC2C":
            fields["CVSValidationNo"] = validation_code or ""
        fields[CHECK_MAC_FIELD] = self.sign(fields)
        return CheckoutForm(action_url=f"{self.base_url}{PRINT_PATHS[c2c]}", fields=fields)

    def build_map_params(self, sub_type: Optional[str], client_reply_url: Optional[str] = None) -> CheckoutForm:
        """电子地图选店参数"""
        fields = {
            "MerchantID": self.settings.ecpay_logistics_merchant_id,
            "MerchantTradeNo": f"MAP{self._now().strftime('%Y%m%d%H%M%S')}",
            "LogisticsType": "CVS",
            "LogisticsSubType": to_c2c_sub_type(sub_type or "UNIMART"),
            "IsCollection": "N",
            "ServerReplyURL": client_reply_url or self.settings.ecpay_map_reply_url,
        }
        return CheckoutForm(action_url=f"{self.base_url}{MAP_PATH}", fields=fields)

    def parse_notification(self, form: Mapping[str, Any]) -> LogisticsNotification:
        """
        解析物流状态通知，先验证检查码

        Raises:
            IntegrityError: 缺少检查码或检查码不符
            ValidationError: 缺少必填字段
        """
        if not verify_check_mac_value(
            form,
            self.settings.ecpay_logistics_hash_key,
            self.settings.ecpay_logistics_hash_iv,
            CheckMacMethod.MD5
        ):
            raise IntegrityError()

        try:
            return LogisticsNotification.model_validate(dict(form))
        except PydanticValidationError as e:
            raise ValidationError(code="MALFORMED_LOGISTICS_NOTIFICATION", detail=str(e))
