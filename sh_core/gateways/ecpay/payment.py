"""
ECPay 全方位金流（AIO）适配器
"""
import html
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError as PydanticValidationError

from sh_core.config import Settings, get_settings
from sh_core.utils.errors import IntegrityError, ValidationError
from sh_core.utils.logger import get_logger
from .checkmac import CheckMacMethod, compute_check_mac_value, verify_check_mac_value
from .schemas import CheckoutForm, PaymentNotification

logger = get_logger(__name__)

ACK_OK = "1|OK"
ACK_CHECKSUM_FAILED = "0|ErrorMessage"
RTN_SUCCESS = "1"

STAGE_CHECKOUT_URL = "https://payment-stage.ecpay.com.tw/Cashier/AioCheckOut/V5"
PRODUCTION_CHECKOUT_URL = "https://payment.ecpay.com.tw/Cashier/AioCheckOut/V5"

ITEM_NAME_MAX_LENGTH = 200
TRADE_DESC_MAX_LENGTH = 200


def _item_names(items: Iterable[Any]) -> str:
    names = []
    for item in items:
        name = item.product_name
        if getattr(item, "variant_name", None):
            name = f"{name}({item.variant_name})"
        names.append(f"{name} x {item.quantity}")
    return "#".join(names)[:ITEM_NAME_MAX_LENGTH] or "ShopHub"


def render_auto_submit_page(
    form: CheckoutForm,
    title: str = "前往付款...",
    message: str = "正在前往綠界付款頁面..."
) -> str:
    """生成自动提交表单的 HTML 页面（App 内付款/列印托运单使用）"""
    inputs = "\n".join(
        f'    <input type="hidden" name="{html.escape(str(k))}" value="{html.escape(str(v))}" />'
        for k, v in form.fields.items()
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{html.escape(title)}</title>
</head>
<body>
  <div class="loading">{html.escape(message)}</div>
  <form id="ecpayForm" method="POST" action="{html.escape(form.action_url)}">
{inputs}
  </form>
  <script>document.getElementById('ecpayForm').submit();</script>
</body>
</html>"""


class PaymentGateway:
    """金流：建立结帐参数、验证付款通知"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @property
    def checkout_url(self) -> str:
        return STAGE_CHECKOUT_URL if self.settings.ecpay_stage else PRODUCTION_CHECKOUT_URL

    def sign(self, params: Mapping[str, Any]) -> str:
        return compute_check_mac_value(
            params, self.settings.ecpay_hash_key, self.settings.ecpay_hash_iv, CheckMacMethod.SHA256
        )

    def build_checkout(self, order, now: Optional[datetime] = None) -> CheckoutForm:
        """
        组装 AIO 结帐参数

        Args:
            order: 订单（需已加载 items）
            now: 交易时间，默认站点时区当前时间
        """
        now = now or datetime.now(ZoneInfo(self.settings.site_timezone))
        fields = {
            "MerchantID": self.settings.ecpay_merchant_id,
            "MerchantTradeNo": order.order_no,
            "MerchantTradeDate": now.strftime("%Y/%m/%d %H:%M:%S"),
            "PaymentType": "aio",
            "TotalAmount": int(order.total),
            "TradeDesc": self.settings.ecpay_trade_desc[:TRADE_DESC_MAX_LENGTH],
            "ItemName": _item_names(order.items),
            "ReturnURL": self.settings.ecpay_return_url,
            "ClientBackURL": self.settings.ecpay_client_back_url,
            "ChoosePayment": self.settings.ecpay_choose_payment,
            "EncryptType": 1,
        }
        if self.settings.ecpay_order_result_url:
            fields["OrderResultURL"] = self.settings.ecpay_order_result_url

        fields["CheckMacValue"] = self.sign(fields)
        return CheckoutForm(action_url=self.checkout_url, fields=fields)

    def verify(self, form: Mapping[str, Any]) -> bool:
        return verify_check_mac_value(
            form, self.settings.ecpay_hash_key, self.settings.ecpay_hash_iv, CheckMacMethod.SHA256
        )

    def parse_notification(self, form: Mapping[str, Any]) -> PaymentNotification:
        """
        验证并解析付款通知

        Raises:
            IntegrityError: 检查码不符
            ValidationError: 检查码通过但缺少必填字段
        """
        if not self.verify(form):
            logger.warning(
                "Payment notification checksum mismatch",
                merchant_trade_no=form.get("MerchantTradeNo")
            )
            raise IntegrityError()

        try:
            return PaymentNotification.model_validate(dict(form))
        except PydanticValidationError as e:
            raise ValidationError(code="MALFORMED_PAYMENT_NOTIFICATION", detail=str(e))
