"""
ECPay（綠界）金流与物流
"""
from .checkmac import CheckMacMethod, compute_check_mac_value, verify_check_mac_value
from .payment import (
    ACK_CHECKSUM_FAILED, ACK_OK, RTN_SUCCESS, PaymentGateway, render_auto_submit_page
)
from .logistics import (
    LogisticsGateway, classify_failure, parse_create_response, to_c2c_sub_type
)
from .schemas import (
    CheckoutForm, LogisticsNotification, PaymentNotification,
    ShipmentCreated, ShipmentRejected, ShipmentResult
)

__all__ = [
    "CheckMacMethod",
    "compute_check_mac_value",
    "verify_check_mac_value",
    "ACK_OK",
    "ACK_CHECKSUM_FAILED",
    "RTN_SUCCESS",
    "PaymentGateway",
    "render_auto_submit_page",
    "LogisticsGateway",
    "classify_failure",
    "parse_create_response",
    "to_c2c_sub_type",
    "CheckoutForm",
    "LogisticsNotification",
    "PaymentNotification",
    "ShipmentCreated",
    "ShipmentRejected",
    "ShipmentResult",
]
