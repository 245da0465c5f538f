"""
ECPay 金流/物流 API 路由
"""
import html
import json
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from sh_core.gateways.ecpay import LogisticsGateway
from sh_core.services import ReconciliationService
from sh_core.utils.errors import ShopHubException
from sh_core.utils.logger import get_logger
from .deps import get_current_member_id, get_reconciliation_service, require_admin
from .models import ApiResponse, CheckoutRequest, CreateShippingRequest, ShipmentResponse

router = APIRouter()
logger = get_logger(__name__)


def _error_page(message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        f"<!DOCTYPE html><html><head><meta charset=\"UTF-8\"></head>"
        f"<body><h2>{html.escape(message)}</h2></body></html>",
        status_code=status_code
    )


def render_store_selected_page(store: Dict[str, str]) -> str:
    """选店完成页：postMessage 回传给打开地图的结帐页"""
    # 避免 </script> 提前结束脚本
    payload = json.dumps(store, ensure_ascii=False).replace("</", "<\\/")
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>門市選擇完成</title>
</head>
<body>
  <script>
    const storeData = {payload};
    if (window.opener) {{
      window.opener.postMessage(storeData, '*');
      setTimeout(() => window.close(), 500);
    }} else {{
      document.write('已選擇門市，請關閉視窗');
    }}
  </script>
</body>
</html>"""


async def _form_dict(request: Request) -> Dict[str, Any]:
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@router.post("/checkout", response_model=ApiResponse[Dict[str, Any]])
async def checkout(
    payload: CheckoutRequest,
    member_id: int = Depends(get_current_member_id),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """取得待付款订单的 ECPay 结帐参数"""
    return ApiResponse.success(await service.checkout_for_order(payload.order_no, member_id))


@router.get("/pay/{order_no}", response_class=HTMLResponse)
async def payment_page(
    order_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """App 内付款页（自动提交到 ECPay）"""
    try:
        return HTMLResponse(await service.payment_page(order_no))
    except ShopHubException as e:
        logger.warning("Payment page unavailable", order_no=order_no, code=e.code)
        return _error_page(e.detail or e.title, e.status)


@router.post("/callback", response_class=PlainTextResponse)
async def payment_callback(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """付款结果通知（ECPay ReturnURL）"""
    ack = await service.handle_payment_notification(await _form_dict(request))
    return PlainTextResponse(ack)


@router.get("/map", response_model=ApiResponse[Dict[str, Any]])
async def map_params(
    logistics_sub_type: Optional[str] = Query(None, alias="logisticsSubType", description="UNIMART / FAMI / HILIFE / OKMART")
):
    """电子地图选店参数"""
    form = LogisticsGateway().build_map_params(logistics_sub_type)
    return ApiResponse.success(form.to_dict())


@router.post("/map-callback", response_class=HTMLResponse)
async def map_callback(request: Request):
    """电子地图选店完成回传"""
    form = await _form_dict(request)
    store = {
        "storeId": form.get("CVSStoreID", ""),
        "storeName": form.get("CVSStoreName", ""),
        "storeAddress": form.get("CVSAddress", ""),
        "logisticsSubType": form.get("LogisticsSubType", ""),
    }
    logger.info("Store selected", store_id=store["storeId"], logistics_sub_type=store["logisticsSubType"])
    return HTMLResponse(render_store_selected_page(store))


@router.post("/create-shipping", response_model=ApiResponse[ShipmentResponse])
async def create_shipping(
    payload: CreateShippingRequest,
    admin_id: int = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """建立超商物流单"""
    result = await service.create_shipment(payload.order_no)
    data = ShipmentResponse(**asdict(result))

    if not result.success:
        return JSONResponse(
            status_code=400,
            content={
                "ok": False,
                "data": data.model_dump(),
                "error": {
                    "type": "about:blank",
                    "title": "Shipment Rejected",
                    "status": 400,
                    "detail": result.error,
                    "code": result.error_category,
                }
            }
        )

    logger.info("Admin created shipment", order_no=payload.order_no, admin_id=admin_id)
    return ApiResponse.success(data)


@router.get("/print-shipping", response_class=HTMLResponse)
async def print_shipping(
    order_no: str = Query(..., alias="orderNo"),
    admin_id: int = Depends(require_admin),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """列印托运单"""
    try:
        return HTMLResponse(await service.print_shipping_label(order_no))
    except ShopHubException as e:
        logger.warning("Print shipping label unavailable", order_no=order_no, code=e.code)
        return _error_page(e.detail or e.title, e.status)


@router.post("/logistics-callback", response_class=PlainTextResponse)
async def logistics_callback(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """物流状态通知（ECPay ServerReplyURL）"""
    ack = await service.handle_logistics_notification(await _form_dict(request))
    return PlainTextResponse(ack)
