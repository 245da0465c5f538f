"""
认证中间件

登录与令牌校验由上游网关完成，本服务只信任网关注入的身份头：
- X-Member-Id：会员 ID
- X-Member-Role：member / admin
"""
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from sh_core.config import get_settings
from sh_core.utils.logger import get_logger, member_id_var

MEMBER_ID_HEADER = "x-member-id"
MEMBER_ROLE_HEADER = "x-member-role"
VALID_ROLES = {"member", "admin"}


class AuthMiddleware(BaseHTTPMiddleware):
    """认证中间件"""

    # 无需认证的路径（相对 api_prefix）
    PUBLIC_PATHS = {
        "/ecpay/callback",            # 付款结果通知
        "/ecpay/logistics-callback",  # 物流状态通知
        "/ecpay/map-callback",        # 电子地图选店回传
        "/ecpay/map",
    }

    # 公开路径前缀
    PUBLIC_PREFIXES = [
        "/ecpay/pay/",  # App 内付款页
    ]

    ROOT_PUBLIC_PATHS = {"/healthz", "/docs", "/redoc", "/openapi.json"}

    def __init__(self, app, logger=None):
        super().__init__(app)
        self.logger = logger or get_logger("middleware.auth")
        self.api_prefix = get_settings().api_prefix

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._is_public_path(request.url.path):
            return await call_next(request)

        raw_member_id = request.headers.get(MEMBER_ID_HEADER)
        role = (request.headers.get(MEMBER_ROLE_HEADER) or "member").strip().lower()

        if not raw_member_id:
            if get_settings().api_debug:
                # 开发环境默认会员
                raw_member_id = "1"
            else:
                return self._unauthorized("Member identity header is required", "MISSING_MEMBER_ID")

        try:
            member_id = int(raw_member_id)
        except ValueError:
            return self._unauthorized("Member identity header is invalid", "INVALID_MEMBER_ID")

        if member_id <= 0 or role not in VALID_ROLES:
            return self._unauthorized("Member identity header is invalid", "INVALID_MEMBER_ID")

        request.state.member_id = member_id
        request.state.role = role

        token = member_id_var.set(member_id)
        try:
            return await call_next(request)
        finally:
            member_id_var.reset(token)

    def _is_public_path(self, path: str) -> bool:
        if path in self.ROOT_PUBLIC_PATHS:
            return True
        if not path.startswith(self.api_prefix):
            return False

        relative = path[len(self.api_prefix):]
        if relative in self.PUBLIC_PATHS:
            return True
        return any(relative.startswith(prefix) for prefix in self.PUBLIC_PREFIXES)

    def _unauthorized(self, detail: str, code: str) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": "Unauthorized",
                    "status": 401,
                    "detail": detail,
                    "code": code
                }
            }
        )
