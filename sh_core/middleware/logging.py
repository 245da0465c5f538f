"""
请求日志中间件

记录所有入站请求：方法、路径、查询参数、状态码、耗时，
并生成 trace_id 写入响应头 X-Trace-Id
"""
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from sh_core.utils.logger import get_logger, LogContext

# 不记录查询参数和响应体的路径
SKIP_DETAIL_PATHS = {
    "/healthz",
    "/favicon.ico",
}

# 敏感字段（不记录到日志）
SENSITIVE_FIELDS = {"password", "secret", "token", "authorization", "hashkey", "hashiv", "checkmacvalue"}

# 最大记录的响应体大小（字符）
MAX_BODY_LOG_SIZE = 2000


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件"""

    def __init__(self, app, logger=None):
        super().__init__(app)
        self.logger = logger or get_logger("middleware.logging")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
        request.state.trace_id = trace_id

        method = request.method
        path = request.url.path
        skip_detail = path in SKIP_DETAIL_PATHS
        start_time = time.perf_counter()

        with LogContext(trace_id=trace_id):
            log_data = {
                "direction": "inbound",
                "method": method,
                "path": path,
                "client_ip": self._get_client_ip(request),
            }
            if request.query_params and not skip_detail:
                log_data["query_params"] = self._mask_sensitive(dict(request.query_params))

            self.logger.info("API request", **log_data)

            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "API request failed",
                    direction="inbound",
                    method=method,
                    path=path,
                    latency_ms=int((time.perf_counter() - start_time) * 1000),
                    result="error",
                    err=str(e),
                    exc_info=True
                )
                raise

            resp_log_data = {
                "direction": "inbound",
                "method": method,
                "path": path,
                "status_code": response.status_code,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
                "result": "success" if response.status_code < 400 else "error",
            }

            # 仅错误响应记录响应体
            if response.status_code >= 400 and not skip_detail:
                body = await self._read_response_body(response)
                if body:
                    resp_log_data["response_body"] = body[:MAX_BODY_LOG_SIZE]
                self.logger.warning("API response error", **resp_log_data)
            else:
                self.logger.info("API response", **resp_log_data)

            response.headers["X-Trace-Id"] = trace_id
            return response

    async def _read_response_body(self, response: Response) -> Optional[str]:
        """读取响应体后重建迭代器，保证响应仍可发送"""
        body = b""
        async for chunk in response.body_iterator:
            body += chunk if isinstance(chunk, bytes) else chunk.encode("utf-8")

        async def body_iterator():
            yield body

        response.body_iterator = body_iterator()
        return body.decode("utf-8", errors="replace") if body else None

    def _mask_sensitive(self, data: dict) -> dict:
        return {
            key: "***MASKED***" if key.lower() in SENSITIVE_FIELDS else value
            for key, value in data.items()
        }

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"
