"""
外部 API 计时工具

记录金流/物流接口的调用耗时，输出到 logs/external_api_timing.log
"""
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

_external_api_logger: Optional[logging.Logger] = None


def get_external_api_logger() -> logging.Logger:
    """获取外部 API 计时日志器（延迟初始化）"""
    global _external_api_logger
    if _external_api_logger is None:
        _external_api_logger = logging.getLogger("external_api_timing")
        _external_api_logger.setLevel(logging.INFO)

        if not _external_api_logger.handlers:
            log_dir = Path(__file__).resolve().parents[2] / "logs"
            log_dir.mkdir(exist_ok=True)

            handler = logging.FileHandler(log_dir / "external_api_timing.log", encoding="utf-8")
            handler.setFormatter(logging.Formatter(
                "%(asctime)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
            _external_api_logger.addHandler(handler)
            _external_api_logger.propagate = False
    return _external_api_logger


class ExternalAPITimer:
    """
    外部 API 计时器

    用法:
        async with timed_external_api("ECPay", "POST", "/Express/Create", order_no=order_no):
            response = await client.post(url, data=params)
    """

    def __init__(self, service: str, method: str, endpoint: str, **extra_kwargs):
        self.service = service
        self.method = method
        self.endpoint = endpoint
        self.extra_kwargs = extra_kwargs
        self._start_time: Optional[float] = None
        self._elapsed_ms: Optional[float] = None

    def start(self) -> None:
        self._start_time = time.perf_counter()

    def stop(self, error: Optional[str] = None) -> float:
        """停止计时并写日志，返回耗时（毫秒）"""
        if self._start_time is None:
            raise RuntimeError("Timer not started")

        self._elapsed_ms = (time.perf_counter() - self._start_time) * 1000

        parts = [f"{self.service} | {self.method} {self.endpoint} | {self._elapsed_ms:.1f}ms"]
        parts.extend(f"{key}={value}" for key, value in self.extra_kwargs.items())
        if error:
            parts.append(f"ERROR={error}")

        get_external_api_logger().info(" | ".join(parts))
        return self._elapsed_ms

    @property
    def elapsed_ms(self) -> Optional[float]:
        return self._elapsed_ms


@asynccontextmanager
async def timed_external_api(
    service: str,
    method: str,
    endpoint: str,
    **extra_kwargs
) -> AsyncIterator[ExternalAPITimer]:
    """异步上下文管理器，异常时记录异常类型后继续抛出"""
    timer = ExternalAPITimer(service, method, endpoint, **extra_kwargs)
    timer.start()
    try:
        yield timer
    except Exception as e:
        timer.stop(error=type(e).__name__)
        raise
    else:
        timer.stop()
