"""
ShopHub FastAPI 主应用
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from sh_core import __version__
from sh_core.config import get_settings
from sh_core.utils.logger import setup_logging, get_logger
from sh_core.utils.errors import ShopHubException
from sh_core.database import get_db_manager
from sh_core.middleware.auth import AuthMiddleware
from sh_core.middleware.logging import LoggingMiddleware
from sh_core.api import api_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("Starting ShopHub application", version=__version__)

    db_manager = get_db_manager()
    if not await db_manager.check_connection():
        logger.error("Database connection check failed")
        raise RuntimeError("Database connection failed")

    logger.info("ShopHub application started successfully")

    yield

    logger.info("Shutting down ShopHub application")
    await get_db_manager().close()
    logger.info("ShopHub application shutdown complete")


def create_app() -> FastAPI:
    """创建 FastAPI 应用"""
    settings = get_settings()

    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="ShopHub order, points, payment and logistics API",
        docs_url="/docs" if settings.api_debug else None,
        redoc_url="/redoc" if settings.api_debug else None,
        openapi_url="/openapi.json" if settings.api_debug else None,
        lifespan=lifespan,
    )

    # 后加的中间件在外层，请求依次经过 日志 -> 认证 -> CORS
    allowed_origins = ["*"] if settings.api_debug else settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=not settings.api_debug,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuthMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.exception_handler(ShopHubException)
    async def shophub_exception_handler(request: Request, exc: ShopHubException):
        """处理 ShopHub 自定义异常"""
        return exc.to_response(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理 Pydantic 验证异常"""
        logger.warning("Request validation failed", path=request.url.path, errors=str(exc.errors()))
        return JSONResponse(
            status_code=422,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": "Validation Error",
                    "status": 422,
                    "detail": "Request validation failed",
                    "code": "VALIDATION_ERROR",
                    "validation_errors": jsonable_encoder(exc.errors())
                }
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理 FastAPI HTTP 异常"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": exc.detail,
                    "status": exc.status_code,
                    "detail": exc.detail,
                    "code": f"HTTP_{exc.status_code}"
                }
            }
        )

    @app.exception_handler(500)
    async def internal_server_error_handler(request: Request, exc: Exception):
        """处理未捕获的服务器错误"""
        logger.error("Unhandled server error", path=request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": "Internal Server Error",
                    "status": 500,
                    "detail": "An internal server error occurred",
                    "code": "INTERNAL_SERVER_ERROR"
                }
            }
        )

    @app.get("/healthz")
    async def health_check():
        """健康检查端点"""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "sh_core.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        log_level=settings.log_level.lower(),
        access_log=False,  # 使用自定义日志中间件
    )
