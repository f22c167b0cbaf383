from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storybook.agents.orchestrator import describe_failure
from storybook.api.v1.router import api_router
from storybook.config import Settings, get_settings
from storybook.db.session import init_db
from storybook.exceptions import AppException, FetchError, ProviderError
from storybook.schemas.generation import ErrorResponse
from storybook.services.providers import create_vision_provider
from storybook.services.retry import classify_exception

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _error(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message, code=code).model_dump())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    await init_db()
    # 所有出站请求共享一个连接池
    app.state.http_client = httpx.AsyncClient(timeout=settings.request_timeout_s)
    app.state.vision_provider = create_vision_provider(settings, app.state.http_client)
    try:
        yield
    finally:
        await app.state.http_client.aclose()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    # 全局异常处理器
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        """处理自定义应用异常"""
        logger.error(
            f"AppException: {exc.code} - {exc.message}",
            extra={
                "code": exc.code,
                "status_code": exc.status_code,
                "details": exc.details,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return _error(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
        fields = [f for f in fields if f]
        message = "Missing or invalid fields: " + ", ".join(fields) if fields else "Request body is required"
        logger.info(f"Rejected request to {request.url.path}: {message}")
        return _error(400, message, "VALIDATION_ERROR")

    @app.exception_handler(ProviderError)
    async def provider_exception_handler(request: Request, exc: ProviderError):
        # 单张生成失败：配额类错误返回 429，其余按上游失败处理
        logger.error(f"Provider {exc.provider} failed on {request.url.path}: {exc}")
        if classify_exception(exc).retryable:
            return _error(429, describe_failure(exc), "QUOTA_EXCEEDED")
        return _error(500, describe_failure(exc), "PROVIDER_ERROR")

    @app.exception_handler(FetchError)
    async def fetch_exception_handler(request: Request, exc: FetchError):
        logger.error(f"Image fetch failed on {request.url.path}: {exc}")
        return _error(500, str(exc), "FETCH_ERROR")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """处理未捕获的异常"""
        logger.exception(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )
        # 开发环境返回详细错误，生产环境只返回友好消息
        message = str(exc) if settings.environment == "dev" else "Internal server error"
        return _error(500, message, "INTERNAL_ERROR")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("storybook.main:app", host="0.0.0.0", port=8000)
