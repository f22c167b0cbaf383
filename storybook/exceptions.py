from __future__ import annotations

from typing import Any


class AppException(Exception):
    """可直接映射为 HTTP 响应的应用异常"""

    status_code: int = 500
    code: str = "APP_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class ValidationError(AppException):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppException):
    status_code = 404
    code = "NOT_FOUND"


class FetchError(Exception):
    """上游图片 URL 不可达或返回非 2xx"""

    def __init__(self, message: str, *, url: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ProviderError(Exception):
    """AI 服务返回非 2xx，或响应中没有可用内容"""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after


class QuotaExceededError(ProviderError):
    pass


class SynthesisError(ProviderError):
    """主图像生成失败（触发备用服务，不会直接导致条目失败）"""
