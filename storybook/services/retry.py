"""限流感知的重试工具

只对容量类错误（429 / 配额 / 限流）重试，其他错误立即抛出。
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any, TypeVar

from storybook.exceptions import FetchError, QuotaExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")
_RETRY_HINT_RE = re.compile(r"retry.*?(\d+(?:\.\d+)?)\s*s", re.IGNORECASE | re.DOTALL)


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    QUOTA = "quota"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.FATAL


def classify_error(status_code: int | None, message: str | None) -> ErrorKind:
    text = (message or "").lower()
    if "quota" in text:
        return ErrorKind.QUOTA
    if status_code == 429 or any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.FATAL


def _status_code_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_exception(exc: BaseException) -> ErrorKind:
    if isinstance(exc, QuotaExceededError):
        return ErrorKind.QUOTA
    # 图片下载失败（含 CDN 的 429）不是模型配额问题
    if isinstance(exc, FetchError):
        return ErrorKind.FATAL
    return classify_error(_status_code_of(exc), str(exc))


def _header_retry_after(exc: BaseException) -> str | None:
    headers: Any = getattr(exc, "headers", None)
    if headers is None:
        headers = getattr(getattr(exc, "response", None), "headers", None)
    if not isinstance(headers, Mapping) and not hasattr(headers, "get"):
        return None
    value = headers.get("retry-after")
    return str(value) if value is not None else None


def parse_retry_hint(exc: BaseException) -> float | None:
    """读取服务端给出的等待秒数：先看 retry_after 属性 / retry-after 头，再看错误信息"""
    hint = getattr(exc, "retry_after", None)
    if isinstance(hint, (int, float)) and hint >= 0:
        return float(hint)

    header = _header_retry_after(exc)
    if header:
        try:
            return max(float(header), 0.0)
        except ValueError:
            pass

    match = _RETRY_HINT_RE.search(str(exc))
    if match:
        return float(match.group(1))
    return None


def backoff_delay(
    exc: BaseException,
    attempt: int,
    *,
    initial_delay_s: float,
    buffer_s: float,
) -> float:
    hint = parse_retry_hint(exc)
    if hint is not None:
        return hint + buffer_s
    return initial_delay_s * (2**attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay_s: float = 1.0,
    buffer_s: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "provider call",
) -> T:
    """最多尝试 max_retries 次；仅限流类错误会等待后重试"""
    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            kind = classify_exception(exc)
            if not kind.retryable or attempt >= attempts - 1:
                raise
            delay_s = backoff_delay(
                exc, attempt, initial_delay_s=initial_delay_s, buffer_s=buffer_s
            )
            logger.warning(
                "%s hit %s, waiting %.1fs before retry %d/%d: %s",
                label,
                kind.value,
                delay_s,
                attempt + 1,
                attempts,
                exc,
            )
            await sleep(delay_s)

    raise RuntimeError("unreachable")  # pragma: no cover
