from __future__ import annotations

import httpx
import pytest

from storybook.exceptions import FetchError, ProviderError, QuotaExceededError
from storybook.services.retry import (
    ErrorKind,
    backoff_delay,
    classify_error,
    classify_exception,
    parse_retry_hint,
    retry_with_backoff,
)
from tests.agent_fixtures import SleepRecorder, rate_limited


class FlakyOperation:
    def __init__(self, failures: list[Exception], result: str = "ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.mark.parametrize(
    ("status_code", "message", "expected"),
    [
        (429, "", ErrorKind.RATE_LIMITED),
        (None, "You exceeded your current quota, please check your plan", ErrorKind.QUOTA),
        (500, "Too Many Requests", ErrorKind.RATE_LIMITED),
        (None, "upstream said: 429", ErrorKind.RATE_LIMITED),
        (400, "invalid image format", ErrorKind.FATAL),
        (None, None, ErrorKind.FATAL),
    ],
)
def test_classify_error(status_code, message, expected):
    assert classify_error(status_code, message) is expected


def test_classify_exception_reads_status_and_type():
    assert classify_exception(QuotaExceededError("billing", provider="x")) is ErrorKind.QUOTA
    assert classify_exception(ProviderError("slow down", provider="x", status_code=429)) is ErrorKind.RATE_LIMITED
    assert classify_exception(ValueError("bad input")) is ErrorKind.FATAL

    request = httpx.Request("POST", "https://api.test/v1")
    response = httpx.Response(429, request=request)
    exc = httpx.HTTPStatusError("error", request=request, response=response)
    assert classify_exception(exc) is ErrorKind.RATE_LIMITED


def test_classify_exception_treats_image_fetch_429_as_fatal():
    exc = FetchError("Failed to fetch image: 429 Too Many Requests", url="https://cdn.test/a.png", status_code=429)
    assert classify_exception(exc) is ErrorKind.FATAL


def test_parse_retry_hint_sources():
    assert parse_retry_hint(ProviderError("x", provider="p", retry_after=4.0)) == 4.0
    assert parse_retry_hint(ProviderError("Please retry in 7s.", provider="p")) == 7.0
    assert parse_retry_hint(ProviderError("Retry after 12.5 s", provider="p")) == 12.5
    assert parse_retry_hint(ProviderError("rate limit reached", provider="p")) is None

    request = httpx.Request("POST", "https://api.test/v1")
    response = httpx.Response(429, request=request, headers={"retry-after": "3"})
    assert parse_retry_hint(httpx.HTTPStatusError("error", request=request, response=response)) == 3.0


def test_backoff_delay_exponential_without_hint():
    exc = rate_limited()
    delays = [backoff_delay(exc, attempt, initial_delay_s=1.0, buffer_s=1.0) for attempt in range(3)]
    assert delays == [1.0, 2.0, 4.0]


def test_backoff_delay_uses_hint_plus_buffer():
    exc = ProviderError("quota exceeded, retry in 20s", provider="p", status_code=429)
    assert backoff_delay(exc, 0, initial_delay_s=1.0, buffer_s=1.0) == 21.0


@pytest.mark.asyncio
async def test_retry_succeeds_after_rate_limits():
    sleeper = SleepRecorder()
    op = FlakyOperation([rate_limited(), rate_limited()])

    result = await retry_with_backoff(op, max_retries=3, initial_delay_s=1.0, sleep=sleeper)

    assert result == "ok"
    assert op.calls == 3
    assert sleeper.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_does_not_retry_fatal_errors():
    sleeper = SleepRecorder()
    op = FlakyOperation([ProviderError("invalid image", provider="p", status_code=400)])

    with pytest.raises(ProviderError, match="invalid image"):
        await retry_with_backoff(op, max_retries=3, sleep=sleeper)

    assert op.calls == 1
    assert sleeper.calls == []


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts():
    sleeper = SleepRecorder()
    op = FlakyOperation([rate_limited() for _ in range(5)])

    with pytest.raises(ProviderError):
        await retry_with_backoff(op, max_retries=3, initial_delay_s=0.5, sleep=sleeper)

    assert op.calls == 3
    assert sleeper.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retry_zero_max_retries_still_attempts_once():
    op = FlakyOperation([])
    assert await retry_with_backoff(op, max_retries=0, sleep=SleepRecorder()) == "ok"
    assert op.calls == 1
