from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from storybook.config import Settings
from storybook.exceptions import ProviderError, QuotaExceededError
from storybook.services.llm import ClaudeVisionService
from storybook.services.providers import ChatTurn, ImagePayload, create_vision_provider


class FakeAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None, headers: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = SimpleNamespace(headers=headers or {})


class DummyMessages:
    def __init__(self, content=None, error: Exception | None = None):
        self.content = content if content is not None else [SimpleNamespace(type="text", text="a curious boy")]
        self.error = error
        self.kwargs: dict | None = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.content)


def _service(monkeypatch, messages: DummyMessages, **settings_kwargs) -> ClaudeVisionService:
    settings = Settings(database_url="sqlite+aiosqlite:///:memory:", anthropic_api_key="key", **settings_kwargs)
    service = ClaudeVisionService(settings)
    monkeypatch.setattr(service, "_get_client", lambda: SimpleNamespace(messages=messages))
    monkeypatch.setattr(service, "_import_anthropic", lambda: SimpleNamespace(APIError=FakeAPIError))
    return service


def test_get_client_missing_credentials(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    settings = Settings(database_url="sqlite+aiosqlite:///:memory:", anthropic_api_key=None)
    service = ClaudeVisionService(settings)

    class MockAsyncAnthropic:
        def __init__(self, **kwargs):
            pass

    monkeypatch.setattr(service, "_import_anthropic", lambda: SimpleNamespace(AsyncAnthropic=MockAsyncAnthropic))

    with pytest.raises(ValueError, match="Anthropic credentials missing"):
        service._get_client()


def test_get_client_disables_sdk_retries(monkeypatch):
    captured: dict = {}

    class MockAsyncAnthropic:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    settings = Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        anthropic_api_key="key",
        anthropic_base_url="https://relay.test",
    )
    service = ClaudeVisionService(settings)
    monkeypatch.setattr(service, "_import_anthropic", lambda: SimpleNamespace(AsyncAnthropic=MockAsyncAnthropic))

    service._get_client()
    assert captured["max_retries"] == 0
    assert captured["base_url"] == "https://relay.test"


@pytest.mark.asyncio
async def test_describe_sends_base64_image_blocks(monkeypatch):
    messages = DummyMessages()
    service = _service(monkeypatch, messages)
    image = ImagePayload(data=b"abc", mime_type="image/png")

    response = await service.describe([image], "describe this child")

    assert response.text == "a curious boy"
    content = messages.kwargs["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "describe this child"}
    assert content[1]["source"] == {"type": "base64", "media_type": "image/png", "data": image.b64()}
    assert messages.kwargs["max_tokens"] == 1000


@pytest.mark.asyncio
async def test_chat_maps_history_roles(monkeypatch):
    messages = DummyMessages()
    service = _service(monkeypatch, messages)

    await service.chat("more", history=[ChatTurn("model", "earlier")])

    assert [m["role"] for m in messages.kwargs["messages"]] == ["assistant", "user"]


@pytest.mark.asyncio
async def test_empty_response_raises(monkeypatch):
    service = _service(monkeypatch, DummyMessages(content=[SimpleNamespace(type="tool_use")]))
    with pytest.raises(ProviderError, match="missing text"):
        await service.generate_text("hi")


@pytest.mark.asyncio
async def test_api_errors_become_provider_errors(monkeypatch):
    error = FakeAPIError("rate_limit_error", status_code=429, headers={"retry-after": "9"})
    service = _service(monkeypatch, DummyMessages(error=error))

    with pytest.raises(ProviderError) as exc_info:
        await service.generate_text("hi")

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == 9.0


@pytest.mark.asyncio
async def test_quota_api_error(monkeypatch):
    service = _service(monkeypatch, DummyMessages(error=FakeAPIError("monthly quota reached", status_code=400)))
    with pytest.raises(QuotaExceededError):
        await service.generate_text("hi")


@pytest.mark.asyncio
async def test_get_client_reuses_shared_http_client(monkeypatch):
    captured: dict = {}

    class MockAsyncAnthropic:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    settings = Settings(database_url="sqlite+aiosqlite:///:memory:", anthropic_api_key="key")
    async with httpx.AsyncClient() as client:
        service = ClaudeVisionService(settings, client)
        monkeypatch.setattr(service, "_import_anthropic", lambda: SimpleNamespace(AsyncAnthropic=MockAsyncAnthropic))

        first = service._get_client()
        assert service._get_client() is first
        assert captured["http_client"] is client


def test_factory_passes_shared_client_to_claude():
    settings = Settings(database_url="sqlite+aiosqlite:///:memory:", vision_provider="claude")
    client = httpx.AsyncClient()
    service = create_vision_provider(settings, client)
    assert isinstance(service, ClaudeVisionService)
    assert service.http_client is client
