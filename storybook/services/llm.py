from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from storybook.config import Settings
from storybook.exceptions import ProviderError, QuotaExceededError
from storybook.services.providers import ChatTurn, ImagePayload, ProviderResponse


class ClaudeVisionService:
    """Claude (Anthropic Messages API) 视觉服务包装器。

    - 直接使用 `anthropic` SDK
    - 图片以 base64 image block 内联
    - SDK 自带重试关闭，由外层 retry_with_backoff 统一处理
    - 传入 client 时复用共享的 httpx 连接池
    """

    name = "claude"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.http_client = client
        self._client: Any | None = None
        self._anthropic: Any | None = None

    def _import_anthropic(self) -> Any:
        if self._anthropic is not None:
            return self._anthropic
        try:
            import anthropic  # type: ignore
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "Missing dependency `anthropic`. Install: `pip install anthropic`."
            ) from exc
        self._anthropic = anthropic
        return anthropic

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        anthropic = self._import_anthropic()

        if not self.settings.anthropic_api_key:
            raise ValueError("Anthropic credentials missing: set `anthropic_api_key`.")

        kwargs: dict[str, Any] = {
            "api_key": self.settings.anthropic_api_key,
            "timeout": self.settings.request_timeout_s,
            # 我们在外层自己做重试，避免双重重试导致等待过长
            "max_retries": 0,
        }
        if self.settings.anthropic_base_url:
            kwargs["base_url"] = self.settings.anthropic_base_url
        if self.http_client is not None:
            # 复用进程级连接池
            kwargs["http_client"] = self.http_client

        self._client = anthropic.AsyncAnthropic(**kwargs)
        return self._client

    def _parse_message(self, message: Any, model: str) -> ProviderResponse:
        text_parts: list[str] = []
        for block in getattr(message, "content", []) or []:
            if getattr(block, "type", None) == "text":
                text_parts.append(getattr(block, "text", ""))

        text = "".join(text_parts).strip()
        if not text:
            raise ProviderError("Claude response missing text", provider=self.name)
        return ProviderResponse(text=text, model=model, raw=message)

    def _to_provider_error(self, exc: Exception) -> ProviderError:
        status_code = getattr(exc, "status_code", None)
        retry_after: float | None = None
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
        if headers is not None:
            try:
                retry_after = float(headers.get("retry-after"))
            except (TypeError, ValueError):
                retry_after = None

        message = f"claude request failed: {exc}"
        error_cls = QuotaExceededError if "quota" in message.lower() else ProviderError
        return error_cls(
            message,
            provider=self.name,
            status_code=status_code if isinstance(status_code, int) else None,
            retry_after=retry_after,
        )

    async def _create(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> ProviderResponse:
        client = self._get_client()
        anthropic = self._import_anthropic()
        model_name = model or self.settings.anthropic_model

        payload: dict[str, Any] = {
            "model": model_name,
            "max_tokens": max_tokens or self.settings.max_description_tokens,
            "messages": messages,
        }
        if temperature is not None:
            payload["temperature"] = temperature

        api_error = getattr(anthropic, "APIError", None)
        try:
            message = await client.messages.create(**payload)
        except Exception as exc:
            if api_error is not None and isinstance(exc, api_error):
                raise self._to_provider_error(exc) from exc
            raise
        return self._parse_message(message, model_name)

    async def describe(
        self,
        images: Sequence[ImagePayload],
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": image.mime_type, "data": image.b64()},
                }
            )
        return await self._create(
            [{"role": "user", "content": content}],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def generate_text(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        return await self._create(
            [{"role": "user", "content": prompt}],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def chat(
        self,
        message: str,
        *,
        history: Sequence[ChatTurn] = (),
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        messages = [
            {"role": "assistant" if turn.role in ("assistant", "model") else "user", "content": turn.content}
            for turn in history
        ]
        messages.append({"role": "user", "content": message})
        return await self._create(messages, model=model, temperature=temperature, max_tokens=max_tokens)
