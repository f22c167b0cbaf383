from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from storybook.config import Settings
from storybook.exceptions import ProviderError
from storybook.services.providers import (
    ChatTurn,
    ImagePayload,
    ProviderResponse,
    check_provider_response,
)

logger = logging.getLogger(__name__)


class OpenAIVisionService:
    """OpenAI 兼容 Chat Completions（多模态）服务"""

    name = "openai"

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    def _build_url(self) -> str:
        return f"{self.settings.openai_base_url.rstrip('/')}/chat/completions"

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> ProviderResponse:
        model_name = model or self.settings.vision_model
        payload: dict[str, Any] = {"model": model_name, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        res = await self.client.post(self._build_url(), headers=self.settings.openai_headers(), json=payload)
        check_provider_response(res, provider=self.name)
        data = res.json()
        return ProviderResponse(text=self._extract_text(data), model=model_name, raw=data)

    def _extract_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("message") or {}).get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
        raise ProviderError(f"OpenAI response missing text: {str(data)[:200]}", provider=self.name)

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
            content.append({"type": "image_url", "image_url": {"url": image.data_url()}})

        logger.info("Sending %d image(s) to OpenAI for analysis", len(images))
        return await self._complete(
            [{"role": "user", "content": content}],
            model=model,
            temperature=temperature,
            max_tokens=max_tokens or self.settings.max_description_tokens,
        )

    async def generate_text(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        return await self._complete(
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
        messages = [{"role": turn.role, "content": turn.content} for turn in history]
        messages.append({"role": "user", "content": message})
        return await self._complete(messages, model=model, temperature=temperature, max_tokens=max_tokens)
