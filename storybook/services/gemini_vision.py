"""Gemini 视觉服务（generativelanguage REST 接口）"""

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


class GeminiVisionService:
    name = "gemini"

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    def _build_url(self, model: str) -> str:
        base = self.settings.gemini_base_url.rstrip("/")
        return f"{base}/models/{model}:generateContent"

    def _generation_config(self, temperature: float | None, max_tokens: int | None) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if temperature is not None:
            config["temperature"] = temperature
        if max_tokens is not None:
            config["maxOutputTokens"] = max_tokens
        return config

    async def _generate(
        self,
        contents: list[dict[str, Any]],
        *,
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> ProviderResponse:
        model_name = model or self.settings.gemini_model
        payload: dict[str, Any] = {"contents": contents}
        config = self._generation_config(temperature, max_tokens)
        if config:
            payload["generationConfig"] = config

        res = await self.client.post(
            self._build_url(model_name),
            headers=self.settings.gemini_headers(),
            json=payload,
        )
        check_provider_response(res, provider=self.name)
        data = res.json()
        return ProviderResponse(text=self._extract_text(data), model=model_name, raw=data)

    def _extract_text(self, data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if candidates and isinstance(candidates[0], dict):
            parts = (candidates[0].get("content") or {}).get("parts") or []
            text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
            if text.strip():
                return text.strip()
        feedback = data.get("promptFeedback")
        raise ProviderError(
            f"Gemini response missing text (feedback={feedback})",
            provider=self.name,
        )

    async def describe(
        self,
        images: Sequence[ImagePayload],
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        for image in images:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.b64()}})

        logger.info("Sending %d image(s) to Gemini for analysis", len(images))
        return await self._generate(
            [{"role": "user", "parts": parts}],
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
        return await self._generate(
            [{"role": "user", "parts": [{"text": prompt}]}],
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
        # Gemini 用 "model" 表示助手轮次
        contents = [
            {"role": "model" if turn.role in ("assistant", "model") else "user", "parts": [{"text": turn.content}]}
            for turn in history
        ]
        contents.append({"role": "user", "parts": [{"text": message}]})
        return await self._generate(contents, model=model, temperature=temperature, max_tokens=max_tokens)
