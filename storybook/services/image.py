from __future__ import annotations

import logging
from typing import Any

import httpx

from storybook.agents.utils import sanitize_prompt
from storybook.config import Settings
from storybook.exceptions import SynthesisError
from storybook.services.providers import ImageParams, check_provider_response

logger = logging.getLogger(__name__)


class OpenAIImageService:
    """主图像生成服务（DALL-E 风格 /images/generations 接口）"""

    name = "dalle"

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    def _build_url(self) -> str:
        base = self.settings.openai_base_url.rstrip("/")
        endpoint = self.settings.image_endpoint
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{base}{endpoint}"

    def build_payload(self, prompt: str, params: ImageParams) -> dict[str, Any]:
        return {
            "model": self.settings.image_model,
            "prompt": sanitize_prompt(prompt, max_chars=self.settings.image_prompt_max_chars),
            "size": params.size,
            "quality": params.quality,
            "n": 1,
            "response_format": "url",
        }

    async def synthesize_image(self, prompt: str, params: ImageParams) -> str:
        payload = self.build_payload(prompt, params)
        logger.info("Requesting %s image (%d prompt chars)", self.settings.image_model, len(payload["prompt"]))

        res = await self.client.post(self._build_url(), headers=self.settings.openai_headers(), json=payload)
        check_provider_response(res, provider=self.name)
        data = res.json()

        items = data.get("data") or []
        if isinstance(items, list) and items:
            first = items[0] if isinstance(items[0], dict) else {}
            result_url = first.get("url")
            if isinstance(result_url, str) and result_url:
                return result_url

        raise SynthesisError(f"Image API response missing URL: {str(data)[:200]}", provider=self.name)
