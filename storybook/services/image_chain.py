from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from storybook.config import Settings
from storybook.services.providers import ImageParams, ImageSynthesizer
from storybook.services.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class GenerationMethod(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


@dataclass(slots=True)
class SynthesisOutcome:
    url: str
    method: GenerationMethod
    provider: str
    primary_error: str | None = None


class FallbackImageChain:
    """主服务优先，失败（异常或无 URL）时降级到 URL 模板服务"""

    def __init__(
        self,
        settings: Settings,
        *,
        primary: ImageSynthesizer | None,
        fallback: ImageSynthesizer,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.primary = primary
        self.fallback = fallback
        self.sleep = sleep

    def default_params(self) -> ImageParams:
        return ImageParams(
            width=self.settings.image_width,
            height=self.settings.image_height,
            quality=self.settings.image_quality,
        )

    async def _try_primary(self, primary: ImageSynthesizer, prompt: str, params: ImageParams) -> str:
        async def _call() -> str:
            return await primary.synthesize_image(prompt, params)

        return await retry_with_backoff(
            _call,
            max_retries=self.settings.max_retries,
            initial_delay_s=self.settings.retry_initial_delay_s,
            buffer_s=self.settings.retry_buffer_s,
            sleep=self.sleep,
            label=f"{primary.name} image generation",
        )

    async def synthesize(self, prompt: str, params: ImageParams | None = None) -> SynthesisOutcome:
        params = params or self.default_params()
        primary_error: str | None = None

        if self.primary is not None:
            try:
                url = await self._try_primary(self.primary, prompt, params)
                if url:
                    logger.info("Image generated with %s", self.primary.name)
                    return SynthesisOutcome(url=url, method=GenerationMethod.PRIMARY, provider=self.primary.name)
                primary_error = f"{self.primary.name} did not return image URL"
            except Exception as exc:
                primary_error = str(exc)
            logger.warning(
                "%s generation failed, falling back to %s: %s",
                self.primary.name,
                self.fallback.name,
                primary_error,
            )

        url = await self.fallback.synthesize_image(prompt, params)
        return SynthesisOutcome(
            url=url,
            method=GenerationMethod.FALLBACK,
            provider=self.fallback.name,
            primary_error=primary_error,
        )
