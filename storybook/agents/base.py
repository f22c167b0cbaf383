from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from storybook.config import Settings
from storybook.services.image_chain import FallbackImageChain, GenerationMethod
from storybook.services.image_fetcher import ImageFetcher
from storybook.services.providers import VisionProvider
from storybook.services.retry import retry_with_backoff

T = TypeVar("T")

QUOTA_EXCEEDED_MESSAGE = "API quota exceeded. Please try again later or upgrade your plan."


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    provider_model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """单张照片的生成请求（创建后不可变）"""

    subject_image_url: str
    background_image_url: str | None = None
    options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass(slots=True)
class GenerationResult:
    success: bool
    image_url: str
    generated_image_url: str | None = None
    error: str | None = None
    generation_method: GenerationMethod | None = None
    background_used: bool = False
    prompt: str | None = None

    def __post_init__(self) -> None:
        if self.success != (self.generated_image_url is not None):
            raise ValueError("generated_image_url must be set iff success is True")

    @classmethod
    def failed(cls, image_url: str, error: str, *, background_used: bool = False) -> "GenerationResult":
        return cls(success=False, image_url=image_url, error=error, background_used=background_used)


@dataclass(slots=True)
class BatchOutcome:
    results: list[GenerationResult]
    background_used: bool

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)


@dataclass(slots=True)
class ImageAnalysis:
    """存储图片的纯描述结果（不生成插画）"""

    name: str
    path: str
    url: str
    success: bool
    folder: str | None = None
    size: int = 0
    created_at: str | None = None
    analysis: str | None = None
    model: str | None = None
    error: str | None = None


@dataclass(slots=True)
class AnalysisBatch:
    images: list[ImageAnalysis]

    @property
    def total(self) -> int:
        return len(self.images)

    @property
    def analyzed(self) -> int:
        return sum(1 for i in self.images if i.success)

    @property
    def failed(self) -> int:
        return self.total - self.analyzed


@dataclass(slots=True)
class ReplaceChildResult:
    generated_image_url: str
    prompt: str
    generation_method: GenerationMethod
    success: bool = True


@dataclass
class GenerationContext:
    settings: Settings
    vision: VisionProvider
    images: FallbackImageChain
    fetcher: ImageFetcher
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep


class BaseAgent:
    name: str = "base"

    def __init__(self, ctx: GenerationContext):
        self.ctx = ctx

    async def with_retry(self, operation: Callable[[], Awaitable[T]], *, label: str) -> T:
        settings = self.ctx.settings
        return await retry_with_backoff(
            operation,
            max_retries=settings.max_retries,
            initial_delay_s=settings.retry_initial_delay_s,
            buffer_s=settings.retry_buffer_s,
            sleep=self.ctx.sleep,
            label=label,
        )
