"""AI 服务协议与工厂

视觉模型（描述图片）与图像生成（合成插画）两类能力，按配置选择实现。
"""

from __future__ import annotations

import base64
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from storybook.config import Settings
from storybook.exceptions import ProviderError, QuotaExceededError


@dataclass(frozen=True, slots=True)
class ImagePayload:
    data: bytes
    mime_type: str = "image/jpeg"
    source_url: str | None = None

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64()}"


@dataclass(frozen=True, slots=True)
class ImageParams:
    width: int = 1024
    height: int = 1024
    quality: str = "standard"

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(slots=True)
class ProviderResponse:
    text: str
    model: str
    raw: Any = None


@dataclass(slots=True)
class ChatTurn:
    role: str
    content: str


@runtime_checkable
class VisionProvider(Protocol):
    """视觉/对话模型协议"""

    name: str

    async def describe(
        self,
        images: Sequence[ImagePayload],
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        """发送指令与一到两张图片，返回模型的文本描述"""
        ...

    async def generate_text(
        self,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        ...

    async def chat(
        self,
        message: str,
        *,
        history: Sequence[ChatTurn] = (),
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ProviderResponse:
        ...


@runtime_checkable
class ImageSynthesizer(Protocol):
    """图像生成协议：输入清洗后的 prompt，返回图片 URL"""

    name: str

    async def synthesize_image(self, prompt: str, params: ImageParams) -> str:
        ...


@dataclass(slots=True)
class ProviderInfo:
    name: str
    default_model: str
    models: list[str] = field(default_factory=list)


def create_vision_provider(settings: Settings, client: httpx.AsyncClient) -> VisionProvider:
    """根据配置创建视觉模型服务实例

    Args:
        settings: 应用配置
        client: 进程级共享的 HTTP 客户端

    Returns:
        视觉模型服务实例（OpenAI / Gemini / Claude）
    """
    provider = settings.vision_provider.lower()

    if provider == "gemini":
        from storybook.services.gemini_vision import GeminiVisionService
        return GeminiVisionService(settings, client)
    if provider in ("claude", "anthropic"):
        from storybook.services.llm import ClaudeVisionService
        return ClaudeVisionService(settings, client)
    if provider != "openai":
        raise ValueError(f"Unknown vision provider: {settings.vision_provider}")

    from storybook.services.vision import OpenAIVisionService
    return OpenAIVisionService(settings, client)


def describe_provider(settings: Settings) -> ProviderInfo:
    provider = settings.vision_provider.lower()
    if provider == "gemini":
        return ProviderInfo(
            name="gemini",
            default_model=settings.gemini_model,
            models=["gemini-2.5-flash", "gemini-2.0-flash-exp", "gemini-1.5-flash", "gemini-1.5-pro"],
        )
    if provider in ("claude", "anthropic"):
        return ProviderInfo(name="claude", default_model=settings.anthropic_model, models=[settings.anthropic_model])
    return ProviderInfo(name="openai", default_model=settings.vision_model, models=list(settings.text_models))


def _error_message(res: httpx.Response) -> str:
    try:
        body = res.json()
    except ValueError:
        return res.text[:500]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return str(body)[:500]


def check_provider_response(res: httpx.Response, *, provider: str) -> None:
    """非 2xx 响应转换为 ProviderError（携带状态码与 retry-after）"""
    if res.is_success:
        return

    message = f"{provider} returned {res.status_code}: {_error_message(res)}"
    retry_after: float | None = None
    header = res.headers.get("retry-after")
    if header:
        try:
            retry_after = float(header)
        except ValueError:
            retry_after = None

    error_cls = QuotaExceededError if "quota" in message.lower() else ProviderError
    raise error_cls(message, provider=provider, status_code=res.status_code, retry_after=retry_after)
