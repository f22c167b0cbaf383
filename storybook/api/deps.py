from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from storybook.agents.base import GenerationContext
from storybook.agents.orchestrator import CharacterGenerationOrchestrator
from storybook.config import Settings, get_settings
from storybook.db.session import get_session
from storybook.services.image import OpenAIImageService
from storybook.services.image_chain import FallbackImageChain
from storybook.services.image_fetcher import ImageFetcher
from storybook.services.image_repository import ImageRepository
from storybook.services.pollinations import PollinationsImageService
from storybook.services.providers import VisionProvider, create_vision_provider
from storybook.services.storage import ImageStorage, SupabaseStorage


async def get_app_settings() -> Settings:
    return get_settings()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


async def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


async def get_vision_provider(request: Request) -> VisionProvider:
    """lifespan 中创建的视觉服务（整个进程共享一个实例）"""
    return request.app.state.vision_provider


SettingsDep = Depends(get_app_settings)
SessionDep = Depends(get_db_session)
HttpClientDep = Depends(get_http_client)
VisionProviderDep = Depends(get_vision_provider)


def build_generation_context(
    settings: Settings,
    client: httpx.AsyncClient,
    *,
    vision: VisionProvider | None = None,
) -> GenerationContext:
    primary = OpenAIImageService(settings, client) if settings.has_primary_image_provider() else None
    return GenerationContext(
        settings=settings,
        vision=vision or create_vision_provider(settings, client),
        images=FallbackImageChain(settings, primary=primary, fallback=PollinationsImageService(settings)),
        fetcher=ImageFetcher(client),
    )


async def get_generation_context(
    settings: Settings = SettingsDep,
    client: httpx.AsyncClient = HttpClientDep,
    vision: VisionProvider = VisionProviderDep,
) -> GenerationContext:
    return build_generation_context(settings, client, vision=vision)


async def get_image_storage(
    settings: Settings = SettingsDep,
    client: httpx.AsyncClient = HttpClientDep,
) -> ImageStorage | None:
    if not settings.has_storage():
        return None
    return SupabaseStorage(settings, client)


async def get_orchestrator(
    ctx: GenerationContext = Depends(get_generation_context),
    session: AsyncSession = SessionDep,
    storage: ImageStorage | None = Depends(get_image_storage),
) -> CharacterGenerationOrchestrator:
    return CharacterGenerationOrchestrator(ctx, images=ImageRepository(session), storage=storage)


GenerationContextDep = Depends(get_generation_context)
OrchestratorDep = Depends(get_orchestrator)
