from __future__ import annotations

import os
from typing import AsyncGenerator

# 导入 storybook 之前指定数据库，避免模块级 engine 指向 PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from storybook.api.deps import (
    build_generation_context,
    get_app_settings,
    get_db_session,
    get_generation_context,
    get_image_storage,
)
from storybook.config import Settings
from storybook.main import create_app
from storybook.models import image  # noqa: F401
from tests.agent_fixtures import FakeStorage, FakeSynthesizer, FakeVision, SleepRecorder, image_handler


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        openai_api_key="test-key",
        retry_initial_delay_s=0.0,
        retry_buffer_s=0.0,
        batch_request_delay_s=2.0,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(test_settings: Settings) -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(test_settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """所有出站请求走 MockTransport（图片下载）"""
    async with httpx.AsyncClient(transport=httpx.MockTransport(image_handler)) as client:
        yield client


@pytest.fixture()
def vision() -> FakeVision:
    return FakeVision()


@pytest.fixture()
def primary() -> FakeSynthesizer:
    return FakeSynthesizer("dalle", url="https://images.test/primary.png")


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage(["kid.png", "uploads/forest.png", "missing/photo.png"])


@pytest.fixture()
def generation_context(test_settings, http_client, vision, primary, sleeper):
    ctx = build_generation_context(test_settings, http_client, vision=vision)
    ctx.images.primary = primary
    ctx.images.sleep = sleeper
    ctx.sleep = sleeper
    return ctx


@pytest_asyncio.fixture(scope="function")
async def app(test_session: AsyncSession, test_settings: Settings, generation_context, storage):
    app = create_app()

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        yield test_session

    async def override_get_settings() -> Settings:
        return test_settings

    async def override_get_context():
        return generation_context

    async def override_get_storage():
        return storage

    app.dependency_overrides[get_db_session] = override_get_session
    app.dependency_overrides[get_app_settings] = override_get_settings
    app.dependency_overrides[get_generation_context] = override_get_context
    app.dependency_overrides[get_image_storage] = override_get_storage
    return app


@pytest_asyncio.fixture(scope="function")
async def async_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
