from __future__ import annotations

import json

import httpx
import pytest

from storybook.config import Settings
from storybook.exceptions import ProviderError
from storybook.services.storage import ImageStorage, SupabaseStorage, is_image_name

SUPABASE_URL = "https://project.supabase.test"


def _settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite:///:memory:",
        "supabase_url": SUPABASE_URL,
        "supabase_key": "anon-key",
    }
    values.update(overrides)
    return Settings(**values)


def _entry(name: str, size: int = 10) -> dict:
    return {"id": f"id-{name}", "name": name, "created_at": "2024-05-01T10:00:00Z", "metadata": {"size": size}}


def _folder(name: str) -> dict:
    return {"id": None, "name": name, "metadata": None}


class StorageHandler:
    def __init__(self, listings: dict[str, list[dict]], status_code: int = 200):
        self.listings = listings
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="Bucket not found")
        prefix = json.loads(request.content)["prefix"]
        return httpx.Response(200, json=self.listings.get(prefix, []))


def test_is_image_name():
    assert is_image_name("kid.PNG")
    assert is_image_name("a.b.webp")
    assert not is_image_name("notes.txt")
    assert not is_image_name("folder")


def test_public_url():
    storage = SupabaseStorage(_settings(supabase_url=SUPABASE_URL + "/"), httpx.AsyncClient())
    assert isinstance(storage, ImageStorage)
    assert storage.public_url("/uploads/my kid.png") == (
        f"{SUPABASE_URL}/storage/v1/object/public/book-uploads/uploads/my%20kid.png"
    )


def test_requires_supabase_url():
    with pytest.raises(ValueError, match="supabase_url"):
        SupabaseStorage(_settings(supabase_url=None), httpx.AsyncClient())


@pytest.mark.asyncio
async def test_list_folder_filters_non_images():
    handler = StorageHandler({"uploads": [_entry("kid.png", 42), _entry("readme.txt"), _entry("tree.jpg")]})
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        images = await SupabaseStorage(_settings(), client).list_images("uploads", 10)

    assert [i.path for i in images] == ["uploads/kid.png", "uploads/tree.jpg"]
    assert images[0].size == 42
    assert images[0].folder == "uploads"
    assert images[0].created_at == "2024-05-01T10:00:00Z"

    request = handler.requests[0]
    assert request.url.path == "/storage/v1/object/list/book-uploads"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer anon-key"
    assert json.loads(request.content)["limit"] == 10


@pytest.mark.asyncio
async def test_list_root_walks_one_level_of_folders():
    handler = StorageHandler(
        {
            "": [_entry("cover.png"), _folder("uploads"), _folder("empty")],
            "uploads": [_entry("kid.png"), _entry("forest.png")],
        }
    )
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        images = await SupabaseStorage(_settings(), client).list_images(None, 2)

    assert [(i.folder, i.name) for i in images] == [(None, "cover.png"), ("uploads", "kid.png")]
    # 达到 limit 后不再列出后续目录
    assert [json.loads(r.content)["prefix"] for r in handler.requests] == ["", "uploads"]


@pytest.mark.asyncio
async def test_list_error_raises_provider_error():
    handler = StorageHandler({}, status_code=400)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ProviderError) as exc_info:
            await SupabaseStorage(_settings(), client).list_images("uploads", 10)
    assert exc_info.value.provider == "supabase"
