"""对象存储中的上传图片（Supabase Storage REST 接口）"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from storybook.config import Settings
from storybook.services.providers import check_provider_response

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")


@dataclass(frozen=True, slots=True)
class StoredImage:
    name: str
    path: str
    url: str
    folder: str | None = None
    size: int = 0
    created_at: str | None = None


@runtime_checkable
class ImageStorage(Protocol):
    """列出存储中的图片并给出公开 URL（只读）"""

    async def list_images(self, folder: str | None, limit: int) -> list[StoredImage]:
        ...

    def public_url(self, path: str) -> str:
        ...


def is_image_name(name: str) -> bool:
    return "." in name and name.rsplit(".", 1)[1].lower() in IMAGE_EXTENSIONS


class SupabaseStorage:
    name = "supabase"

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        if not settings.supabase_url:
            raise ValueError("Supabase storage not configured: set `supabase_url`.")
        self.settings = settings
        self.client = client
        self.base_url = settings.supabase_url.rstrip("/")
        self.bucket = settings.storage_bucket

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path.lstrip('/'))}"

    async def _list(self, prefix: str, limit: int) -> list[dict[str, Any]]:
        res = await self.client.post(
            f"{self.base_url}/storage/v1/object/list/{self.bucket}",
            headers=self.settings.supabase_headers(),
            json={
                "prefix": prefix,
                "limit": limit,
                "offset": 0,
                "sortBy": {"column": "created_at", "order": "desc"},
            },
        )
        check_provider_response(res, provider=self.name)
        data = res.json()
        return data if isinstance(data, list) else []

    def _to_image(self, entry: dict[str, Any], folder: str | None) -> StoredImage:
        name = entry["name"]
        path = f"{folder}/{name}" if folder else name
        return StoredImage(
            name=name,
            path=path,
            url=self.public_url(path),
            folder=folder,
            size=int((entry.get("metadata") or {}).get("size") or 0),
            created_at=entry.get("created_at"),
        )

    async def list_images(self, folder: str | None, limit: int) -> list[StoredImage]:
        """列出 folder 下的图片；folder 为空时遍历 bucket 根目录及其一级子目录"""
        if folder:
            entries = await self._list(folder, limit)
            images = [self._to_image(e, folder) for e in entries if is_image_name(e.get("name", ""))]
            return images[:limit]

        images: list[StoredImage] = []
        # 目录条目没有 id
        for entry in await self._list("", 1000):
            name = entry.get("name", "")
            if entry.get("id") is None:
                sub_entries = await self._list(name, limit)
                images.extend(self._to_image(e, name) for e in sub_entries if is_image_name(e.get("name", "")))
            elif is_image_name(name):
                images.append(self._to_image(entry, None))
            if len(images) >= limit:
                break

        logger.info("Listed %d image(s) from bucket %s", len(images), self.bucket)
        return images[:limit]
