"""图片下载服务 - 拉取上传照片与背景模板"""
from __future__ import annotations

import io
import logging

import httpx
from PIL import Image, UnidentifiedImageError

from storybook.exceptions import FetchError
from storybook.services.providers import ImagePayload

logger = logging.getLogger(__name__)


class ImageFetcher:
    """下载图片并确定 MIME 类型（响应头缺失或不可信时用 Pillow 识别）"""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    def _sniff_mime_type(self, data: bytes) -> str | None:
        try:
            with Image.open(io.BytesIO(data)) as img:
                return Image.MIME.get(img.format or "")
        except (UnidentifiedImageError, OSError):
            return None

    async def fetch(self, url: str) -> ImagePayload:
        """下载图片

        Args:
            url: 图片 URL

        Returns:
            图片字节与 MIME 类型

        Raises:
            FetchError: 网络错误、非 2xx 或内容不是图片
        """
        try:
            response = await self.client.get(url, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch image: {exc}", url=url) from exc

        if not response.is_success:
            raise FetchError(
                f"Failed to fetch image: {response.status_code} {response.reason_phrase}",
                url=url,
                status_code=response.status_code,
            )

        data = response.content
        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type.startswith("image/"):
            mime_type = content_type
        else:
            mime_type = self._sniff_mime_type(data)
            if mime_type is None:
                raise FetchError(
                    f"URL did not return an image (content-type: {content_type or 'unknown'})",
                    url=url,
                    status_code=response.status_code,
                )

        logger.info("Fetched image %s (%d bytes, %s)", url, len(data), mime_type)
        return ImagePayload(data=data, mime_type=mime_type, source_url=url)

    async def fetch_optional(self, url: str | None) -> ImagePayload | None:
        """下载可选图片（如背景），失败时返回 None 而不是抛错"""
        if not url:
            return None
        try:
            return await self.fetch(url)
        except FetchError as exc:
            logger.warning("Optional image unavailable, continuing without it: %s", exc)
            return None
