from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storybook.exceptions import NotFoundError
from storybook.models.image import ImageRecord


class ImageRepository:
    """按 ID 查询图片表（只读）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_image_by_id(self, image_id: int) -> ImageRecord:
        image = await self.session.get(ImageRecord, image_id)
        if image is None:
            raise NotFoundError(f"Image with ID {image_id} not found", details={"image_id": image_id})
        return image

    async def get_images_by_ids(self, image_ids: Sequence[int]) -> list[ImageRecord]:
        """按请求顺序返回图片；任一 ID 不存在时抛 NotFoundError"""
        if not image_ids:
            return []

        res = await self.session.execute(select(ImageRecord).where(ImageRecord.id.in_(list(image_ids))))
        by_id = {image.id: image for image in res.scalars().all()}

        missing = [image_id for image_id in image_ids if image_id not in by_id]
        if missing:
            raise NotFoundError(
                f"No images found in database with IDs: {', '.join(str(i) for i in missing)}",
                details={"missing_ids": missing},
            )
        return [by_id[image_id] for image_id in image_ids]
