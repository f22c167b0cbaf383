from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from storybook.models.image import ImageRecord


async def create_image(
    session: AsyncSession,
    *,
    name: str = "Photo",
    image_url: str = "https://cdn.test/kid.png",
    description: str | None = None,
) -> ImageRecord:
    image = ImageRecord(name=name, image_url=image_url, description=description)
    session.add(image)
    await session.commit()
    await session.refresh(image)
    return image
