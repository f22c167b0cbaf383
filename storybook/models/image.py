from datetime import datetime, UTC
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class ImageRecord(SQLModel, table=True):
    """图片（上传照片与背景模板，由管理后台维护）"""

    __tablename__ = "images"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    price: Optional[Decimal] = Field(default=None, max_digits=10, decimal_places=2)
    image_url: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
