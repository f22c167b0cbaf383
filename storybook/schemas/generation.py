from __future__ import annotations

from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storybook.services.image_chain import GenerationMethod

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FairyTaleCharactersRequest(CamelModel):
    image_urls: list[str] = Field(min_length=1)
    background_image_url: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, gt=0)


class ReplaceChildRequest(CamelModel):
    child_image_url: str = Field(min_length=1)
    template_image_url: str = Field(min_length=1)
    model: str | None = None


class FairyTaleCharactersFromDbRequest(CamelModel):
    image_ids: list[int] = Field(min_length=1)
    background_image_id: int | None = None
    model: str | None = None


class AnalyzeFromDbRequest(CamelModel):
    image_id: int
    background_image_id: int | None = None
    model: str | None = None


class ReplaceChildFromDbRequest(CamelModel):
    child_image_id: int
    template_image_id: int
    model: str | None = None


class AnalyzeStorageImagesRequest(CamelModel):
    folder: str | None = None
    model: str | None = None
    prompt: str | None = None
    limit: int | None = Field(default=None, gt=0)
    # 毫秒，与前端保持一致
    delay_between_requests: int | None = Field(default=None, ge=0)
    max_tokens: int | None = Field(default=None, gt=0)


class AnalyzeStorageImageRequest(CamelModel):
    image_path: str = Field(min_length=1)
    model: str | None = None
    prompt: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)


class GenerateTextRequest(CamelModel):
    prompt: str = Field(min_length=1)
    model: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = Field(default=None, gt=0)


class ChatMessage(CamelModel):
    role: Literal["user", "assistant", "model"] = "user"
    content: str


class ChatRequest(CamelModel):
    message: str = Field(min_length=1)
    history: list[ChatMessage] = Field(default_factory=list)
    model: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = Field(default=None, gt=0)


class CompleteRequest(CamelModel):
    text: str = Field(min_length=1)


class GenerationResultRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    success: bool
    image_url: str
    generated_image_url: str | None
    error: str | None
    generation_method: GenerationMethod | None
    background_used: bool
    prompt: str | None = None


class FairyTaleCharactersRead(CamelModel):
    characters: list[GenerationResultRead]
    background_used: bool


class ReplaceChildRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    success: bool
    generated_image_url: str
    prompt: str
    generation_method: GenerationMethod


class ImageAnalysisRead(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    success: bool
    name: str
    path: str
    url: str
    folder: str | None = None
    size: int = 0
    created_at: str | None = None
    analysis: str | None = None
    model: str | None = None
    error: str | None = None


class AnalysisBatchRead(CamelModel):
    total_images: int
    analyzed_count: int
    failed_count: int
    images: list[ImageAnalysisRead]


class TextResultRead(CamelModel):
    success: bool = True
    text: str
    model: str


class CompleteRead(CamelModel):
    success: bool = True
    original: str
    completion: str


class ModelsRead(CamelModel):
    provider: str
    default_model: str
    models: list[str]


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    code: str
