from __future__ import annotations

import logging
from collections.abc import Sequence

from storybook.agents.base import (
    QUOTA_EXCEEDED_MESSAGE,
    AnalysisBatch,
    BatchOutcome,
    GenerationContext,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ImageAnalysis,
    ReplaceChildResult,
)
from storybook.agents.character_artist import CharacterArtistAgent
from storybook.exceptions import AppException, NotFoundError, ValidationError
from storybook.services.image_repository import ImageRepository
from storybook.services.retry import classify_exception
from storybook.services.storage import ImageStorage, StoredImage

logger = logging.getLogger(__name__)


def describe_failure(exc: BaseException) -> str:
    """把异常转换为面向用户的错误信息（配额/限流 vs 其他）"""
    if classify_exception(exc).retryable:
        return QUOTA_EXCEEDED_MESSAGE
    return str(exc) or exc.__class__.__name__


class CharacterGenerationOrchestrator:
    """批量生成：严格串行、固定间隔，单个失败不影响其他"""

    def __init__(
        self,
        ctx: GenerationContext,
        *,
        images: ImageRepository | None = None,
        storage: ImageStorage | None = None,
    ):
        self.ctx = ctx
        self.artist = CharacterArtistAgent(ctx)
        self.images = images
        self.storage = storage

    async def generate_characters(
        self,
        image_urls: Sequence[str],
        *,
        background_image_url: str | None = None,
        options: GenerationOptions | None = None,
    ) -> BatchOutcome:
        if not image_urls:
            raise ValidationError("Image URLs array is required")

        options = options or GenerationOptions()
        delay_s = self.ctx.settings.batch_request_delay_s
        total = len(image_urls)
        logger.info(
            "Generating characters for %d image(s)%s",
            total,
            f" with background {background_image_url}" if background_image_url else "",
        )

        results: list[GenerationResult] = []
        for i, url in enumerate(image_urls):
            if i > 0 and delay_s > 0:
                logger.info("Waiting %.1fs before next request to avoid rate limits", delay_s)
                await self.ctx.sleep(delay_s)

            request = GenerationRequest(
                subject_image_url=url,
                background_image_url=background_image_url,
                options=options,
            )
            try:
                logger.info("Processing image %d/%d: %s", i + 1, total, url)
                result = await self.artist.generate_character(request)
            except Exception as exc:
                logger.error("Failed to generate character %d/%d: %s", i + 1, total, exc)
                result = GenerationResult.failed(
                    url, describe_failure(exc), background_used=bool(background_image_url)
                )
            results.append(result)

        outcome = BatchOutcome(results=results, background_used=bool(background_image_url))
        logger.info("Generated %d/%d characters successfully", outcome.succeeded, total)
        return outcome

    async def generate_character(
        self,
        image_url: str,
        *,
        background_image_url: str | None = None,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        request = GenerationRequest(
            subject_image_url=image_url,
            background_image_url=background_image_url,
            options=options or GenerationOptions(),
        )
        return await self.artist.generate_character(request)

    async def replace_child(
        self,
        child_image_url: str,
        template_image_url: str,
        *,
        options: GenerationOptions | None = None,
    ) -> ReplaceChildResult:
        return await self.artist.replace_child(child_image_url, template_image_url, options)

    # ============================================
    # 数据库图片 ID 版本
    # ============================================

    def _repository(self) -> ImageRepository:
        if self.images is None:
            raise RuntimeError("Image repository not configured")
        return self.images

    async def _resolve_url(self, image_id: int | None) -> str | None:
        if image_id is None:
            return None
        image = await self._repository().get_image_by_id(image_id)
        return image.image_url

    async def generate_characters_from_db(
        self,
        image_ids: Sequence[int],
        *,
        background_image_id: int | None = None,
        options: GenerationOptions | None = None,
    ) -> BatchOutcome:
        if not image_ids:
            raise ValidationError("Image IDs array is required")

        records = await self._repository().get_images_by_ids(image_ids)
        background_url = await self._resolve_url(background_image_id)
        logger.info("Resolved %d image(s) from database: %s", len(records), list(image_ids))
        return await self.generate_characters(
            [record.image_url for record in records],
            background_image_url=background_url,
            options=options,
        )

    async def generate_character_from_db(
        self,
        image_id: int,
        *,
        background_image_id: int | None = None,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        image = await self._repository().get_image_by_id(image_id)
        background_url = await self._resolve_url(background_image_id)
        return await self.generate_character(image.image_url, background_image_url=background_url, options=options)

    async def replace_child_from_db(
        self,
        child_image_id: int,
        template_image_id: int,
        *,
        options: GenerationOptions | None = None,
    ) -> ReplaceChildResult:
        repository = self._repository()
        child = await repository.get_image_by_id(child_image_id)
        template = await repository.get_image_by_id(template_image_id)
        return await self.replace_child(child.image_url, template.image_url, options=options)

    # ============================================
    # 对象存储图片分析（只描述，不生成插画）
    # ============================================

    def _storage(self) -> ImageStorage:
        if self.storage is None:
            raise AppException("Image storage not configured", code="STORAGE_NOT_CONFIGURED", status_code=503)
        return self.storage

    def _analysis_options(self, options: GenerationOptions | None) -> GenerationOptions:
        options = options or GenerationOptions()
        if options.max_tokens is not None:
            return options
        return GenerationOptions(
            provider_model=options.provider_model,
            temperature=options.temperature,
            max_tokens=self.ctx.settings.analysis_max_tokens,
        )

    async def _analyze_stored(
        self, image: StoredImage, prompt: str | None, options: GenerationOptions
    ) -> ImageAnalysis:
        response = await self.artist.describe_image(image.url, prompt=prompt, options=options)
        return ImageAnalysis(
            name=image.name,
            path=image.path,
            url=image.url,
            success=True,
            folder=image.folder,
            size=image.size,
            created_at=image.created_at,
            analysis=response.text,
            model=response.model,
        )

    async def analyze_storage_images(
        self,
        folder: str | None = None,
        *,
        prompt: str | None = None,
        limit: int | None = None,
        delay_s: float | None = None,
        options: GenerationOptions | None = None,
    ) -> AnalysisBatch:
        """串行描述存储中的图片；delay_s / limit 可按请求覆盖"""
        limit = limit or self.ctx.settings.analysis_default_limit
        delay_s = self.ctx.settings.batch_request_delay_s if delay_s is None else delay_s
        options = self._analysis_options(options)

        stored = await self._storage().list_images(folder, limit)
        if not stored:
            raise NotFoundError("No images found in storage", details={"folder": folder})

        total = len(stored)
        logger.info("Analyzing %d stored image(s) from %s", total, folder or "all folders")
        results: list[ImageAnalysis] = []
        for i, image in enumerate(stored):
            if i > 0 and delay_s > 0:
                await self.ctx.sleep(delay_s)
            try:
                results.append(await self._analyze_stored(image, prompt, options))
            except Exception as exc:
                logger.error("Failed to analyze %s (%d/%d): %s", image.name, i + 1, total, exc)
                results.append(
                    ImageAnalysis(
                        name=image.name,
                        path=image.path,
                        url=image.url,
                        success=False,
                        folder=image.folder,
                        size=image.size,
                        created_at=image.created_at,
                        error=describe_failure(exc),
                    )
                )

        batch = AnalysisBatch(images=results)
        logger.info("Analyzed %d/%d stored images", batch.analyzed, total)
        return batch

    async def analyze_storage_image(
        self,
        path: str,
        *,
        prompt: str | None = None,
        options: GenerationOptions | None = None,
    ) -> ImageAnalysis:
        storage = self._storage()
        folder, _, name = path.rpartition("/")
        image = StoredImage(name=name, path=path, url=storage.public_url(path), folder=folder or None)
        return await self._analyze_stored(image, prompt, self._analysis_options(options))
