from __future__ import annotations

import logging

from storybook.agents.base import (
    BaseAgent,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ReplaceChildResult,
)
from storybook.agents.prompts.character import (
    DESCRIBE_IMAGE_PROMPT,
    AnalysisPrompt,
    PromptMode,
    build_analysis_prompt,
    build_image_prompt,
    build_replace_child_prompt,
)
from storybook.agents.utils import sanitize_prompt
from storybook.services.providers import ProviderResponse

logger = logging.getLogger(__name__)


class CharacterArtistAgent(BaseAgent):
    """把上传的照片变成绘本角色插画"""

    name = "character_artist"

    async def _describe(self, prompt: AnalysisPrompt, options: GenerationOptions) -> ProviderResponse:
        vision = self.ctx.vision

        async def _call():
            return await vision.describe(
                list(prompt.images),
                prompt.text,
                model=options.provider_model,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
            )

        response = await self.with_retry(_call, label=f"{vision.name} describe")
        logger.info("Description received from %s (%d chars)", response.model, len(response.text))
        return response

    async def describe_image(
        self, url: str, *, prompt: str | None = None, options: GenerationOptions
    ) -> ProviderResponse:
        """只描述图片，不生成插画"""
        image = await self.ctx.fetcher.fetch(url)
        analysis = AnalysisPrompt(
            mode=PromptMode.SUBJECT_ONLY, text=prompt or DESCRIBE_IMAGE_PROMPT, images=(image,)
        )
        return await self._describe(analysis, options)

    async def generate_character(self, request: GenerationRequest) -> GenerationResult:
        """单张照片的完整流程；失败时抛出异常，由调用方决定如何记录"""
        subject = await self.ctx.fetcher.fetch(request.subject_image_url)
        # 背景下载失败时降级为仅照片模式
        background = await self.ctx.fetcher.fetch_optional(request.background_image_url)

        analysis = build_analysis_prompt(subject, background)
        logger.info("Analyzing %s in %s mode", request.subject_image_url, analysis.mode.value)

        description = (await self._describe(analysis, request.options)).text
        image_prompt = build_image_prompt(description, background_used=analysis.background_used)

        outcome = await self.ctx.images.synthesize(image_prompt)
        return GenerationResult(
            success=True,
            image_url=request.subject_image_url,
            generated_image_url=outcome.url,
            generation_method=outcome.method,
            background_used=analysis.background_used,
            prompt=image_prompt,
        )

    async def replace_child(
        self,
        child_image_url: str,
        template_image_url: str,
        options: GenerationOptions | None = None,
    ) -> ReplaceChildResult:
        """把模板插画里的孩子替换为照片中的孩子（两张图都必须可用）"""
        options = options or GenerationOptions()
        child = await self.ctx.fetcher.fetch(child_image_url)
        template = await self.ctx.fetcher.fetch(template_image_url)

        analysis = build_replace_child_prompt(template, child)
        if options.max_tokens is None:
            options = GenerationOptions(
                provider_model=options.provider_model,
                temperature=options.temperature,
                max_tokens=self.ctx.settings.max_description_tokens * 2,
            )
        description = (await self._describe(analysis, options)).text
        prompt = sanitize_prompt(description, max_chars=self.ctx.settings.image_prompt_max_chars)

        outcome = await self.ctx.images.synthesize(prompt)
        return ReplaceChildResult(
            generated_image_url=outcome.url,
            prompt=prompt,
            generation_method=outcome.method,
        )
