from __future__ import annotations

import logging

from fastapi import APIRouter

from storybook.agents.base import GenerationContext, GenerationOptions
from storybook.agents.orchestrator import CharacterGenerationOrchestrator
from storybook.agents.writer import WriterAgent
from storybook.api.deps import GenerationContextDep, OrchestratorDep, SettingsDep
from storybook.config import Settings
from storybook.schemas.generation import (
    AnalysisBatchRead,
    AnalyzeFromDbRequest,
    AnalyzeStorageImageRequest,
    AnalyzeStorageImagesRequest,
    ApiResponse,
    ChatRequest,
    CompleteRead,
    CompleteRequest,
    FairyTaleCharactersFromDbRequest,
    FairyTaleCharactersRead,
    FairyTaleCharactersRequest,
    GenerateTextRequest,
    GenerationResultRead,
    ImageAnalysisRead,
    ModelsRead,
    ReplaceChildFromDbRequest,
    ReplaceChildRead,
    ReplaceChildRequest,
    TextResultRead,
)
from storybook.services.providers import ChatTurn, describe_provider

router = APIRouter(prefix="/ai")
logger = logging.getLogger(__name__)


def _characters_read(outcome) -> FairyTaleCharactersRead:
    return FairyTaleCharactersRead(
        characters=[GenerationResultRead.model_validate(r) for r in outcome.results],
        background_used=outcome.background_used,
    )


@router.post("/fairy-tale-characters", response_model=ApiResponse[FairyTaleCharactersRead])
async def generate_fairy_tale_characters(
    payload: FairyTaleCharactersRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    outcome = await orchestrator.generate_characters(
        payload.image_urls,
        background_image_url=payload.background_image_url,
        options=GenerationOptions(
            provider_model=payload.model,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens,
        ),
    )
    return ApiResponse(data=_characters_read(outcome))


@router.post("/replace-child", response_model=ApiResponse[ReplaceChildRead])
async def replace_child(
    payload: ReplaceChildRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    result = await orchestrator.replace_child(
        payload.child_image_url,
        payload.template_image_url,
        options=GenerationOptions(provider_model=payload.model),
    )
    return ApiResponse(data=ReplaceChildRead.model_validate(result))


@router.post("/fairy-tale-characters-from-db", response_model=ApiResponse[FairyTaleCharactersRead])
async def generate_fairy_tale_characters_from_db(
    payload: FairyTaleCharactersFromDbRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    outcome = await orchestrator.generate_characters_from_db(
        payload.image_ids,
        background_image_id=payload.background_image_id,
        options=GenerationOptions(provider_model=payload.model),
    )
    return ApiResponse(
        data=_characters_read(outcome),
        message=f"Processed {len(payload.image_ids)} image(s) from database",
    )


@router.post("/analyze-from-db", response_model=ApiResponse[GenerationResultRead])
async def analyze_from_db(
    payload: AnalyzeFromDbRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    result = await orchestrator.generate_character_from_db(
        payload.image_id,
        background_image_id=payload.background_image_id,
        options=GenerationOptions(provider_model=payload.model),
    )
    return ApiResponse(data=GenerationResultRead.model_validate(result))


@router.post("/replace-child-from-db", response_model=ApiResponse[ReplaceChildRead])
async def replace_child_from_db(
    payload: ReplaceChildFromDbRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    result = await orchestrator.replace_child_from_db(
        payload.child_image_id,
        payload.template_image_id,
        options=GenerationOptions(provider_model=payload.model),
    )
    return ApiResponse(data=ReplaceChildRead.model_validate(result))


@router.post("/analyze-supabase-images", response_model=ApiResponse[AnalysisBatchRead])
async def analyze_storage_images(
    payload: AnalyzeStorageImagesRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    """批量描述存储桶中的上传图片（只分析，不生成插画）"""
    delay_s = payload.delay_between_requests / 1000 if payload.delay_between_requests is not None else None
    batch = await orchestrator.analyze_storage_images(
        payload.folder,
        prompt=payload.prompt,
        limit=payload.limit,
        delay_s=delay_s,
        options=GenerationOptions(provider_model=payload.model, max_tokens=payload.max_tokens),
    )
    return ApiResponse(
        data=AnalysisBatchRead(
            total_images=batch.total,
            analyzed_count=batch.analyzed,
            failed_count=batch.failed,
            images=[ImageAnalysisRead.model_validate(i) for i in batch.images],
        ),
        message=f"Analyzed {batch.analyzed} of {batch.total} image(s)",
    )


@router.post("/analyze-supabase-image", response_model=ApiResponse[ImageAnalysisRead])
async def analyze_storage_image(
    payload: AnalyzeStorageImageRequest,
    orchestrator: CharacterGenerationOrchestrator = OrchestratorDep,
):
    analysis = await orchestrator.analyze_storage_image(
        payload.image_path,
        prompt=payload.prompt,
        options=GenerationOptions(provider_model=payload.model, max_tokens=payload.max_tokens),
    )
    return ApiResponse(data=ImageAnalysisRead.model_validate(analysis))


@router.post("/generate", response_model=ApiResponse[TextResultRead])
async def generate_text(payload: GenerateTextRequest, ctx: GenerationContext = GenerationContextDep):
    response = await WriterAgent(ctx).generate(
        payload.prompt,
        model=payload.model,
        temperature=payload.temperature,
        max_tokens=payload.max_output_tokens,
    )
    return ApiResponse(data=TextResultRead(text=response.text, model=response.model))


@router.post("/chat", response_model=ApiResponse[TextResultRead])
async def chat(payload: ChatRequest, ctx: GenerationContext = GenerationContextDep):
    response = await WriterAgent(ctx).chat(
        payload.message,
        history=[ChatTurn(role=m.role, content=m.content) for m in payload.history],
        model=payload.model,
        temperature=payload.temperature,
        max_tokens=payload.max_output_tokens,
    )
    return ApiResponse(data=TextResultRead(text=response.text, model=response.model))


@router.post("/complete", response_model=CompleteRead)
async def complete(payload: CompleteRequest, ctx: GenerationContext = GenerationContextDep):
    response = await WriterAgent(ctx).complete(payload.text)
    return CompleteRead(original=payload.text, completion=response.text)


@router.get("/models", response_model=ApiResponse[ModelsRead])
async def list_models(settings: Settings = SettingsDep):
    info = describe_provider(settings)
    return ApiResponse(
        data=ModelsRead(provider=info.name, default_model=info.default_model, models=info.models)
    )
