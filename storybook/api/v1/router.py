from fastapi import APIRouter

from storybook.api.v1.routes.ai import router as ai_router

api_router = APIRouter()
api_router.include_router(ai_router, tags=["ai"])
