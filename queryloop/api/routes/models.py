from __future__ import annotations

from fastapi import APIRouter

from queryloop.api.deps import get_available_models
from queryloop.config import settings
from queryloop.models.schemas import ModelInfo, ModelsResponse

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=ModelsResponse)
async def list_models():
    """Models a generation job can run on, plus the one used when none is picked."""
    return ModelsResponse(
        models=[ModelInfo(**m) for m in get_available_models()],
        default_model=settings.default_model,
    )
