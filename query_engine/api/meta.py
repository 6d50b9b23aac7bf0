from fastapi import APIRouter, Depends

from query_engine.core.config import settings
from query_engine.services.model_registry import ModelRegistry, get_registry
from query_engine.services.response_formatting import available_formats

router = APIRouter()


@router.get("/formats")
def list_formats():
    return {"default": settings.DEFAULT_RESPONSE_FORMAT, "formats": available_formats()}


@router.get("/models")
def list_models(registry: ModelRegistry = Depends(get_registry)):
    return {"models": registry.names()}
