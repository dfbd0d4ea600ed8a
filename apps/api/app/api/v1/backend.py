"""Completion backend routes: installed models and generation settings."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.api.deps import get_generation_options, get_services
from app.core.config import GenerationOptions
from app.core.exceptions import BackendUnavailableError, CompletionBackendError
from app.models.schemas import (
    GenerationConfigResponse,
    GenerationConfigUpdate,
    ModelInfo,
    ModelsResponse,
)
from app.services.container import AppServices
from app.services.ollama import model_matches

logger = structlog.get_logger(__name__)

router = APIRouter()


def _config_response(options: GenerationOptions) -> GenerationConfigResponse:
    return GenerationConfigResponse(**options.model_dump())


@router.get("/models", response_model=ModelsResponse)
async def list_models(
    refresh: bool = Query(default=False),
    services: AppServices = Depends(get_services),
    options: GenerationOptions = Depends(get_generation_options),
):
    try:
        models = await services.catalog.models(refresh=refresh)
    except BackendUnavailableError as exc:
        raise HTTPException(status_code=503, detail=exc.message)
    except CompletionBackendError as exc:
        raise HTTPException(status_code=502, detail=exc.message)

    return ModelsResponse(
        models=[ModelInfo(**m) for m in models],
        configured_model=options.model,
        configured_model_available=any(model_matches(m["name"], options.model) for m in models),
    )


@router.get("/config", response_model=GenerationConfigResponse)
async def get_config(options: GenerationOptions = Depends(get_generation_options)):
    return _config_response(options)


@router.put("/config", response_model=GenerationConfigResponse)
async def update_config(
    body: GenerationConfigUpdate,
    request: Request,
    options: GenerationOptions = Depends(get_generation_options),
):
    """Swap in a new generation snapshot. Open connections keep the one they started with."""
    updated = options.with_updates(**body.model_dump(exclude_unset=True))
    request.app.state.generation = updated
    logger.info("config.updated", changes=sorted(body.model_fields_set), model=updated.model)
    return _config_response(updated)
