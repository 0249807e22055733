"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status

from catmoji.api.middleware import verify_api_key
from catmoji.api.schemas import (
    ClassifyImageResponse,
    DisplayResponse,
    ErrorResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
)
from catmoji.errors import UnsupportedOrientationError
from catmoji.ml.model_manager import MODEL_REGISTRY
from catmoji.ml.orientation import parse_orientation

if TYPE_CHECKING:
    from catmoji.config import Settings
    from catmoji.display import TextDisplay
    from catmoji.ml.inference import ClassificationWorkflow, InferencePool
    from catmoji.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_display(request: Request) -> TextDisplay:
    display: TextDisplay = request.app.state.display
    return display


def _get_workflow(request: Request) -> ClassificationWorkflow:
    workflow: ClassificationWorkflow | None = request.app.state.workflow
    if workflow is None:
        load_error: str | None = getattr(request.app.state, "load_error", None)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Classifier not loaded: {load_error or 'unknown error'}",
        )
    return workflow


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify the mood of the cat in an image",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    orientation: Annotated[str | None, Form()] = None,
) -> ClassifyImageResponse:
    """Classify an uploaded image and update the display with the cat's mood.

    ``orientation`` is a name such as ``left-mirrored`` or an EXIF tag
    ``1``-``8``; when omitted or empty, the image's own EXIF orientation is used.
    """
    settings = _get_settings(request)
    workflow = _get_workflow(request)

    try:
        parsed_orientation = parse_orientation(orientation) if orientation else None
    except UnsupportedOrientationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.reason) from exc

    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    try:
        outcome = await workflow.submit(data, parsed_orientation)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference worker is busy, try again later",
        ) from exc

    tags = [ImageTag(label=c.label, confidence=c.confidence) for c in outcome.result or ()]
    return ClassifyImageResponse(
        request_id=outcome.request_id,
        display=outcome.text,
        current=outcome.current,
        tags=tags,
        error=outcome.error.kind.value if outcome.error is not None else None,
    )


@router.get(
    "/display",
    response_model=DisplayResponse,
    summary="Current display text",
)
async def get_display(request: Request) -> DisplayResponse:
    """Return what the display surface currently shows."""
    display = _get_display(request)
    workflow: ClassificationWorkflow | None = request.app.state.workflow
    return DisplayResponse(
        text=display.text,
        latest_request=workflow.latest_request if workflow is not None else 0,
        updated_at=display.updated_at,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    workflow: ClassificationWorkflow | None = request.app.state.workflow
    manager: ModelManager | None = request.app.state.model_manager
    loaded = workflow is not None
    return HealthResponse(
        status="ok" if loaded else "degraded",
        gpu=settings.device == "cuda",
        model_loaded=loaded,
        models_loaded=manager.get_loaded_models() if manager is not None else [],
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered classifiers and their status under the current configuration."""
    settings = _get_settings(request)
    workflow: ClassificationWorkflow | None = request.app.state.workflow

    models: list[ModelInfo] = []
    for name, spec in MODEL_REGISTRY.items():
        if name != settings.classifier_model:
            model_status = "available"
        elif workflow is not None:
            model_status = "active"
        else:
            model_status = "unavailable"

        models.append(
            ModelInfo(
                name=name,
                status=model_status,
                labels=list(spec.labels),
                license=spec.license,
            )
        )

    return ModelsResponse(models=models)
