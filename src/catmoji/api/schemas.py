"""Pydantic request/response schemas for the Catmoji API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    request_id: int = Field(description="Monotonically increasing request number")
    display: str = Field(description="Rendered emoji text, or the failure message")
    current: bool = Field(description="False if a newer request superseded this one before it finished")
    tags: list[ImageTag]
    error: str | None = Field(default=None, description="Failure kind when classification failed")


class DisplayResponse(BaseModel):
    """Current contents of the display surface."""

    text: str
    latest_request: int
    updated_at: float | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_loaded: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = "image_classification"
    status: str = Field(description="Model status: 'active', 'available', or 'unavailable'")
    labels: list[str]
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
