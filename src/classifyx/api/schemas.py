"""Pydantic request/response schemas for the ClassifyX API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ModelInfoResponse(BaseModel):
    """State of the active model."""

    is_loaded: bool
    runtime: str | None = Field(description="Model kind: 'layers', 'graph', or null when nothing is loaded")
    input_size: int = Field(description="Square input size the image is resized to")
    label_count: int
    labels: list[str] | None = None


class ImageResponse(BaseModel):
    """Handle for an uploaded image."""

    id: str
    width: int
    height: int


class Prediction(BaseModel):
    """A single class score."""

    index: int
    label: str
    probability: float


class ModeResponse(BaseModel):
    """A normalization mode."""

    id: str
    display_name: str
    description: str


class SetModeRequest(BaseModel):
    mode: str


class DebugRequest(BaseModel):
    enabled: bool


class DebugResponse(BaseModel):
    enabled: bool


class ModeComparisonResponse(BaseModel):
    """Top prediction for one normalization mode."""

    mode: str
    display_name: str
    top: Prediction | None
    scores: list[float] = Field(default_factory=list)
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_loaded: bool
    mode: str
    concurrent_requests: int
    queue_depth: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
