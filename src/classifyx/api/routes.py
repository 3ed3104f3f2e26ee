"""API route definitions.

Each route is a thin wrapper around one :class:`ClassifierSession` operation.
Blocking session calls run on the inference pool.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, status

from classifyx.api.middleware import verify_api_key
from classifyx.api.schemas import (
    DebugRequest,
    DebugResponse,
    ErrorResponse,
    HealthResponse,
    ImageResponse,
    ModeComparisonResponse,
    ModelInfoResponse,
    ModeResponse,
    Prediction,
    SetModeRequest,
)
from classifyx.config import Settings
from classifyx.ml.inference import InferencePool
from classifyx.ml.session import ClassifierSession, ModelInfo

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_BUSY = {status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_session(request: Request) -> ClassifierSession:
    session: ClassifierSession = request.app.state.session
    return session


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


SettingsDep = Annotated[Settings, Depends(_get_settings)]
SessionDep = Annotated[ClassifierSession, Depends(_get_session)]
PoolDep = Annotated[InferencePool, Depends(_get_inference_pool)]


def _model_info_response(info: ModelInfo) -> ModelInfoResponse:
    return ModelInfoResponse(
        is_loaded=info.is_loaded,
        runtime=str(info.runtime) if info.runtime else None,
        input_size=info.input_size,
        label_count=info.label_count,
        labels=list(info.labels) if info.labels else None,
    )


@router.post(
    "/model",
    response_model=ModelInfoResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        **_BUSY,
    },
    summary="Upload a zipped model archive",
)
async def upload_model(file: UploadFile, session: SessionDep, pool: PoolDep) -> ModelInfoResponse:
    """Load model.json + weights (+ labels.json) from a zip archive, replacing the active model."""
    data = await file.read()
    info = await pool.run(session.upload_model, data)
    return _model_info_response(info)


@router.get("/model", response_model=ModelInfoResponse, summary="Describe the active model")
async def get_model(session: SessionDep) -> ModelInfoResponse:
    return _model_info_response(session.model_info())


@router.post(
    "/image",
    response_model=ImageResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}, **_BUSY},
    summary="Upload the image to classify",
)
async def upload_image(file: UploadFile, session: SessionDep, pool: PoolDep) -> ImageResponse:
    data = await file.read()
    handle = await pool.run(session.upload_image, data)
    return ImageResponse(id=handle.id, width=handle.width, height=handle.height)


@router.post(
    "/predict",
    response_model=list[Prediction],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        **_BUSY,
    },
    summary="Classify the uploaded image",
)
async def predict(
    session: SessionDep,
    pool: PoolDep,
    settings: SettingsDep,
    top_k: Annotated[int | None, Query(ge=1)] = None,
) -> list[Prediction]:
    """Return class probabilities for the uploaded image, highest first."""
    results = await pool.run(session.predict, top_k or settings.top_k)
    return [Prediction(index=r.index, label=r.label, probability=r.probability) for r in results]


@router.post(
    "/compare-modes",
    response_model=list[ModeComparisonResponse],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        **_BUSY,
    },
    summary="Classify the uploaded image under every normalization mode",
)
async def compare_modes(session: SessionDep, pool: PoolDep) -> list[ModeComparisonResponse]:
    comparisons = await pool.run(session.compare_modes)
    return [
        ModeComparisonResponse(
            mode=str(c.mode),
            display_name=c.display_name,
            top=Prediction(index=c.top.index, label=c.top.label, probability=c.top.probability) if c.top else None,
            scores=list(c.scores),
            error=c.error,
        )
        for c in comparisons
    ]


@router.get("/modes", response_model=list[ModeResponse], summary="List normalization modes")
async def list_modes(session: SessionDep) -> list[ModeResponse]:
    return [ModeResponse(id=m.id, display_name=m.display_name, description=m.description) for m in session.list_modes()]


@router.get("/mode", response_model=ModeResponse, summary="Current normalization mode")
async def get_mode(session: SessionDep) -> ModeResponse:
    current = next(m for m in session.list_modes() if m.id == session.mode)
    return ModeResponse(id=current.id, display_name=current.display_name, description=current.description)


@router.put(
    "/mode",
    response_model=ModeResponse,
    responses={status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}},
    summary="Select the normalization mode",
)
async def set_mode(body: SetModeRequest, session: SessionDep) -> ModeResponse:
    try:
        session.set_mode(body.mode)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return await get_mode(session)


@router.put("/debug", response_model=DebugResponse, summary="Toggle debug logging")
async def set_debug(body: DebugRequest, session: SessionDep) -> DebugResponse:
    session.set_debug_mode(body.enabled)
    return DebugResponse(enabled=session.debug)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(session: SessionDep, pool: PoolDep) -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="ok",
        model_loaded=session.model_info().is_loaded,
        mode=str(session.mode),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )
