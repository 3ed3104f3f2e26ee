"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from classifyx.config import Settings
    from classifyx.ml.runtime import ModelRuntime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from classifyx.api.middleware import register_error_handlers
from classifyx.api.routes import router
from classifyx.config import get_settings
from classifyx.ml.inference import InferencePool
from classifyx.ml.runtime import TensorFlowRuntime
from classifyx.ml.session import ClassifierSession

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def init_state(app: FastAPI, settings: Settings, runtime: ModelRuntime | None = None) -> None:
    """Attach settings, the classifier session and the worker pool to ``app.state``."""
    app.state.settings = settings
    app.state.session = ClassifierSession(settings, runtime or TensorFlowRuntime(settings))
    app.state.inference_pool = InferencePool(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    logger.info(
        "Starting ClassifyX (mode=%s, input_size=%s, workers=%s, debug=%s)",
        settings.default_mode,
        settings.default_input_size,
        settings.max_concurrent,
        settings.debug,
    )
    init_state(app, settings)
    yield

    pool: InferencePool = app.state.inference_pool
    pool.shutdown()
    logger.info("ClassifyX stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ClassifyX",
        description="Load zipped TF.js image classifiers and run them with selectable pixel normalization",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(application)
    application.include_router(router)
    return application


app = create_app()
