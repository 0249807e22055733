"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from catmoji.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from catmoji.api.routes import router
from catmoji.config import get_settings
from catmoji.display import TextDisplay
from catmoji.errors import ModelLoadError
from catmoji.ml.image_classifier import load_classifier
from catmoji.ml.inference import ClassificationWorkflow, InferencePool
from catmoji.ml.model_manager import OnnxModelManager
from catmoji.ml.preprocessing import PillowPreprocessor

logger = logging.getLogger(__name__)


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Load the classifier once and wire the workflow into ``app.state``.

    A model that fails to load leaves ``app.state.workflow`` as None; the
    service keeps running and classification requests get 503.
    """
    app.state.settings = settings
    app.state.display = TextDisplay()
    app.state.inference_pool = InferencePool.from_settings(settings)
    app.state.model_manager = None
    app.state.workflow = None
    app.state.load_error = None

    preprocessor = PillowPreprocessor(settings.max_image_pixels, settings.crop_mode)
    try:
        manager = OnnxModelManager(settings)
        app.state.model_manager = manager
        classifier = load_classifier(settings, manager=manager, preprocessor=preprocessor)
    except ModelLoadError as exc:
        logger.error("Classifier unavailable, running degraded: %s", exc.reason)
        app.state.load_error = exc.reason
        return

    app.state.workflow = ClassificationWorkflow.from_settings(
        settings,
        classifier,
        preprocessor,
        app.state.inference_pool,
        app.state.display,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting Catmoji (device=%s, model=%s, crop_mode=%s, threshold=%s)",
        settings.device,
        settings.model_path or settings.classifier_model,
        settings.crop_mode,
        settings.confidence_threshold,
    )

    init_app_state(app, settings)

    logger.info("Catmoji ready")
    yield

    logger.info("Shutting down Catmoji")
    app.state.inference_pool.shutdown()
    if app.state.model_manager is not None:
        app.state.model_manager.shutdown()
    logger.info("Catmoji shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Catmoji",
        description="Classifies a cat's mood from a photo and shows it as an emoji",
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

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using CATMOJI_HOST / CATMOJI_PORT."""
    settings = get_settings()
    uvicorn.run("catmoji.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
