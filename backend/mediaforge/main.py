from __future__ import annotations
"""MediaForge: FastAPI application entry point.

Builds the generation pipeline handle once at startup, mounts the API
routes and initializes the metadata database.
"""

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mediaforge.api.router import api_router
from mediaforge.config import check_storage_config, get_settings
from mediaforge.database import create_engine, create_session_factory, init_db
from mediaforge.services.generation_pipeline import GenerationPipeline, build_pipeline

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(pipeline: GenerationPipeline | None = None) -> FastAPI:
    """Create the app. Pass ``pipeline`` to skip building one from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("%s starting up...", settings.APP_NAME)
        if pipeline is not None:
            app.state.pipeline = pipeline
            yield
            return

        logger.info("Storage providers configured: %s", check_storage_config(settings))
        engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
        await init_db(engine)
        async with httpx.AsyncClient(timeout=settings.REPLICATE_TIMEOUT) as client:
            app.state.pipeline = build_pipeline(
                settings,
                client,
                session_factory=create_session_factory(engine),
            )
            yield
        await engine.dispose()
        logger.info("%s shut down", settings.APP_NAME)

    app = FastAPI(
        title="MediaForge API",
        description="Media generation with durable multi-provider asset storage",
        version="0.1.0",
        lifespan=lifespan,
        redirect_slashes=False,
    )

    cors_origins = os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    if pipeline is not None:
        app.state.pipeline = pipeline

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "service": settings.APP_NAME,
            "status": "healthy",
            "storage": check_storage_config(settings),
        }

    return app


app = create_app()
