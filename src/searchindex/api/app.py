"""FastAPI application factory and lifecycle management."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from searchindex import __version__
from searchindex.api.deps import set_service
from searchindex.api.v1.router import router as v1_router
from searchindex.config.settings import Settings
from searchindex.core.service import SearchIndexService
from searchindex.observability.logging import setup_logging

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, service: SearchIndexService | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. If None, loads from environment.
        service: Prebuilt service (for embedding or tests). Built from
            ``settings`` when omitted.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        # Auto-detect searchindex.yaml if present
        yaml_path = Path("searchindex.yaml")
        if yaml_path.exists():
            logger.info("Loading configuration from %s", yaml_path)
            settings = Settings.from_yaml(yaml_path)
        else:
            settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifecycle (startup/shutdown)."""
        setup_logging(settings.observability)
        logger.info("Starting searchindex v%s", __version__)

        svc = service or SearchIndexService(settings)
        await svc.initialize()
        set_service(svc)

        app.state.settings = settings
        app.state.service = svc

        logger.info("searchindex is serving %d indexes", len(svc.indexes.all()))
        yield

        logger.info("Shutting down searchindex...")
        await svc.shutdown()
        set_service(None)
        logger.info("searchindex shutdown complete")

    app = FastAPI(
        title="searchindex",
        description="Engine-agnostic search API over Elasticsearch, OpenSearch, Algolia, Meilisearch and Typesense.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(v1_router, prefix="/v1")
    return app
