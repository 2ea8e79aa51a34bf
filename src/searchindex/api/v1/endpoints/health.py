"""Health check endpoints — service and per-index engine connectivity."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from searchindex import __version__
from searchindex.api.deps import get_service
from searchindex.core.service import SearchIndexService
from searchindex.models.result import ConnectionStatus

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Response models ──────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """System health check response."""

    status: str = Field(description="Health status (e.g. 'healthy')")
    version: str = Field(description="searchindex version")
    service: str = Field(description="Service name ('searchindex')")
    indexes: list[str] = Field(description="Handles of the indexes served")
    registered_engines: list[str] = Field(description="Engine types available")


class IndexHealthResponse(BaseModel):
    """Per-index engine connectivity, keyed by index handle."""

    indexes: dict[str, ConnectionStatus]


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse, summary="System Health Check")
async def health_check(service: SearchIndexService = Depends(get_service)) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=__version__,
        service="searchindex",
        indexes=service.indexes.handles,
        registered_engines=service.engines.registered_engines,
    )


@router.get(
    "/health/indexes",
    response_model=IndexHealthResponse,
    summary="Index Health Check",
    description="Test the engine connection behind every enabled index.",
)
async def index_health(service: SearchIndexService = Depends(get_service)) -> IndexHealthResponse:
    return IndexHealthResponse(indexes=await service.health())
