"""Search endpoints — unified search and facet-value search over one index."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from searchindex.api.deps import get_index, get_service
from searchindex.core.service import SearchIndexService
from searchindex.engines.base.exceptions import EngineError
from searchindex.models.result import SearchResult

logger = logging.getLogger(__name__)

router = APIRouter()


class SearchRequest(BaseModel):
    """Query text plus unified search options."""

    query: str = Field(default="", description="Search text; empty matches everything")
    options: dict[str, Any] = Field(
        default_factory=dict,
        description="Unified options (page, perPage, filters, facets, sort, highlight, ...)",
    )


class FacetSearchRequest(BaseModel):
    """Facet-value lookup for autocomplete-style filters."""

    fields: list[str] = Field(min_length=1, description="Facet fields to search")
    query: str = Field(default="", description="Case-insensitive substring to match")
    max_per_field: int = Field(default=5, ge=1, le=100)
    filters: dict[str, Any] = Field(default_factory=dict, description="Contextual filters")


class FacetSearchResponse(BaseModel):
    facets: dict[str, list[dict[str, Any]]]


@router.post(
    "/indexes/{handle}/search",
    response_model=SearchResult,
    summary="Search an index",
    responses={
        404: {"description": "Unknown index handle"},
        502: {"description": "The search engine rejected or failed the request"},
    },
)
async def search(
    handle: str,
    request: SearchRequest,
    service: SearchIndexService = Depends(get_service),
) -> SearchResult:
    get_index(service, handle)
    outcome = await service.search(handle, request.query, request.options)
    if not outcome.success or outcome.result is None:
        raise HTTPException(status_code=502, detail=outcome.message or "Search failed")
    return outcome.result


@router.post(
    "/indexes/{handle}/facets",
    response_model=FacetSearchResponse,
    summary="Search facet values",
    responses={404: {"description": "Unknown index handle"}, 502: {"description": "Engine failure"}},
)
async def search_facet_values(
    handle: str,
    request: FacetSearchRequest,
    service: SearchIndexService = Depends(get_service),
) -> FacetSearchResponse:
    get_index(service, handle)
    try:
        facets = await service.search_facet_values(
            handle,
            request.fields,
            request.query,
            request.max_per_field,
            request.filters,
        )
    except EngineError as e:
        logger.error("Facet search failed on %s: %s", handle, e)
        raise HTTPException(status_code=502, detail=f"Facet search failed: {e!s}") from e
    return FacetSearchResponse(facets=facets)
