"""API dependencies — Dependency injection for FastAPI endpoints."""

from __future__ import annotations

from fastapi import HTTPException

from searchindex.core.indexes import IndexNotFoundError
from searchindex.core.service import SearchIndexService
from searchindex.models.index import Index

# Global service instance (set during application lifespan)
_service: SearchIndexService | None = None


def set_service(service: SearchIndexService | None) -> None:
    """Set the global service instance (called during app lifespan)."""
    global _service
    _service = service


def get_service() -> SearchIndexService:
    """Get the global searchindex service.

    Raises:
        RuntimeError: If the service is not initialized.
    """
    if _service is None:
        raise RuntimeError("searchindex service not initialized. Is the server running?")
    return _service


def get_index(service: SearchIndexService, handle: str) -> Index:
    """Look up an index, translating an unknown handle into a 404."""
    try:
        return service.indexes.get(handle)
    except IndexNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
