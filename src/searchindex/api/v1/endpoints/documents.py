"""Document endpoint — point lookup by document id."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from searchindex.api.deps import get_index, get_service
from searchindex.core.service import SearchIndexService
from searchindex.engines.base.exceptions import EngineError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/indexes/{handle}/documents/{doc_id}",
    summary="Get a document",
    responses={404: {"description": "Unknown index or document"}, 502: {"description": "Engine failure"}},
)
async def get_document(
    handle: str,
    doc_id: str,
    service: SearchIndexService = Depends(get_service),
) -> dict[str, Any]:
    get_index(service, handle)
    try:
        document = await service.get_document(handle, doc_id)
    except EngineError as e:
        logger.error("Document lookup failed on %s: %s", handle, e)
        raise HTTPException(status_code=502, detail=f"Document lookup failed: {e!s}") from e
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document '{doc_id}' not found in index '{handle}'")
    return document
