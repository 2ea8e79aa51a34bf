"""Algolia engine — hosted search over the Algolia REST API.

Communicates with Algolia through ``httpx`` using the application id and
admin API key headers. Ranking depends on attribute order, so searchable
attributes are ordered by mapping weight. Atomic swaps use the native
``move`` operation, which replaces the destination index in one step.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from searchindex.engines.base import helpers
from searchindex.engines.base.engine import Engine
from searchindex.engines.base.exceptions import (
    ConfigurationError,
    ConnectionError,
    EngineError,
    IndexingError,
    QueryError,
    SwapError,
)
from searchindex.models.field_mapping import IMPLICIT_FIELDS, FieldMapping, FieldType
from searchindex.models.index import Index
from searchindex.models.result import ConnectionStatus, SearchResult

logger = logging.getLogger(__name__)

BROWSE_PAGE_SIZE = 1000
TASK_POLL_INTERVAL = 0.2
TASK_TIMEOUT = 60.0

SEARCHABLE = "searchableAttributes"
FACETING = "attributesForFaceting"
NUMERIC = "numericAttributesForFiltering"

_TYPE_MAP: dict[FieldType, str | None] = {
    FieldType.TEXT: SEARCHABLE,
    FieldType.OBJECT: SEARCHABLE,
    FieldType.KEYWORD: FACETING,
    FieldType.FACET: FACETING,
    FieldType.BOOLEAN: FACETING,
    FieldType.INTEGER: NUMERIC,
    FieldType.FLOAT: NUMERIC,
    FieldType.DATE: NUMERIC,
    # Geo search reads the reserved _geoloc attribute; embeddings are stored only
    FieldType.GEO_POINT: None,
    FieldType.EMBEDDING: None,
}


def _filter_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_filter_expression(filters: Mapping[str, Any]) -> str:
    """Compile unified filters into Algolia ``filters`` syntax."""
    parts: list[str] = []
    for field_name, kind, value in helpers.compile_filters(filters):
        if kind is helpers.FilterKind.RANGE:
            low, high = value
            if low is not None and high is not None:
                parts.append(f"{field_name}:{low} TO {high}")
            elif low is not None:
                parts.append(f"{field_name} >= {low}")
            else:
                parts.append(f"{field_name} <= {high}")
        elif kind is helpers.FilterKind.TERMS:
            parts.append("(" + " OR ".join(f"{field_name}:{_filter_literal(v)}" for v in value) + ")")
        else:
            parts.append(f"{field_name}:{_filter_literal(value)}")
    return " AND ".join(parts)


def _matched_fragments(value: Any) -> list[str]:
    if isinstance(value, Mapping):
        if "matchLevel" in value or "value" in value:
            text = value.get("value")
            if value.get("matchLevel", "none") != "none" and isinstance(text, str) and text:
                return [text]
            return []
        return [fragment for nested in value.values() for fragment in _matched_fragments(nested)]
    if isinstance(value, list):
        return [fragment for entry in value for fragment in _matched_fragments(entry)]
    return []


def normalise_highlight_result(data: Any) -> dict[str, list[str]]:
    """``_highlightResult`` → ``{field: [fragment]}``, keeping only real matches.

    Entries are ``{value, matchLevel}`` objects (or lists/objects of them);
    a missing ``matchLevel`` counts as ``none``.
    """
    if not isinstance(data, Mapping):
        return {}
    highlights: dict[str, list[str]] = {}
    for field_name, value in data.items():
        fragments = _matched_fragments(value)
        if fragments:
            highlights[str(field_name)] = fragments
    return highlights


def _strip_modifier(attribute: str) -> str:
    """``filterOnly(x)`` / ``searchable(x)`` / ``unordered(x)`` → ``x``."""
    if attribute.endswith(")") and "(" in attribute:
        return attribute[attribute.index("(") + 1 : -1]
    return attribute


class AlgoliaEngine(Engine):
    """Search engine adapter for Algolia.

    Supports:
      - Full-text search ranked by attribute order (weights)
      - Filters, facets and facet-value search
      - Atomic index swaps via the ``move`` operation

    Unified sort is not applied: Algolia sorts through replica indexes,
    which are managed outside this adapter.

    Config keys: ``app_id``, ``api_key``, optional ``host`` and ``index_prefix``.
    """

    engine_type = "algolia"
    display_name = "Algolia"
    date_format = helpers.DateFormat.EPOCH_SECONDS

    async def initialize(self) -> None:
        """Create the ``httpx.AsyncClient`` with Algolia auth headers."""
        app_id = self._config.get("app_id")
        api_key = self._config.get("api_key")
        if not app_id or not api_key:
            raise ConfigurationError("Algolia requires both app_id and api_key.")

        self._client = httpx.AsyncClient(
            base_url=str(self._config.get("host") or f"https://{app_id}.algolia.net").rstrip("/"),
            timeout=httpx.Timeout(float(self._config.get("timeout") or 30.0)),
            headers={
                "X-Algolia-Application-Id": str(app_id),
                "X-Algolia-API-Key": str(api_key),
                "Content-Type": "application/json",
            },
        )

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConnectionError("Algolia client not initialized.")
        return self._client

    async def _call(
        self,
        method: str,
        path: str,
        *,
        error: type[EngineError] = QueryError,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        client = self._require_client()
        try:
            resp = await getattr(client, method)(path, **kwargs)
            if allow_missing and resp.status_code == 404:
                return None
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise error(f"Algolia {method.upper()} {path} failed: {e}") from e
        return resp

    def _path(self, index: Index, suffix: str = "") -> str:
        return f"/1/indexes/{self.index_name(index)}{suffix}"

    async def test_connection(self) -> ConnectionStatus:
        if self._client is None:
            return ConnectionStatus(success=False, message="Client not initialized")
        try:
            start = time.monotonic()
            resp = await self._client.get("/1/indexes", params={"page": 0})
            latency_ms = (time.monotonic() - start) * 1000
            resp.raise_for_status()
        except Exception as e:
            return ConnectionStatus(success=False, message=f"Algolia connection failed: {e}")
        return ConnectionStatus(success=True, message="Connected to Algolia", latency_ms=latency_ms)

    # ── Schema ───────────────────────────────────────────────────────────────

    def map_field_type(self, field_type: FieldType) -> str | None:
        """Index settings list the field belongs to (None when not declared)."""
        return _TYPE_MAP.get(field_type, SEARCHABLE)

    def build_schema(self, mappings: Sequence[FieldMapping]) -> dict[str, Any]:
        enabled = helpers.enabled_mappings(mappings)
        settings: dict[str, list[str]] = {
            SEARCHABLE: [
                m.index_field_name
                for m in helpers.sort_by_weight(enabled)
                if self.map_field_type(m.field_type) == SEARCHABLE
            ],
            FACETING: list(IMPLICIT_FIELDS),
            NUMERIC: [],
        }
        for mapping in enabled:
            target = self.map_field_type(mapping.field_type)
            if target == FACETING:
                modifier = "filterOnly" if mapping.field_type is FieldType.BOOLEAN else "searchable"
                settings[FACETING].append(f"{modifier}({mapping.index_field_name})")
            elif target == NUMERIC:
                settings[NUMERIC].append(mapping.index_field_name)
        return {key: value for key, value in settings.items() if value}

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        resp = await self._call("get", self._path(index, "/settings"))
        return resp.json()

    async def get_schema_fields(self, index: Index) -> list[dict[str, str]]:
        settings = await self.get_index_schema(index)
        fields: dict[str, str] = {}
        for entry in settings.get(SEARCHABLE) or []:
            for name in str(entry).split(","):
                fields.setdefault(_strip_modifier(name.strip()), FieldType.TEXT.value)
        for entry in settings.get(FACETING) or []:
            fields.setdefault(_strip_modifier(str(entry)), FieldType.KEYWORD.value)
        for entry in settings.get(NUMERIC) or []:
            fields.setdefault(_strip_modifier(str(entry)), FieldType.FLOAT.value)
        return [{"name": name, "type": field_type} for name, field_type in fields.items()]

    # ── Index lifecycle ──────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        """Algolia creates indexes on first write; applying settings creates it."""
        await self.update_index_settings(index)
        logger.info("Created Algolia index %s", self.index_name(index))

    async def update_index_settings(self, index: Index) -> None:
        await self._call(
            "put",
            self._path(index, "/settings"),
            error=IndexingError,
            json=self.build_schema(index.field_mappings),
        )

    async def delete_index(self, index: Index) -> None:
        await self._call("delete", self._path(index), error=IndexingError, allow_missing=True)

    async def index_exists(self, index: Index) -> bool:
        return await self._call("get", self._path(index, "/settings"), allow_missing=True) is not None

    async def flush_index(self, index: Index) -> None:
        await self._call("post", self._path(index, "/clear"), error=IndexingError)

    # ── Documents ────────────────────────────────────────────────────────────

    async def index_document(self, index: Index, doc_id: str, document: Mapping[str, Any]) -> None:
        prepared = self.prepare_document(index, document)
        prepared.setdefault("objectID", str(doc_id))
        await self._call("put", self._path(index, f"/{doc_id}"), error=IndexingError, json=prepared)

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> None:
        if not documents:
            return
        requests = [{"action": "updateObject", "body": self.prepare_document(index, d)} for d in documents]
        await self._call("post", self._path(index, "/batch"), error=IndexingError, json={"requests": requests})

    async def delete_document(self, index: Index, doc_id: str) -> None:
        await self._call("delete", self._path(index, f"/{doc_id}"), error=IndexingError, allow_missing=True)

    async def delete_documents(self, index: Index, doc_ids: Sequence[str]) -> None:
        if not doc_ids:
            return
        requests = [{"action": "deleteObject", "body": {"objectID": str(doc_id)}} for doc_id in doc_ids]
        await self._call("post", self._path(index, "/batch"), error=IndexingError, json={"requests": requests})

    async def get_document_count(self, index: Index) -> int:
        resp = await self._call(
            "post",
            self._path(index, "/query"),
            allow_missing=True,
            json={"query": "", "hitsPerPage": 0},
        )
        if resp is None:
            return 0
        return int(resp.json().get("nbHits", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Every objectID, paged with the browse cursor."""
        ids: list[str] = []
        body: dict[str, Any] = {"attributesToRetrieve": ["objectID"], "hitsPerPage": BROWSE_PAGE_SIZE}
        while True:
            resp = await self._call("post", self._path(index, "/browse"), allow_missing=True, json=body)
            if resp is None:
                return ids
            data = resp.json()
            ids.extend(str(hit["objectID"]) for hit in data.get("hits", []) if "objectID" in hit)
            cursor = data.get("cursor")
            if not cursor:
                return ids
            body = {"cursor": cursor}

    # ── Search ───────────────────────────────────────────────────────────────

    def build_search_body(
        self,
        index: Index,
        query: str,
        options: Mapping[str, Any] | None = None,
    ) -> tuple[dict[str, Any], int, int]:
        """Translate unified options into an Algolia query body (0-based page).

        Returns:
            ``(body, page, per_page)`` with the 1-based page.
        """
        page, per_page, opts = helpers.extract_pagination(options)
        search_fields, opts = helpers.extract_search_fields(opts)
        sort, opts = helpers.extract_sort(opts)
        attributes, opts = helpers.extract_attributes_to_retrieve(opts)
        highlight, opts = helpers.extract_highlight(opts)
        facets, filters, opts = helpers.extract_facet_params(opts)
        max_values, opts = helpers.extract_max_values_per_facet(opts)
        _, _, opts = helpers.extract_embedding_params(opts)
        for unsupported in ("suggest", "stats", "histogram"):
            opts.pop(unsupported, None)
        if sort is not None:
            logger.debug("Algolia ignores sort %r; use a replica index instead", sort)

        if isinstance(opts.get("hitsPerPage"), int) and opts["hitsPerPage"] > 0:
            per_page = opts.pop("hitsPerPage")

        body: dict[str, Any] = {"query": query, "page": page - 1, "hitsPerPage": per_page}
        if search_fields:
            body["restrictSearchableAttributes"] = search_fields
        if attributes is not None:
            body["attributesToRetrieve"] = attributes
        if highlight:
            body["attributesToHighlight"] = ["*"] if highlight is True else highlight
        else:
            body["attributesToHighlight"] = []
        if facets:
            body["facets"] = facets
        if max_values:
            body["maxValuesPerFacet"] = max_values
        expression = build_filter_expression(filters)
        if expression:
            body["filters"] = expression

        # Native parameters (filters, page, aroundLatLng, ...) win
        body.update(opts)
        if isinstance(opts.get("page"), int):
            page = opts["page"] + 1
        return body, page, per_page

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        body, page, per_page = self.build_search_body(index, query, options)
        resp = await self._call("post", self._path(index, "/query"), json=body)
        data = resp.json()

        return SearchResult(
            hits=helpers.normalise_hits(
                data.get("hits", []),
                "objectID",
                "_score",
                "_highlightResult",
                normalise_highlight_result,
            ),
            total_hits=int(data.get("nbHits", 0) or 0),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("processingTimeMS", 0) or 0),
            facets=helpers.normalise_facet_distribution(data.get("facets")),
            raw=data,
        )

    async def search_facet_values(
        self,
        index: Index,
        fields: Sequence[str],
        query: str = "",
        max_per_field: int = 5,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        """Native ``searchForFacetValues`` per field."""
        expression = build_filter_expression(filters or {})
        results: dict[str, list[dict[str, Any]]] = {}
        for field_name in fields:
            body: dict[str, Any] = {"facetQuery": query, "maxFacetHits": max_per_field}
            if expression:
                body["filters"] = expression
            resp = await self._call("post", self._path(index, f"/facets/{field_name}/query"), json=body)
            values = helpers.normalise_facet_buckets(resp.json().get("facetHits", []), "value", "count")
            if values:
                results[field_name] = values
        return results

    # ── Atomic swap ──────────────────────────────────────────────────────────

    def supports_atomic_swap(self) -> bool:
        return True

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Move the swap generation onto production (replaces it atomically)."""
        production = self.index_name(index)
        try:
            resp = await self._call(
                "post",
                self._path(swap_index, "/operation"),
                error=SwapError,
                json={"operation": "move", "destination": production},
            )
            await self._wait_for_task(swap_index, resp.json()["taskID"])
        except SwapError:
            raise
        except EngineError as e:
            raise SwapError(f"Algolia move onto {production} failed: {e}") from e
        logger.info("Moved Algolia index %s onto %s", self.index_name(swap_index), production)

    async def _wait_for_task(self, index: Index, task_id: int) -> None:
        deadline = time.monotonic() + TASK_TIMEOUT
        while True:
            resp = await self._call("get", self._path(index, f"/task/{task_id}"), error=SwapError)
            if resp.json().get("status") == "published":
                return
            if time.monotonic() >= deadline:
                raise SwapError(f"Algolia task {task_id} not published within {TASK_TIMEOUT}s")
            await asyncio.sleep(TASK_POLL_INTERVAL)
