"""Meilisearch engine — instant, typo-tolerant search over the REST API.

Communicates with Meilisearch through ``httpx``. Write operations are
asynchronous tasks on the server side; only the atomic swap waits for its
task to finish, because the old generation is deleted afterwards.

Usage::

    engine = MeilisearchEngine({"host": "http://localhost:7700", "api_key": "..."})
    await engine.initialize()
    result = await engine.search(index, "rock", {"facets": ["genre"]})
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
from searchindex.engines.base.exceptions import ConnectionError, EngineError, IndexingError, QueryError, SwapError
from searchindex.models.field_mapping import IMPLICIT_FIELDS, FieldMapping, FieldType
from searchindex.models.index import Index
from searchindex.models.result import ConnectionStatus, SearchResult

logger = logging.getLogger(__name__)

PRIMARY_KEY = "objectID"
HIGHLIGHT_PRE_TAG = "<em>"
HIGHLIGHT_POST_TAG = "</em>"
ID_PAGE_SIZE = 1000
TASK_POLL_INTERVAL = 0.1
TASK_TIMEOUT = 60.0

SEARCHABLE = "searchableAttributes"
FILTERABLE = "filterableAttributes"
SORTABLE = "sortableAttributes"

_TYPE_MAP: dict[FieldType, tuple[str, ...]] = {
    FieldType.TEXT: (SEARCHABLE,),
    FieldType.OBJECT: (SEARCHABLE,),
    FieldType.KEYWORD: (FILTERABLE,),
    FieldType.FACET: (FILTERABLE,),
    FieldType.BOOLEAN: (FILTERABLE,),
    FieldType.INTEGER: (FILTERABLE, SORTABLE),
    FieldType.FLOAT: (FILTERABLE, SORTABLE),
    FieldType.DATE: (FILTERABLE, SORTABLE),
    FieldType.GEO_POINT: (FILTERABLE, SORTABLE),
    FieldType.EMBEDDING: (),
}


def _filter_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_filter_expression(filters: Mapping[str, Any]) -> str:
    """Compile unified filters into a Meilisearch filter expression."""
    parts: list[str] = []
    for field_name, kind, value in helpers.compile_filters(filters):
        if kind is helpers.FilterKind.RANGE:
            low, high = value
            if low is not None and high is not None:
                parts.append(f"{field_name} {_filter_literal(low)} TO {_filter_literal(high)}")
            elif low is not None:
                parts.append(f"{field_name} >= {_filter_literal(low)}")
            else:
                parts.append(f"{field_name} <= {_filter_literal(high)}")
        elif kind is helpers.FilterKind.TERMS:
            parts.append("(" + " OR ".join(f"{field_name} = {_filter_literal(v)}" for v in value) + ")")
        else:
            parts.append(f"{field_name} = {_filter_literal(value)}")
    return " AND ".join(parts)


def _normalise_formatted(data: Any) -> dict[str, list[str]]:
    """``_formatted`` holds every attribute; keep only fragments that were highlighted."""
    highlights = helpers.normalise_highlights(data)
    return {
        name: matched
        for name, fragments in highlights.items()
        if (matched := [f for f in fragments if HIGHLIGHT_PRE_TAG in f])
    }


class MeilisearchEngine(Engine):
    """Search engine adapter for Meilisearch.

    Supports:
      - Full-text search ranked by attribute order (weights)
      - Filter expressions, facet distribution and facet search
      - Hybrid search with user-provided embeddings
      - Atomic index swaps via ``/swap-indexes``

    Config keys: ``host``, ``api_key``, ``timeout`` and ``index_prefix``.
    """

    engine_type = "meilisearch"
    display_name = "Meilisearch"
    date_format = helpers.DateFormat.EPOCH_SECONDS

    async def initialize(self) -> None:
        """Create the ``httpx.AsyncClient``."""
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._config.get("api_key"):
            headers["Authorization"] = f"Bearer {self._config['api_key']}"

        self._client = httpx.AsyncClient(
            base_url=str(self._config.get("host") or "http://localhost:7700").rstrip("/"),
            timeout=httpx.Timeout(float(self._config.get("timeout") or 30.0)),
            headers=headers,
        )

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConnectionError("Meilisearch client not initialized.")
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
        """Issue a request, wrapping transport and status errors in ``error``.

        Returns None for a 404 when ``allow_missing`` is set.
        """
        client = self._require_client()
        try:
            resp = await getattr(client, method)(path, **kwargs)
            if allow_missing and resp.status_code == 404:
                return None
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise error(f"Meilisearch {method.upper()} {path} failed: {e}") from e
        return resp

    async def test_connection(self) -> ConnectionStatus:
        if self._client is None:
            return ConnectionStatus(success=False, message="Client not initialized")
        try:
            start = time.monotonic()
            resp = await self._client.get("/health")
            latency_ms = (time.monotonic() - start) * 1000
            data = resp.json()
        except Exception as e:
            return ConnectionStatus(success=False, message=f"Meilisearch connection failed: {e}")

        if resp.status_code != 200 or data.get("status") != "available":
            return ConnectionStatus(success=False, message=f"Meilisearch not available: {data}")
        return ConnectionStatus(success=True, message="Meilisearch is available", latency_ms=latency_ms)

    # ── Schema ───────────────────────────────────────────────────────────────

    def map_field_type(self, field_type: FieldType) -> tuple[str, ...]:
        """Index settings lists the field is placed in."""
        return _TYPE_MAP.get(field_type, (SEARCHABLE,))

    def build_schema(self, mappings: Sequence[FieldMapping]) -> dict[str, Any]:
        """Index settings for the enabled mappings.

        Meilisearch ranks matches by attribute order, so searchable
        attributes are sorted by weight. Empty lists are omitted.
        """
        enabled = helpers.enabled_mappings(mappings)
        settings: dict[str, Any] = {
            SEARCHABLE: [
                m.index_field_name
                for m in helpers.sort_by_weight(enabled)
                if SEARCHABLE in self.map_field_type(m.field_type)
            ],
            FILTERABLE: list(IMPLICIT_FIELDS),
            SORTABLE: [],
        }
        for mapping in enabled:
            targets = self.map_field_type(mapping.field_type)
            for key in (FILTERABLE, SORTABLE):
                if key in targets and mapping.index_field_name not in settings[key]:
                    settings[key].append(mapping.index_field_name)

        embedders = {
            m.index_field_name: {"source": "userProvided", "dimensions": m.embedding_dimensions}
            for m in enabled
            if m.field_type is FieldType.EMBEDDING
        }
        if embedders:
            settings["embedders"] = embedders
        return {key: value for key, value in settings.items() if value}

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Dates to epoch seconds; embedding fields move under ``_vectors``."""
        prepared = super().prepare_document(index, document)
        vectors = {
            name: prepared.pop(name)
            for name, field_type in index.field_types().items()
            if field_type is FieldType.EMBEDDING and name in prepared
        }
        if vectors:
            prepared["_vectors"] = vectors
        return prepared

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        resp = await self._call("get", f"/indexes/{self.index_name(index)}/settings")
        return resp.json()

    async def get_schema_fields(self, index: Index) -> list[dict[str, str]]:
        settings = await self.get_index_schema(index)
        fields: dict[str, str] = {}
        for name in settings.get(SEARCHABLE, []):
            if name != "*":
                fields[name] = FieldType.TEXT.value
        for name in settings.get(FILTERABLE, []):
            fields.setdefault(name, FieldType.KEYWORD.value)
        for name in settings.get("embedders") or {}:
            fields[name] = FieldType.EMBEDDING.value
        return [{"name": name, "type": field_type} for name, field_type in fields.items()]

    # ── Index lifecycle ──────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        uid = self.index_name(index)
        await self._call("post", "/indexes", error=IndexingError, json={"uid": uid, "primaryKey": PRIMARY_KEY})
        await self.update_index_settings(index)
        logger.info("Created Meilisearch index %s", uid)

    async def update_index_settings(self, index: Index) -> None:
        await self._call(
            "patch",
            f"/indexes/{self.index_name(index)}/settings",
            error=IndexingError,
            json=self.build_schema(index.field_mappings),
        )

    async def delete_index(self, index: Index) -> None:
        await self._call("delete", f"/indexes/{self.index_name(index)}", error=IndexingError, allow_missing=True)

    async def index_exists(self, index: Index) -> bool:
        resp = await self._call("get", f"/indexes/{self.index_name(index)}", allow_missing=True)
        return resp is not None

    async def flush_index(self, index: Index) -> None:
        await self._call("delete", f"/indexes/{self.index_name(index)}/documents", error=IndexingError)

    # ── Documents ────────────────────────────────────────────────────────────

    async def index_document(self, index: Index, doc_id: str, document: Mapping[str, Any]) -> None:
        prepared = self.prepare_document(index, document)
        prepared.setdefault(PRIMARY_KEY, str(doc_id))
        await self._add_documents(index, [prepared])

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> None:
        if documents:
            await self._add_documents(index, [self.prepare_document(index, d) for d in documents])

    async def _add_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        await self._call(
            "post",
            f"/indexes/{self.index_name(index)}/documents",
            error=IndexingError,
            params={"primaryKey": PRIMARY_KEY},
            json=documents,
        )

    async def delete_document(self, index: Index, doc_id: str) -> None:
        await self._call(
            "delete",
            f"/indexes/{self.index_name(index)}/documents/{doc_id}",
            error=IndexingError,
            allow_missing=True,
        )

    async def delete_documents(self, index: Index, doc_ids: Sequence[str]) -> None:
        if doc_ids:
            await self._call(
                "post",
                f"/indexes/{self.index_name(index)}/documents/delete-batch",
                error=IndexingError,
                json=[str(doc_id) for doc_id in doc_ids],
            )

    async def get_document_count(self, index: Index) -> int:
        resp = await self._call("get", f"/indexes/{self.index_name(index)}/stats", allow_missing=True)
        if resp is None:
            return 0
        return int(resp.json().get("numberOfDocuments", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        ids: list[str] = []
        offset = 0
        while True:
            resp = await self._call(
                "get",
                f"/indexes/{self.index_name(index)}/documents",
                allow_missing=True,
                params={"fields": PRIMARY_KEY, "offset": offset, "limit": ID_PAGE_SIZE},
            )
            if resp is None:
                return ids
            results = resp.json().get("results", [])
            ids.extend(str(doc[PRIMARY_KEY]) for doc in results if PRIMARY_KEY in doc)
            if len(results) < ID_PAGE_SIZE:
                return ids
            offset += ID_PAGE_SIZE

    # ── Search ───────────────────────────────────────────────────────────────

    def build_search_body(
        self,
        index: Index,
        query: str,
        options: Mapping[str, Any] | None = None,
    ) -> tuple[dict[str, Any], int, int, bool]:
        """Translate unified options into a ``/search`` body.

        Returns:
            ``(body, page, per_page, highlight_requested)``.
        """
        page, per_page, opts = helpers.extract_pagination(options)
        search_fields, opts = helpers.extract_search_fields(opts)
        sort, opts = helpers.extract_sort(opts)
        attributes, opts = helpers.extract_attributes_to_retrieve(opts)
        highlight, opts = helpers.extract_highlight(opts)
        facets, filters, opts = helpers.extract_facet_params(opts)
        vector, embedding_field, opts = helpers.extract_embedding_params(opts)
        # No suggestion, stats or histogram support; facet size is an index setting
        for unsupported in ("suggest", "stats", "histogram", "maxValuesPerFacet"):
            opts.pop(unsupported, None)

        if isinstance(opts.get("limit"), int) and opts["limit"] > 0:
            per_page = opts["limit"]
            if isinstance(opts.get("offset"), int):
                page = opts["offset"] // per_page + 1

        body: dict[str, Any] = {
            "q": query,
            "offset": helpers.page_offset(page, per_page),
            "limit": per_page,
            "showRankingScore": True,
        }
        if search_fields:
            body["attributesToSearchOn"] = search_fields
        if helpers.is_unified_sort(sort):
            body["sort"] = [f"{f}:{d}" for f, d in sort.items()]
        elif isinstance(sort, list):
            body["sort"] = sort
        if attributes is not None:
            body["attributesToRetrieve"] = attributes
        if highlight:
            body["attributesToHighlight"] = ["*"] if highlight is True else highlight
            body["highlightPreTag"] = HIGHLIGHT_PRE_TAG
            body["highlightPostTag"] = HIGHLIGHT_POST_TAG
        if facets:
            body["facets"] = facets
        expression = build_filter_expression(filters)
        if expression:
            body["filter"] = expression

        vector_field = embedding_field or index.embedding_field()
        if vector and vector_field:
            body["vector"] = vector
            body["hybrid"] = {"embedder": vector_field, "semanticRatio": 0.5 if query else 1.0}

        # Native parameters (filter, offset, limit, matchingStrategy, ...) win
        body.update(opts)
        return body, page, per_page, bool(highlight)

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        """Execute a search query against Meilisearch.

        Uses the ``/indexes/{index}/search`` endpoint.
        """
        body, page, per_page, highlight = self.build_search_body(index, query, options)
        resp = await self._call("post", f"/indexes/{self.index_name(index)}/search", json=body)
        data = resp.json()

        return SearchResult(
            hits=helpers.normalise_hits(
                data.get("hits", []),
                PRIMARY_KEY,
                "_rankingScore",
                "_formatted" if highlight else None,
                _normalise_formatted,
            ),
            total_hits=int(data.get("totalHits", data.get("estimatedTotalHits", 0)) or 0),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("processingTimeMs", 0) or 0),
            facets=helpers.normalise_facet_distribution(data.get("facetDistribution")),
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
        """Native ``/facet-search`` per field (prefix match, case-insensitive)."""
        expression = build_filter_expression(filters or {})
        results: dict[str, list[dict[str, Any]]] = {}
        for field_name in fields:
            body: dict[str, Any] = {"facetName": field_name, "facetQuery": query}
            if expression:
                body["filter"] = expression
            resp = await self._call("post", f"/indexes/{self.index_name(index)}/facet-search", json=body)
            values = helpers.normalise_facet_buckets(resp.json().get("facetHits", []), "value", "count")
            if values:
                results[field_name] = values[:max_per_field]
        return results

    # ── Atomic swap ──────────────────────────────────────────────────────────

    def supports_atomic_swap(self) -> bool:
        return True

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Exchange the two indexes, wait for the task, then drop the old generation."""
        production = self.index_name(index)
        generation = self.index_name(swap_index)
        try:
            if not await self.index_exists(index):
                await self._call("post", "/indexes", error=SwapError, json={"uid": production, "primaryKey": PRIMARY_KEY})
            resp = await self._call(
                "post",
                "/swap-indexes",
                error=SwapError,
                json=[{"indexes": [production, generation]}],
            )
            await self._wait_for_task(resp.json()["taskUid"])
        except SwapError:
            raise
        except EngineError as e:
            raise SwapError(f"Meilisearch swap of {generation} into {production} failed: {e}") from e
        logger.info("Swapped Meilisearch index %s into %s", generation, production)
        await self.delete_index(swap_index)

    async def _wait_for_task(self, task_uid: int) -> None:
        deadline = time.monotonic() + TASK_TIMEOUT
        while True:
            resp = await self._call("get", f"/tasks/{task_uid}", error=SwapError)
            task = resp.json()
            status = task.get("status")
            if status == "succeeded":
                return
            if status in ("failed", "canceled"):
                raise SwapError(f"Meilisearch task {task_uid} {status}: {task.get('error')}")
            if time.monotonic() >= deadline:
                raise SwapError(f"Meilisearch task {task_uid} did not finish within {TASK_TIMEOUT}s")
            await asyncio.sleep(TASK_POLL_INTERVAL)
