"""Typesense engine — typo-tolerant search over the Typesense REST API.

Communicates with a Typesense node through ``httpx``. Collections declare
every field up front; all mapped fields are optional so partially
resolved documents still import. Searches go through ``/multi_search`` so
long vector queries never hit URL length limits.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from searchindex.engines.base import helpers
from searchindex.engines.base.engine import Engine
from searchindex.engines.base.exceptions import ConnectionError, EngineError, IndexingError, QueryError
from searchindex.models.field_mapping import IMPLICIT_FIELDS, FieldMapping, FieldType
from searchindex.models.index import Index
from searchindex.models.result import ConnectionStatus, SearchResult

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 250
DELETE_CHUNK_SIZE = 250
SORTABLE_TYPES = {"int32", "int64", "float"}
# Field metadata returned by Typesense that cannot be sent back on create
_READ_ONLY_FIELD_KEYS = ("indexed",)

_TYPE_MAP: dict[FieldType, dict[str, Any]] = {
    FieldType.TEXT: {"type": "string", "facet": False},
    FieldType.KEYWORD: {"type": "string", "facet": True},
    FieldType.INTEGER: {"type": "int32"},
    FieldType.FLOAT: {"type": "float"},
    FieldType.BOOLEAN: {"type": "bool"},
    FieldType.DATE: {"type": "int64"},
    FieldType.GEO_POINT: {"type": "geopoint"},
    FieldType.FACET: {"type": "string[]", "facet": True},
    FieldType.OBJECT: {"type": "object"},
    FieldType.EMBEDDING: {"type": "float[]"},
}

_REVERSE_TYPE_MAP: dict[str, FieldType] = {
    "string": FieldType.TEXT,
    "string[]": FieldType.FACET,
    "int32": FieldType.INTEGER,
    "int64": FieldType.INTEGER,
    "float": FieldType.FLOAT,
    "bool": FieldType.BOOLEAN,
    "geopoint": FieldType.GEO_POINT,
    "object": FieldType.OBJECT,
    "object[]": FieldType.OBJECT,
    "float[]": FieldType.EMBEDDING,
}


def _filter_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "`" + str(value).replace("`", "") + "`"


def build_filter_expression(filters: Mapping[str, Any]) -> str:
    """Compile unified filters into a Typesense ``filter_by`` expression."""
    parts: list[str] = []
    for field_name, kind, value in helpers.compile_filters(filters):
        if kind is helpers.FilterKind.RANGE:
            low, high = value
            if low is not None and high is not None:
                parts.append(f"{field_name}:[{low}..{high}]")
            elif low is not None:
                parts.append(f"{field_name}:>={low}")
            else:
                parts.append(f"{field_name}:<={high}")
        elif kind is helpers.FilterKind.TERMS:
            parts.append(f"{field_name}:=[" + ",".join(_filter_literal(v) for v in value) + "]")
        else:
            parts.append(f"{field_name}:={_filter_literal(value)}")
    return " && ".join(parts)


def normalise_hit_highlights(hit: Mapping[str, Any]) -> dict[str, list[str]]:
    """Highlights from either the ``highlight`` object or the legacy ``highlights`` array."""
    if isinstance(hit.get("highlight"), Mapping) and hit["highlight"]:
        return helpers.normalise_highlights(hit["highlight"])
    highlights: dict[str, list[str]] = {}
    for entry in hit.get("highlights") or []:
        if not isinstance(entry, Mapping) or not entry.get("field"):
            continue
        fragments = helpers.highlight_fragments(entry.get("snippets") or entry.get("snippet"))
        if fragments:
            highlights[str(entry["field"])] = fragments
    return highlights


class TypesenseEngine(Engine):
    """Search engine adapter for Typesense.

    Supports:
      - Full-text search over string fields
      - filter_by / sort_by / facet_by and facet queries
      - Vector search over ``float[]`` fields

    Config keys: ``host``, ``port``, ``protocol``, ``api_key``, ``timeout``
    and ``index_prefix``.
    """

    engine_type = "typesense"
    display_name = "Typesense"
    date_format = helpers.DateFormat.EPOCH_SECONDS

    async def initialize(self) -> None:
        """Create the ``httpx.AsyncClient`` for the configured node."""
        protocol = self._config.get("protocol") or "http"
        host = self._config.get("host") or "localhost"
        port = self._config.get("port") or 8108
        self._client = httpx.AsyncClient(
            base_url=f"{protocol}://{host}:{port}",
            timeout=httpx.Timeout(float(self._config.get("timeout") or 30.0)),
            headers={"X-TYPESENSE-API-KEY": str(self._config.get("api_key") or "")},
        )

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ConnectionError("Typesense client not initialized.")
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
            raise error(f"Typesense {method.upper()} {path} failed: {e}") from e
        return resp

    def _path(self, index: Index, suffix: str = "") -> str:
        return f"/collections/{self.index_name(index)}{suffix}"

    async def test_connection(self) -> ConnectionStatus:
        if self._client is None:
            return ConnectionStatus(success=False, message="Client not initialized")
        try:
            start = time.monotonic()
            resp = await self._client.get("/health")
            latency_ms = (time.monotonic() - start) * 1000
            data = resp.json()
        except Exception as e:
            return ConnectionStatus(success=False, message=f"Typesense connection failed: {e}")
        if not data.get("ok"):
            return ConnectionStatus(success=False, message=f"Typesense not healthy: {data}")
        return ConnectionStatus(success=True, message="Typesense is healthy", latency_ms=latency_ms)

    # ── Schema ───────────────────────────────────────────────────────────────

    def map_field_type(self, field_type: FieldType) -> dict[str, Any]:
        return dict(_TYPE_MAP.get(field_type, {"type": "string"}))

    def build_schema(self, mappings: Sequence[FieldMapping]) -> list[dict[str, Any]]:
        """Collection fields: every mapped field optional, numerics sortable.

        The two discriminator fields are always appended as optional
        string facets.
        """
        fields: list[dict[str, Any]] = []
        for mapping in helpers.enabled_mappings(mappings):
            field_def = {"name": mapping.index_field_name, **self.map_field_type(mapping.field_type), "optional": True}
            if field_def["type"] in SORTABLE_TYPES:
                field_def["sort"] = True
            if mapping.field_type is FieldType.EMBEDDING:
                field_def["num_dim"] = mapping.embedding_dimensions
            fields.append(field_def)

        declared = {f["name"] for f in fields}
        for name in IMPLICIT_FIELDS:
            if name not in declared:
                fields.append({"name": name, "type": "string", "facet": True, "optional": True})
        return fields

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Dates to epoch seconds, ``id`` from ``objectID``, geo points to ``[lat, lng]``."""
        prepared = super().prepare_document(index, document)
        if "objectID" in prepared:
            prepared["id"] = str(prepared["objectID"])
        for name, field_type in index.field_types().items():
            point = prepared.get(name)
            if field_type is FieldType.GEO_POINT and isinstance(point, Mapping):
                lng = point.get("lng", point.get("lon"))
                if point.get("lat") is not None and lng is not None:
                    prepared[name] = [float(point["lat"]), float(lng)]
                else:
                    prepared.pop(name)
        return prepared

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        resp = await self._call("get", self._path(index))
        return resp.json()

    async def get_schema_fields(self, index: Index) -> list[dict[str, str]]:
        schema = await self.get_index_schema(index)
        fields = []
        for field_def in schema.get("fields", []):
            native = field_def.get("type", "string")
            field_type = _REVERSE_TYPE_MAP.get(native, FieldType.TEXT)
            if native == "string" and field_def.get("facet"):
                field_type = FieldType.KEYWORD
            elif native == "int64" and field_def.get("name") not in IMPLICIT_FIELDS:
                field_type = FieldType.DATE
            fields.append({"name": field_def.get("name", ""), "type": field_type.value})
        return fields

    # ── Index lifecycle ──────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        await self._call(
            "post",
            "/collections",
            error=IndexingError,
            json={"name": self.index_name(index), "fields": self.build_schema(index.field_mappings)},
        )
        logger.info("Created Typesense collection %s", self.index_name(index))

    async def update_index_settings(self, index: Index) -> None:
        """Add new fields and re-declare fields whose definition changed."""
        current = {f["name"]: f for f in (await self.get_index_schema(index)).get("fields", [])}
        changes: list[dict[str, Any]] = []
        for field_def in self.build_schema(index.field_mappings):
            existing = current.get(field_def["name"])
            if existing is None:
                changes.append(field_def)
            elif any(existing.get(k) != v for k, v in field_def.items()):
                changes.append({"name": field_def["name"], "drop": True})
                changes.append(field_def)
        if changes:
            await self._call("patch", self._path(index), error=IndexingError, json={"fields": changes})

    async def delete_index(self, index: Index) -> None:
        await self._call("delete", self._path(index), error=IndexingError, allow_missing=True)

    async def index_exists(self, index: Index) -> bool:
        return await self._call("get", self._path(index), allow_missing=True) is not None

    async def flush_index(self, index: Index) -> None:
        """Drop and recreate the collection from its live schema."""
        schema = await self.get_index_schema(index)
        fields = [
            {k: v for k, v in field_def.items() if k not in _READ_ONLY_FIELD_KEYS}
            for field_def in schema.get("fields", [])
        ]
        await self._call("delete", self._path(index), error=IndexingError)
        await self._call("post", "/collections", error=IndexingError, json={"name": schema["name"], "fields": fields})

    # ── Documents ────────────────────────────────────────────────────────────

    async def index_document(self, index: Index, doc_id: str, document: Mapping[str, Any]) -> None:
        prepared = self.prepare_document(index, {"objectID": str(doc_id), **document})
        await self._call(
            "post",
            self._path(index, "/documents"),
            error=IndexingError,
            params={"action": "upsert"},
            json=prepared,
        )

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> None:
        if not documents:
            return
        lines = "\n".join(json.dumps(self.prepare_document(index, d), default=str) for d in documents)
        resp = await self._call(
            "post",
            self._path(index, "/documents/import"),
            error=IndexingError,
            params={"action": "upsert"},
            content=lines,
            headers={"Content-Type": "text/plain"},
        )
        failures = [
            result
            for line in resp.text.splitlines()
            if line.strip() and not (result := json.loads(line)).get("success", False)
        ]
        for failure in failures[:10]:
            logger.warning("Typesense import item failed: %s", failure.get("error"))
        if failures:
            logger.warning("Typesense import had %d failed items", len(failures))
        rejected = [f for f in failures if f.get("code") in helpers.RETRYABLE_ITEM_STATUSES]
        if rejected:
            raise IndexingError(f"Typesense rejected {len(rejected)} import item(s) with a retryable status")

    async def delete_document(self, index: Index, doc_id: str) -> None:
        await self._call(
            "delete",
            self._path(index, f"/documents/{doc_id}"),
            error=IndexingError,
            allow_missing=True,
        )

    async def delete_documents(self, index: Index, doc_ids: Sequence[str]) -> None:
        ids = [str(doc_id) for doc_id in doc_ids]
        for start in range(0, len(ids), DELETE_CHUNK_SIZE):
            chunk = ids[start : start + DELETE_CHUNK_SIZE]
            await self._call(
                "delete",
                self._path(index, "/documents"),
                error=IndexingError,
                params={"filter_by": "id:[" + ",".join(chunk) + "]"},
            )

    async def get_document_count(self, index: Index) -> int:
        resp = await self._call("get", self._path(index), allow_missing=True)
        if resp is None:
            return 0
        return int(resp.json().get("num_documents", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Every document id from the JSONL export."""
        resp = await self._call(
            "get",
            self._path(index, "/documents/export"),
            allow_missing=True,
            params={"include_fields": "id"},
        )
        if resp is None:
            return []
        return [str(json.loads(line)["id"]) for line in resp.text.splitlines() if line.strip()]

    # ── Search ───────────────────────────────────────────────────────────────

    def _query_by(self, index: Index) -> str:
        names = [
            m.index_field_name
            for m in helpers.sort_by_weight(helpers.enabled_mappings(index.field_mappings))
            if m.field_type in (FieldType.TEXT, FieldType.KEYWORD)
        ]
        return ",".join(names or IMPLICIT_FIELDS)

    def build_search_params(
        self,
        index: Index,
        query: str,
        options: Mapping[str, Any] | None = None,
    ) -> tuple[dict[str, Any], int, int]:
        """Translate unified options into Typesense search parameters.

        Returns:
            ``(params, page, per_page)``.
        """
        page, per_page, opts = helpers.extract_pagination(options)
        search_fields, opts = helpers.extract_search_fields(opts)
        sort, opts = helpers.extract_sort(opts)
        attributes, opts = helpers.extract_attributes_to_retrieve(opts)
        highlight, opts = helpers.extract_highlight(opts)
        facets, filters, opts = helpers.extract_facet_params(opts)
        max_values, opts = helpers.extract_max_values_per_facet(opts)
        vector, embedding_field, opts = helpers.extract_embedding_params(opts)
        for unsupported in ("suggest", "stats", "histogram"):
            opts.pop(unsupported, None)

        if isinstance(opts.get("per_page"), int) and opts["per_page"] > 0:
            per_page = opts.pop("per_page")
        per_page = min(per_page, MAX_PER_PAGE)
        if isinstance(opts.get("page"), int) and opts["page"] > 0:
            page = opts.pop("page")

        params: dict[str, Any] = {
            "q": query or "*",
            "query_by": ",".join(search_fields) if search_fields else self._query_by(index),
            "page": page,
            "per_page": per_page,
        }
        if "sort_by" not in opts:
            if helpers.is_unified_sort(sort):
                params["sort_by"] = ",".join(f"{f}:{d}" for f, d in sort.items())
            elif isinstance(sort, str):
                params["sort_by"] = sort
        if attributes is not None:
            params["include_fields"] = ",".join(attributes) if attributes else "id"
        if isinstance(highlight, list):
            params["highlight_fields"] = ",".join(highlight)
        if facets:
            params["facet_by"] = ",".join(facets)
        if max_values:
            params["max_facet_values"] = max_values
        expression = build_filter_expression(filters)
        if expression:
            params["filter_by"] = expression

        vector_field = embedding_field or index.embedding_field()
        if vector and vector_field:
            params["vector_query"] = f"{vector_field}:([{','.join(str(v) for v in vector)}], k:{per_page})"

        # Native parameters (query_by, sort_by, filter_by, ...) win
        params.update(opts)
        return params, page, per_page

    async def _multi_search(self, index: Index, searches: list[dict[str, Any]]) -> list[dict[str, Any]]:
        collection = self.index_name(index)
        resp = await self._call(
            "post",
            "/multi_search",
            json={"searches": [{"collection": collection, **s} for s in searches]},
        )
        results = resp.json().get("results", [])
        for result in results:
            if "error" in result:
                raise QueryError(f"Typesense search failed: {result['error']}")
        return results

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        params, page, per_page = self.build_search_params(index, query, options)
        [data] = await self._multi_search(index, [params])

        hits = []
        for hit in data.get("hits", []):
            document = dict(hit.get("document") or {})
            document.setdefault("_score", hit.get("text_match"))
            document.setdefault("_highlights", normalise_hit_highlights(hit))
            hits.append(document)

        facets: dict[str, list[dict[str, Any]]] = {}
        for facet in data.get("facet_counts", []):
            values = helpers.normalise_facet_buckets(facet.get("counts"), "value", "count")
            if values:
                facets[facet.get("field_name", "")] = values

        return SearchResult(
            hits=helpers.normalise_hits(hits, "id", "_score"),
            total_hits=int(data.get("found", 0) or 0),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("search_time_ms", 0) or 0),
            facets=facets,
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
        """One zero-hit ``facet_query`` search per field."""
        if not fields:
            return {}
        expression = build_filter_expression(filters or {})
        searches = []
        for field_name in fields:
            params: dict[str, Any] = {
                "q": "*",
                "query_by": self._query_by(index),
                "facet_by": field_name,
                "max_facet_values": max_per_field,
                "per_page": 0,
            }
            if query:
                params["facet_query"] = f"{field_name}:{query}"
            if expression:
                params["filter_by"] = expression
            searches.append(params)

        results: dict[str, list[dict[str, Any]]] = {}
        for field_name, data in zip(fields, await self._multi_search(index, searches), strict=True):
            for facet in data.get("facet_counts", []):
                values = helpers.normalise_facet_buckets(facet.get("counts"), "value", "count")
                if values:
                    results[field_name] = values
        return results
