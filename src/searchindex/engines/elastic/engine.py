"""Elasticsearch-compatible engine — one adapter for Elasticsearch and OpenSearch.

Both products speak the same query DSL and index/bulk APIs, so the whole
protocol lives here. Product subclasses supply a handful of hooks: client
construction, the vector field type, the k-NN query clause, and extra
index settings.
"""

from __future__ import annotations

import logging
import time
from abc import abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar

from searchindex.engines.base import helpers
from searchindex.engines.base.engine import Engine
from searchindex.engines.base.exceptions import ConnectionError, IndexingError, QueryError
from searchindex.models.field_mapping import IMPLICIT_FIELDS, FieldMapping, FieldType
from searchindex.models.index import Index
from searchindex.models.result import ConnectionStatus, SearchResult

logger = logging.getLogger(__name__)

EXACT_SUFFIX = ".keyword"
EXACT_IGNORE_ABOVE = 256
DATE_MAPPING_FORMAT = "epoch_second||epoch_millis||strict_date_optional_time"
DEFAULT_FACET_SIZE = 100
SCROLL_PAGE_SIZE = 1000
SUGGEST_NAME = "phrase_suggestion"
SCHEMA_SAMPLE_SIZE = 5

_TYPE_MAP: dict[FieldType, str] = {
    FieldType.TEXT: "text",
    FieldType.KEYWORD: "keyword",
    FieldType.INTEGER: "integer",
    FieldType.FLOAT: "float",
    FieldType.BOOLEAN: "boolean",
    FieldType.DATE: "date",
    FieldType.GEO_POINT: "geo_point",
    FieldType.FACET: "keyword",
    FieldType.OBJECT: "object",
}

_REVERSE_TYPE_MAP: dict[str, FieldType] = {
    "text": FieldType.TEXT,
    "match_only_text": FieldType.TEXT,
    "keyword": FieldType.KEYWORD,
    "constant_keyword": FieldType.KEYWORD,
    "integer": FieldType.INTEGER,
    "long": FieldType.INTEGER,
    "short": FieldType.INTEGER,
    "byte": FieldType.INTEGER,
    "float": FieldType.FLOAT,
    "double": FieldType.FLOAT,
    "half_float": FieldType.FLOAT,
    "scaled_float": FieldType.FLOAT,
    "boolean": FieldType.BOOLEAN,
    "date": FieldType.DATE,
    "date_nanos": FieldType.DATE,
    "geo_point": FieldType.GEO_POINT,
    "object": FieldType.OBJECT,
    "nested": FieldType.OBJECT,
    "dense_vector": FieldType.EMBEDDING,
    "knn_vector": FieldType.EMBEDDING,
}


@dataclass(frozen=True)
class SearchPlan:
    """What a compiled search body asked for, needed to read the response."""

    page: int
    per_page: int
    query: str = ""
    facets: list[str] = field(default_factory=list)
    stats: list[str] = field(default_factory=list)
    histograms: list[str] = field(default_factory=list)
    native_aggs: bool = False


def _as_dict(response: Any) -> dict[str, Any]:
    """Plain dict from a client response (elasticsearch-py wraps bodies)."""
    body = getattr(response, "body", response)
    return dict(body) if isinstance(body, Mapping) else {}


def _is_not_found(exc: Exception) -> bool:
    return getattr(exc, "status_code", None) == 404


class ElasticCompatEngine(Engine):
    """Search engine adapter for the Elasticsearch-compatible family.

    Supports:
      - multi_match text search, k-NN vector search and hybrid (bool.should)
      - term/terms/range filters with ``.keyword`` exact-match sub-fields
      - terms facets, stats and histogram aggregations
      - phrase suggestions and highlighting
      - search_after id listing for orphan cleanup

    Subclasses set ``engine_type``/``display_name`` and implement the hooks.
    """

    date_format = helpers.DateFormat.ISO8601
    vector_type: ClassVar[str] = "knn_vector"

    # ── Product hooks ────────────────────────────────────────────────────────

    @abstractmethod
    def _create_client(self) -> Any:
        """Build the async client from ``self._config``."""

    @abstractmethod
    def _vector_property(self, dimensions: int) -> dict[str, Any]:
        """Mapping property for an embedding field."""

    @abstractmethod
    def _knn_clause(self, field_name: str, vector: list[float], k: int) -> dict[str, Any]:
        """Query clause for k-nearest-neighbour search."""

    def _index_settings(self, index: Index) -> dict[str, Any]:
        """Extra index settings sent on creation."""
        return {}

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the async client (connectivity is checked by ``test_connection``)."""
        self._client = self._create_client()

    async def shutdown(self) -> None:
        """Close the client."""
        if self._client:
            await self._client.close()
            self._client = None

    def _require_client(self) -> Any:
        if self._client is None:
            raise ConnectionError(f"{self.display_name} client not initialized.")
        return self._client

    async def test_connection(self) -> ConnectionStatus:
        if self._client is None:
            return ConnectionStatus(success=False, message="Client not initialized")
        try:
            start = time.monotonic()
            info = _as_dict(await self._client.info())
            latency_ms = (time.monotonic() - start) * 1000
        except Exception as e:
            return ConnectionStatus(success=False, message=f"{self.display_name} connection failed: {e}")

        version = info.get("version", {}).get("number", "unknown")
        cluster = info.get("cluster_name", "unknown")
        return ConnectionStatus(
            success=True,
            message=f"Connected to {self.display_name} cluster {cluster} (v{version})",
            latency_ms=latency_ms,
        )

    # ── Schema ───────────────────────────────────────────────────────────────

    def map_field_type(self, field_type: FieldType) -> str:
        if field_type is FieldType.EMBEDDING:
            return self.vector_type
        return _TYPE_MAP.get(field_type, "text")

    def build_schema(self, mappings: Sequence[FieldMapping]) -> dict[str, Any]:
        """Mapping ``properties`` for the enabled mappings.

        Text fields get a bounded ``.keyword`` sub-field for aggregation and
        equality filters; dates accept epoch and ISO input.
        """
        properties: dict[str, Any] = {}
        for mapping in helpers.enabled_mappings(mappings):
            if mapping.field_type is FieldType.EMBEDDING:
                properties[mapping.index_field_name] = self._vector_property(mapping.embedding_dimensions)
                continue
            prop: dict[str, Any] = {"type": self.map_field_type(mapping.field_type)}
            if mapping.field_type is FieldType.TEXT:
                prop["fields"] = {"keyword": {"type": "keyword", "ignore_above": EXACT_IGNORE_ABOVE}}
            elif mapping.field_type is FieldType.DATE:
                prop["format"] = DATE_MAPPING_FORMAT
            properties[mapping.index_field_name] = prop

        for name in IMPLICIT_FIELDS:
            properties.setdefault(name, {"type": "keyword"})
        return {"properties": properties}

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        client = self._require_client()
        name = self.index_name(index)
        try:
            response = _as_dict(await client.indices.get_mapping(index=name))
        except Exception as e:
            raise QueryError(f"{self.display_name} mapping lookup failed: {e}") from e
        return response.get(name, {}).get("mappings", {})

    async def get_schema_fields(self, index: Index) -> list[dict[str, str]]:
        """Canonical fields from the live mapping.

        Read-only credentials often cannot call the mapping API; in that case
        types are inferred from a few sampled documents instead.
        """
        try:
            schema = await self.get_index_schema(index)
        except QueryError as e:
            logger.warning("%s; inferring fields from sample documents", e)
            return await self._infer_schema_fields(index)
        properties = schema.get("properties", {})
        fields = []
        for name, prop in properties.items():
            native = prop.get("type", "object") if isinstance(prop, Mapping) else "object"
            field_type = _REVERSE_TYPE_MAP.get(native, FieldType.TEXT)
            fields.append({"name": name, "type": field_type.value})
        return fields

    async def _infer_schema_fields(self, index: Index) -> list[dict[str, str]]:
        try:
            result = await self.search(index, "", {"perPage": SCHEMA_SAMPLE_SIZE})
        except QueryError as e:
            logger.warning("%s schema sampling failed for %s: %s", self.display_name, self.index_name(index), e)
            return []
        return helpers.infer_schema_fields(result.hits)

    # ── Index lifecycle ──────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        client = self._require_client()
        body: dict[str, Any] = {"mappings": self.build_schema(index.field_mappings)}
        settings = self._index_settings(index)
        if settings:
            body["settings"] = settings
        try:
            await client.indices.create(index=self.index_name(index), body=body)
        except Exception as e:
            raise IndexingError(f"{self.display_name} index creation failed: {e}") from e
        logger.info("Created %s index %s", self.display_name, self.index_name(index))

    async def update_index_settings(self, index: Index) -> None:
        client = self._require_client()
        try:
            await client.indices.put_mapping(
                index=self.index_name(index),
                body=self.build_schema(index.field_mappings),
            )
        except Exception as e:
            raise IndexingError(f"{self.display_name} mapping update failed: {e}") from e

    async def delete_index(self, index: Index) -> None:
        client = self._require_client()
        try:
            await client.indices.delete(index=self.index_name(index))
        except Exception as e:
            if _is_not_found(e):
                return
            raise IndexingError(f"{self.display_name} index deletion failed: {e}") from e

    async def index_exists(self, index: Index) -> bool:
        client = self._require_client()
        try:
            return bool(await client.indices.exists(index=self.index_name(index)))
        except Exception as e:
            raise QueryError(f"{self.display_name} index lookup failed: {e}") from e

    async def flush_index(self, index: Index) -> None:
        client = self._require_client()
        try:
            await client.delete_by_query(
                index=self.index_name(index),
                body={"query": {"match_all": {}}},
                refresh=True,
            )
        except Exception as e:
            raise IndexingError(f"{self.display_name} flush failed: {e}") from e

    # ── Documents ────────────────────────────────────────────────────────────

    async def index_document(self, index: Index, doc_id: str, document: Mapping[str, Any]) -> None:
        client = self._require_client()
        try:
            await client.index(
                index=self.index_name(index),
                id=str(doc_id),
                body=self.prepare_document(index, document),
            )
        except Exception as e:
            raise IndexingError(f"{self.display_name} indexing of {doc_id} failed: {e}") from e

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> None:
        if not documents:
            return
        name = self.index_name(index)
        operations: list[dict[str, Any]] = []
        for document in documents:
            operations.append({"index": {"_index": name, "_id": str(document["objectID"])}})
            operations.append(self.prepare_document(index, document))
        await self._bulk(operations)

    async def delete_document(self, index: Index, doc_id: str) -> None:
        client = self._require_client()
        try:
            await client.delete(index=self.index_name(index), id=str(doc_id))
        except Exception as e:
            if _is_not_found(e):
                return
            raise IndexingError(f"{self.display_name} deletion of {doc_id} failed: {e}") from e

    async def delete_documents(self, index: Index, doc_ids: Sequence[str]) -> None:
        if not doc_ids:
            return
        name = self.index_name(index)
        await self._bulk([{"delete": {"_index": name, "_id": str(doc_id)}} for doc_id in doc_ids])

    async def _bulk(self, operations: list[dict[str, Any]]) -> None:
        client = self._require_client()
        try:
            response = _as_dict(await client.bulk(body=operations))
        except Exception as e:
            raise IndexingError(f"{self.display_name} bulk request failed: {e}") from e
        if not response.get("errors"):
            return
        failed = [
            item
            for entry in response.get("items", [])
            for item in entry.values()
            if isinstance(item, Mapping) and item.get("error") and item.get("status") != 404
        ]
        for item in failed[:10]:
            logger.warning("%s bulk item %s failed: %s", self.display_name, item.get("_id"), item.get("error"))
        if failed:
            logger.warning("%s bulk request had %d failed items", self.display_name, len(failed))
        rejected = [item for item in failed if item.get("status") in helpers.RETRYABLE_ITEM_STATUSES]
        if rejected:
            raise IndexingError(
                f"{self.display_name} rejected {len(rejected)} bulk item(s) with a retryable status"
            )

    async def get_document_count(self, index: Index) -> int:
        client = self._require_client()
        try:
            response = _as_dict(await client.count(index=self.index_name(index)))
        except Exception as e:
            if _is_not_found(e):
                return 0
            raise QueryError(f"{self.display_name} count failed: {e}") from e
        return int(response.get("count", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Every document id, paged with ``search_after`` over ``_doc`` order."""
        client = self._require_client()
        ids: list[str] = []
        search_after: list[Any] | None = None
        while True:
            body: dict[str, Any] = {
                "size": SCROLL_PAGE_SIZE,
                "_source": False,
                "query": {"match_all": {}},
                "sort": [{"_doc": "asc"}],
            }
            if search_after is not None:
                body["search_after"] = search_after
            try:
                response = _as_dict(await client.search(index=self.index_name(index), body=body))
            except Exception as e:
                if _is_not_found(e):
                    return ids
                raise QueryError(f"{self.display_name} id listing failed: {e}") from e

            hits = response.get("hits", {}).get("hits", [])
            ids.extend(str(hit["_id"]) for hit in hits)
            if len(hits) < SCROLL_PAGE_SIZE:
                return ids
            search_after = hits[-1].get("sort")

    # ── Search ───────────────────────────────────────────────────────────────

    def _exact_field(self, field_name: str, field_types: Mapping[str, FieldType]) -> str:
        if field_types.get(field_name) is FieldType.TEXT:
            return f"{field_name}{EXACT_SUFFIX}"
        return field_name

    def build_filter_clauses(
        self,
        filters: Mapping[str, Any],
        field_types: Mapping[str, FieldType],
    ) -> list[dict[str, Any]]:
        """Compile unified filters to ``term``/``terms``/``range`` clauses, in input order.

        Equality and terms on text fields target the ``.keyword`` sub-field;
        range clauses always target the bare field.
        """
        clauses: list[dict[str, Any]] = []
        for field_name, kind, value in helpers.compile_filters(filters):
            if kind is helpers.FilterKind.RANGE:
                low, high = value
                bounds: dict[str, Any] = {}
                if low is not None:
                    bounds["gte"] = low
                if high is not None:
                    bounds["lte"] = high
                clauses.append({"range": {field_name: bounds}})
            elif kind is helpers.FilterKind.TERMS:
                clauses.append({"terms": {self._exact_field(field_name, field_types): value}})
            else:
                clauses.append({"term": {self._exact_field(field_name, field_types): value}})
        return clauses

    def build_search_body(
        self,
        index: Index,
        query: str,
        options: Mapping[str, Any] | None = None,
    ) -> tuple[dict[str, Any], SearchPlan]:
        """Translate a query plus unified options into a native search body.

        Native keys (``from``, ``size``, ``aggs``, a highlight object, a sort
        list, or any unknown key) are passed through and win over their
        unified equivalents.
        """
        native_highlight = (options or {}).get("highlight")
        page, per_page, opts = helpers.extract_pagination(options)
        search_fields, opts = helpers.extract_search_fields(opts)
        sort, opts = helpers.extract_sort(opts)
        attributes, opts = helpers.extract_attributes_to_retrieve(opts)
        highlight, opts = helpers.extract_highlight(opts)
        suggest, opts = helpers.extract_suggest(opts)
        facets, filters, opts = helpers.extract_facet_params(opts)
        max_values, opts = helpers.extract_max_values_per_facet(opts)
        stats_fields, opts = helpers.extract_stats(opts)
        histograms, opts = helpers.extract_histogram(opts)
        vector, embedding_field, opts = helpers.extract_embedding_params(opts)
        match_type = opts.pop("matchType", "bool_prefix")
        native_from = opts.pop("from", None)
        native_size = opts.pop("size", None)
        native_aggs = opts.pop("aggs", None)
        field_types = index.field_types()

        text_clause: dict[str, Any] | None = None
        if query:
            text_clause = {
                "multi_match": {
                    "query": query,
                    "fields": search_fields or ["*"],
                    "type": match_type,
                    "lenient": True,
                }
            }
        knn_clause: dict[str, Any] | None = None
        vector_field = embedding_field or index.embedding_field()
        if vector and vector_field:
            knn_clause = self._knn_clause(vector_field, vector, per_page)

        if text_clause and knn_clause:
            query_clause: dict[str, Any] = {"bool": {"should": [text_clause, knn_clause]}}
        else:
            query_clause = text_clause or knn_clause or {"match_all": {}}

        filter_clauses = self.build_filter_clauses(filters, field_types)
        if filter_clauses:
            query_clause = {"bool": {"must": [query_clause], "filter": filter_clauses}}

        body: dict[str, Any] = {"query": query_clause}
        if isinstance(native_size, int) and native_size > 0:
            per_page = native_size
            if isinstance(native_from, int) and native_from >= 0:
                page = native_from // per_page + 1
        body["from"] = native_from if isinstance(native_from, int) else helpers.page_offset(page, per_page)
        body["size"] = per_page

        if helpers.is_unified_sort(sort):
            body["sort"] = [{self._sort_field(f, field_types): {"order": d}} for f, d in sort.items()]
        elif sort is not None:
            body["sort"] = sort

        if attributes is not None:
            body["_source"] = attributes

        if isinstance(native_highlight, Mapping):
            body["highlight"] = dict(native_highlight)
        elif highlight is True:
            body["highlight"] = {"fields": {"*": {}}}
        elif highlight:
            body["highlight"] = {"fields": {f: {} for f in highlight}}

        if suggest and query:
            suggest_field = self._suggest_field(search_fields, field_types)
            if suggest_field:
                body["suggest"] = {
                    "text": query,
                    SUGGEST_NAME: {
                        "phrase": {
                            "field": suggest_field,
                            "size": 3,
                            "gram_size": 3,
                            "direct_generator": [{"field": suggest_field, "suggest_mode": "missing"}],
                        }
                    },
                }

        if isinstance(native_aggs, Mapping):
            body["aggs"] = dict(native_aggs)
        else:
            aggs: dict[str, Any] = {}
            for facet in facets:
                aggs[facet] = {
                    "terms": {
                        "field": self._exact_field(facet, field_types),
                        "size": max_values or DEFAULT_FACET_SIZE,
                    }
                }
            for stat_field in stats_fields:
                aggs[f"{stat_field}_stats"] = {"stats": {"field": stat_field}}
            for hist_field, config in histograms.items():
                histogram: dict[str, Any] = {"field": hist_field, "interval": config["interval"]}
                if "min" in config or "max" in config:
                    histogram["extended_bounds"] = {k: config[k] for k in ("min", "max") if k in config}
                aggs[f"{hist_field}_histogram"] = {"histogram": histogram}
            if aggs:
                body["aggs"] = aggs

        # Anything left is a native parameter (track_total_hits, min_score, ...)
        body.update(opts)

        plan = SearchPlan(
            page=page,
            per_page=per_page,
            query=query,
            facets=facets,
            stats=stats_fields,
            histograms=list(histograms),
            native_aggs=isinstance(native_aggs, Mapping),
        )
        return body, plan

    def _sort_field(self, field_name: str, field_types: Mapping[str, FieldType]) -> str:
        return self._exact_field(field_name, field_types)

    @staticmethod
    def _suggest_field(search_fields: list[str] | None, field_types: Mapping[str, FieldType]) -> str | None:
        if search_fields:
            return search_fields[0] if search_fields[0] != "*" else None
        for name, field_type in field_types.items():
            if field_type is FieldType.TEXT:
                return name
        return None

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        """Execute a search against the index."""
        client = self._require_client()
        body, plan = self.build_search_body(index, query, options)
        try:
            start = time.monotonic()
            response = _as_dict(await client.search(index=self.index_name(index), body=body))
            took_ms = int((time.monotonic() - start) * 1000)
        except Exception as e:
            raise QueryError(f"{self.display_name} query failed: {e}") from e
        return self.normalise_response(response, plan, took_ms)

    def normalise_response(self, response: Mapping[str, Any], plan: SearchPlan, took_ms: int = 0) -> SearchResult:
        hits_block = response.get("hits", {})
        total = hits_block.get("total", 0)
        if isinstance(total, Mapping):
            total = total.get("value", 0)

        return SearchResult(
            hits=self.normalise_raw_hits(hits_block.get("hits", [])),
            total_hits=int(total or 0),
            page=plan.page,
            per_page=plan.per_page,
            processing_time_ms=int(response.get("took", took_ms) or 0),
            facets=self.normalise_raw_facets(response, None if plan.native_aggs else plan.facets),
            stats=self.normalise_raw_stats(response, plan.stats),
            histograms=self.normalise_raw_histograms(response, plan.histograms),
            suggestions=self.normalise_raw_suggestions(response, plan.query),
            raw=dict(response),
        )

    @staticmethod
    def normalise_raw_hits(hits: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Flatten ``_source`` and lift ``_id``, ``_score`` and ``highlight``."""
        normalised: list[dict[str, Any]] = []
        for hit in hits:
            doc = dict(hit.get("_source") or {})
            doc.setdefault("objectID", str(hit.get("_id", "")))
            doc.setdefault("_score", hit.get("_score"))
            doc.setdefault("_highlights", helpers.normalise_highlights(hit.get("highlight")))
            normalised.append(doc)
        return normalised

    @staticmethod
    def normalise_raw_facets(response: Mapping[str, Any], facet_fields: list[str] | None) -> dict[str, list[dict[str, Any]]]:
        """Terms-aggregation buckets → facet map; fields with no buckets are omitted.

        With ``facet_fields=None`` (native ``aggs``), every bucketed
        aggregation except histograms is read.
        """
        aggregations = response.get("aggregations") or {}
        if facet_fields is None:
            facet_fields = [
                name
                for name, agg in aggregations.items()
                if isinstance(agg, Mapping) and "buckets" in agg and not name.endswith("_histogram")
            ]
        facets: dict[str, list[dict[str, Any]]] = {}
        for name in facet_fields:
            agg = aggregations.get(name)
            if not isinstance(agg, Mapping):
                continue
            values = helpers.normalise_facet_buckets(agg.get("buckets"))
            if values:
                facets[name] = values
        return facets

    @staticmethod
    def normalise_raw_stats(response: Mapping[str, Any], stats_fields: list[str]) -> dict[str, dict[str, float]]:
        """``{field}_stats`` aggregations → ``{field: {min, max, count, sum, avg}}``."""
        aggregations = response.get("aggregations") or {}
        stats: dict[str, dict[str, float]] = {}
        for field_name in stats_fields:
            agg = aggregations.get(f"{field_name}_stats")
            if not isinstance(agg, Mapping) or agg.get("min") is None or agg.get("max") is None:
                continue
            stats[field_name] = {
                key: agg[key] for key in ("min", "max", "count", "sum", "avg") if agg.get(key) is not None
            }
        return stats

    @staticmethod
    def normalise_raw_histograms(
        response: Mapping[str, Any],
        histogram_fields: list[str],
    ) -> dict[str, list[dict[str, Any]]]:
        """``{field}_histogram`` buckets → ascending ``[{key, count}]``; empty results omitted."""
        aggregations = response.get("aggregations") or {}
        histograms: dict[str, list[dict[str, Any]]] = {}
        for field_name in histogram_fields:
            agg = aggregations.get(f"{field_name}_histogram")
            buckets = agg.get("buckets") if isinstance(agg, Mapping) else None
            if not buckets:
                continue
            entries = [
                {"key": bucket.get("key"), "count": int(bucket.get("doc_count") or 0)}
                for bucket in buckets
                if isinstance(bucket, Mapping)
            ]
            histograms[field_name] = sorted(entries, key=lambda e: e["key"])
        return histograms

    @staticmethod
    def normalise_raw_suggestions(response: Mapping[str, Any], query: str) -> list[str]:
        suggestions: list[str] = []
        for entry in (response.get("suggest") or {}).get(SUGGEST_NAME, []):
            for option in entry.get("options", []):
                text = option.get("text")
                if text and text != query and text not in suggestions:
                    suggestions.append(text)
        return suggestions

    async def search_facet_values(
        self,
        index: Index,
        fields: Sequence[str],
        query: str = "",
        max_per_field: int = 5,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        """Zero-hit search that only fetches terms buckets, filtered by a contains-regex."""
        client = self._require_client()
        body = self.build_facet_search_body(index, fields, query, max_per_field, filters)
        try:
            response = _as_dict(await client.search(index=self.index_name(index), body=body))
        except Exception as e:
            raise QueryError(f"{self.display_name} facet search failed: {e}") from e
        return self.normalise_raw_facets(response, list(fields))

    def build_facet_search_body(
        self,
        index: Index,
        fields: Sequence[str],
        query: str = "",
        max_per_field: int = 5,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        field_types = index.field_types()
        aggs: dict[str, Any] = {}
        for field_name in fields:
            terms: dict[str, Any] = {"field": self._exact_field(field_name, field_types), "size": max_per_field}
            if query:
                terms["include"] = helpers.build_case_insensitive_regex(query)
            aggs[field_name] = {"terms": terms}

        body: dict[str, Any] = {"size": 0, "aggs": aggs}
        clauses = self.build_filter_clauses(filters or {}, field_types)
        if clauses:
            body["query"] = {"bool": {"filter": clauses}}
        return body
