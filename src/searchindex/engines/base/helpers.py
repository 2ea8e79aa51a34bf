"""Shared engine helpers — pure functions composed by every engine adapter.

Nothing in here performs I/O. Adapters call these to pull the unified
options apart, compile filters, and normalise native responses into the
canonical ``SearchResult`` shapes.

Unified option keys (camelCase, engine-agnostic):
  page, perPage, fields, sort, filters, facets, maxValuesPerFacet,
  attributesToRetrieve, highlight, suggest, stats, histogram,
  embedding, embeddingField, vectorSearch, embeddingModel

Any other key is treated as a native engine parameter and passed through.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from searchindex.models.field_mapping import FieldMapping, FieldType

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 20
SWAP_SUFFIX = "_swap"
# Per-item write statuses worth a queue retry (throttled or overloaded).
RETRYABLE_ITEM_STATUSES = frozenset({429, 503})
# Epoch values at or above this magnitude are milliseconds.
EPOCH_MS_THRESHOLD = 10_000_000_000

# Numeric lists at least this long are read back as vectors during inference.
EMBEDDING_MIN_DIMS = 8

_NUMERIC_RE = re.compile(r"^-?\d+(\.\d+)?$")
_DATE_NAME_RE = re.compile(r"(_at|_date|_time|timestamp)$")
_DATE_PREFIX_RE = re.compile(r"^(created|updated|deleted|modified|date)_")
_BOOL_NAME_RE = re.compile(r"^(is_|has_)|_(enabled|active|visible|archived)$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T\s].*)?$")
_REGEX_RESERVED = set('.?+*|{}[]()"\\#@&<>~^$')

Options = Mapping[str, Any]


class DateFormat(str, Enum):
    """Wire formats engines expect for date fields."""

    EPOCH_SECONDS = "epoch_seconds"
    ISO8601 = "iso8601"


class FilterKind(str, Enum):
    """The three filter shapes of the unified option set."""

    EQUALITY = "equality"
    TERMS = "terms"
    RANGE = "range"


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        return int(float(value))
    return default


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ── Pagination ────────────────────────────────────────────────────────────────


def extract_pagination(
    options: Options | None,
    default_per_page: int = DEFAULT_PER_PAGE,
) -> tuple[int, int, dict[str, Any]]:
    """Pop ``page``/``perPage``, clamping page to >= 1 and perPage to >= 1.

    Returns:
        ``(page, per_page, remaining_options)``.
    """
    remaining = dict(options or {})
    page = max(_as_int(remaining.pop("page", 1), 1), 1)
    per_page = _as_int(remaining.pop("perPage", default_per_page), default_per_page)
    if per_page < 1:
        per_page = default_per_page
    return page, per_page, remaining


def page_offset(page: int, per_page: int) -> int:
    """Zero-based offset of the first hit on ``page``."""
    return (max(page, 1) - 1) * per_page


def compute_total_pages(total_hits: int, per_page: int) -> int:
    if per_page <= 0:
        return 0
    return math.ceil(total_hits / per_page)


# ── Option extraction ─────────────────────────────────────────────────────────


def extract_sort(options: Options | None) -> tuple[Any, dict[str, Any]]:
    """Pop ``sort``. Returns None for absent or unusable values."""
    remaining = dict(options or {})
    sort = remaining.pop("sort", None)
    if isinstance(sort, (Mapping, list, str)) and sort:
        return sort, remaining
    return None, remaining


def is_unified_sort(sort: Any) -> bool:
    """True for ``{field: "asc"|"desc", ...}``; anything else is native syntax."""
    if not isinstance(sort, Mapping) or not sort:
        return False
    return all(isinstance(k, str) and v in ("asc", "desc") for k, v in sort.items())


def extract_search_fields(options: Options | None) -> tuple[list[str] | None, dict[str, Any]]:
    remaining = dict(options or {})
    fields = remaining.pop("fields", None)
    if isinstance(fields, list):
        return [str(f) for f in fields], remaining
    return None, remaining


def extract_attributes_to_retrieve(options: Options | None) -> tuple[list[str] | None, dict[str, Any]]:
    """Pop ``attributesToRetrieve``; an empty list is kept (retrieve nothing)."""
    remaining = dict(options or {})
    attributes = remaining.pop("attributesToRetrieve", None)
    if isinstance(attributes, list):
        return [str(a) for a in attributes], remaining
    return None, remaining


def extract_highlight(options: Options | None) -> tuple[bool | list[str] | None, dict[str, Any]]:
    """Pop ``highlight``: True, a field list, or None when not requested."""
    remaining = dict(options or {})
    highlight = remaining.pop("highlight", None)
    if highlight is True:
        return True, remaining
    if isinstance(highlight, list):
        return [str(f) for f in highlight], remaining
    return None, remaining


def extract_suggest(options: Options | None) -> tuple[bool, dict[str, Any]]:
    remaining = dict(options or {})
    return bool(remaining.pop("suggest", False)), remaining


def extract_facet_params(
    options: Options | None,
) -> tuple[list[str], dict[str, Any], dict[str, Any]]:
    """Pop ``facets`` and ``filters``.

    Returns:
        ``(facet_fields, filters, remaining_options)``; malformed values
        become empty.
    """
    remaining = dict(options or {})
    facets = remaining.pop("facets", None)
    filters = remaining.pop("filters", None)
    facet_fields = [str(f) for f in facets] if isinstance(facets, list) else []
    return facet_fields, dict(filters) if isinstance(filters, Mapping) else {}, remaining


def extract_max_values_per_facet(options: Options | None) -> tuple[int | None, dict[str, Any]]:
    remaining = dict(options or {})
    value = _as_int(remaining.pop("maxValuesPerFacet", None), 0)
    return (value if value > 0 else None), remaining


def extract_stats(options: Options | None) -> tuple[list[str], dict[str, Any]]:
    remaining = dict(options or {})
    stats = remaining.pop("stats", None)
    if isinstance(stats, list):
        return [str(f) for f in stats if isinstance(f, str) and f], remaining
    return [], remaining


def extract_histogram(options: Options | None) -> tuple[dict[str, dict[str, float]], dict[str, Any]]:
    """Pop ``histogram`` and normalise each entry to ``{interval[, min, max]}``.

    A bare number is shorthand for ``{"interval": n}``. Entries whose interval
    is missing, non-numeric or not positive are dropped.
    """
    remaining = dict(options or {})
    raw = remaining.pop("histogram", None)
    if not isinstance(raw, Mapping):
        return {}, remaining

    configs: dict[str, dict[str, float]] = {}
    for field, setting in raw.items():
        if _is_number(setting):
            setting = {"interval": setting}
        if not isinstance(setting, Mapping) or not _is_number(setting.get("interval")) or setting["interval"] <= 0:
            logger.debug("Dropping malformed histogram setting for %s: %r", field, setting)
            continue
        config = {"interval": float(setting["interval"])}
        for bound in ("min", "max"):
            if _is_number(setting.get(bound)):
                config[bound] = float(setting[bound])
        configs[str(field)] = config
    return configs, remaining


def extract_embedding_params(options: Options | None) -> tuple[list[float] | None, str | None, dict[str, Any]]:
    """Pop the vector-search keys.

    Returns:
        ``(vector, embedding_field, remaining_options)``; the vector is None
        unless a non-empty numeric list was supplied.
    """
    remaining = dict(options or {})
    vector = remaining.pop("embedding", None)
    field = remaining.pop("embeddingField", None)
    remaining.pop("vectorSearch", None)
    remaining.pop("embeddingModel", None)
    if not isinstance(vector, list) or not vector or not all(_is_number(v) for v in vector):
        vector = None
    return vector, (str(field) if field else None), remaining


# ── Filters ───────────────────────────────────────────────────────────────────


def is_range_filter(value: Any) -> bool:
    """An object whose keys are only ``min`` and/or ``max``."""
    return isinstance(value, Mapping) and bool(value) and set(value) <= {"min", "max"}


def range_bounds(value: Mapping[str, Any]) -> tuple[Any, Any]:
    """``(min, max)`` with None and empty strings treated as absent."""
    low = value.get("min")
    high = value.get("max")
    return (None if low in (None, "") else low), (None if high in (None, "") else high)


def classify_filter(value: Any) -> FilterKind | None:
    """Classify one filter value, or return None when it cannot be compiled."""
    if is_range_filter(value):
        return FilterKind.RANGE if range_bounds(value) != (None, None) else None
    if isinstance(value, Mapping):
        return None
    if isinstance(value, (list, tuple)):
        return FilterKind.TERMS if any(_is_scalar(v) for v in value) else None
    if _is_scalar(value):
        return FilterKind.EQUALITY
    return None


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def compile_filters(filters: Mapping[str, Any]) -> list[tuple[str, FilterKind, Any]]:
    """Classify every filter in input order, dropping malformed ones.

    Terms values are reduced to their scalar members; range values to a
    ``(min, max)`` tuple.
    """
    compiled: list[tuple[str, FilterKind, Any]] = []
    for field, value in filters.items():
        kind = classify_filter(value)
        if kind is None:
            logger.debug("Dropping malformed filter for %s: %r", field, value)
            continue
        if kind is FilterKind.TERMS:
            value = [v for v in value if _is_scalar(v)]
        elif kind is FilterKind.RANGE:
            value = range_bounds(value)
        compiled.append((str(field), kind, value))
    return compiled


# ── Response normalisation ───────────────────────────────────────────────────


def highlight_fragments(value: Any) -> list[str]:
    """Flatten one field's highlight data into non-empty string fragments.

    Accepts a bare string, a list of strings, a ``{"snippet": ...}`` object,
    or a list of such objects. Anything else is discarded.
    """
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, Mapping):
        snippet = value.get("snippet")
        return [snippet] if isinstance(snippet, str) and snippet else []
    if isinstance(value, list):
        fragments: list[str] = []
        for entry in value:
            if isinstance(entry, str):
                if entry:
                    fragments.append(entry)
            elif isinstance(entry, Mapping):
                fragments.extend(highlight_fragments(entry))
        return fragments
    return []


def normalise_highlights(data: Any) -> dict[str, list[str]]:
    """Normalise native highlight data to ``{field: [fragment, ...]}``."""
    if not isinstance(data, Mapping):
        return {}
    highlights: dict[str, list[str]] = {}
    for field, value in data.items():
        fragments = highlight_fragments(value)
        if fragments:
            highlights[str(field)] = fragments
    return highlights


def normalise_hits(
    hits: Iterable[Mapping[str, Any]],
    id_key: str,
    score_key: str | None,
    highlight_key: str | None = None,
    highlight_normaliser: Callable[[Any], dict[str, list[str]]] = normalise_highlights,
) -> list[dict[str, Any]]:
    """Give every hit ``objectID``, ``_score`` and ``_highlights``.

    Values already present on the hit are preserved; native keys are kept.
    """
    normalised: list[dict[str, Any]] = []
    for hit in hits:
        doc = dict(hit)
        if "objectID" not in doc:
            native_id = hit.get(id_key)
            doc["objectID"] = str(native_id) if native_id is not None else ""
        if "_score" not in doc:
            doc["_score"] = hit.get(score_key) if score_key else None
        if "_highlights" not in doc:
            doc["_highlights"] = highlight_normaliser(hit.get(highlight_key)) if highlight_key else {}
        normalised.append(doc)
    return normalised


def normalise_facet_counts(counts: Mapping[Any, Any]) -> list[dict[str, Any]]:
    """``{value: count}`` → ``[{"value", "count"}]`` sorted by count descending."""
    entries = [{"value": value, "count": int(count)} for value, count in counts.items()]
    return sorted(entries, key=lambda e: e["count"], reverse=True)


def normalise_facet_buckets(
    buckets: Any,
    value_key: str = "key",
    count_key: str = "doc_count",
) -> list[dict[str, Any]]:
    """Native bucket list → ``[{"value", "count"}]`` sorted by count descending."""
    if not isinstance(buckets, list):
        return []
    entries = [
        {"value": bucket.get(value_key), "count": int(bucket.get(count_key) or 0)}
        for bucket in buckets
        if isinstance(bucket, Mapping)
    ]
    return sorted(entries, key=lambda e: e["count"], reverse=True)


def normalise_facet_distribution(distribution: Any) -> dict[str, list[dict[str, Any]]]:
    """``{field: {value: count}}`` → canonical facet map, omitting empty fields."""
    if not isinstance(distribution, Mapping):
        return {}
    facets: dict[str, list[dict[str, Any]]] = {}
    for field, counts in distribution.items():
        if isinstance(counts, Mapping) and counts:
            facets[str(field)] = normalise_facet_counts(counts)
    return facets


def build_case_insensitive_regex(query: str) -> str:
    """Compile a case-insensitive "contains" regex for facet-value matching.

    Letters become ``[xX]`` classes and regex metacharacters are escaped, so
    ``"a.b"`` → ``.*[aA]\\.[bB].*`` and ``""`` → ``.*.*``.
    """
    parts: list[str] = []
    for ch in query:
        if ch in _REGEX_RESERVED:
            parts.append("\\" + ch)
        elif ch.lower() != ch.upper():
            parts.append(f"[{ch.lower()}{ch.upper()}]")
        else:
            parts.append(ch)
    return ".*" + "".join(parts) + ".*"


# ── Schema ────────────────────────────────────────────────────────────────────


def sort_by_weight(mappings: Sequence[FieldMapping]) -> list[FieldMapping]:
    """Order mappings by weight, highest first (stable for equal weights)."""
    return sorted(mappings, key=lambda m: m.weight, reverse=True)


def enabled_mappings(mappings: Iterable[FieldMapping]) -> list[FieldMapping]:
    return [m for m in mappings if m.enabled]


def build_swap_handle(handle: str) -> str:
    """Handle of the swap generation for a production handle."""
    return f"{handle}{SWAP_SUFFIX}"


def infer_field_type(name: str, value: Any) -> FieldType:
    """Guess a canonical type from a field name and one sample value.

    Booleans win outright; otherwise name conventions (``*_at``,
    ``is_*`` ...) beat the value's type, so epoch integers under
    date-like names still come back as dates.
    """
    if isinstance(value, bool):
        return FieldType.BOOLEAN

    lower = name.lower()
    if _DATE_NAME_RE.search(lower) or _DATE_PREFIX_RE.match(lower):
        return FieldType.DATE
    if _BOOL_NAME_RE.search(lower):
        return FieldType.BOOLEAN

    if isinstance(value, int):
        return FieldType.INTEGER
    if isinstance(value, float):
        return FieldType.FLOAT
    if isinstance(value, Sequence) and not isinstance(value, str):
        if value:
            first = value[0]
            if isinstance(first, str):
                return FieldType.FACET
            if isinstance(first, int | float) and not isinstance(first, bool) and len(value) >= EMBEDDING_MIN_DIMS:
                return FieldType.EMBEDDING
        return FieldType.OBJECT
    if isinstance(value, Mapping):
        lat, lng = value.get("lat"), value.get("lng")
        if _is_number(lat) and _is_number(lng):
            return FieldType.GEO_POINT
        return FieldType.OBJECT
    if isinstance(value, str):
        if _ISO_DATE_RE.match(value):
            return FieldType.DATE
        if _looks_like_url(value):
            return FieldType.KEYWORD
        return FieldType.TEXT if len(value) > 64 else FieldType.KEYWORD
    return FieldType.TEXT


def infer_schema_fields(documents: Iterable[Any]) -> list[dict[str, str]]:
    """Type every field seen across sampled documents.

    A null in one document is typed from the first non-null value in a
    later one. Underscore-prefixed keys (``_score``, ``_highlights``) are
    result metadata and skipped.
    """
    values: dict[str, Any] = {}
    for doc in documents:
        if not isinstance(doc, Mapping):
            continue
        for name, value in doc.items():
            if not isinstance(name, str) or name.startswith("_"):
                continue
            if values.get(name) is None:
                values[name] = value
    return [{"name": name, "type": infer_field_type(name, value).value} for name, value in values.items()]


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return True
    return isinstance(value, str) and bool(_NUMERIC_RE.match(value))


def _looks_like_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


# ── Dates ─────────────────────────────────────────────────────────────────────


def _epoch_from_number(value: float) -> int:
    if abs(value) >= EPOCH_MS_THRESHOLD:
        return round(value / 1000)
    return int(value)


def date_to_epoch_seconds(value: Any) -> int | None:
    """Convert a datetime, epoch seconds/millis or ISO-8601 string to epoch seconds.

    Naive datetimes are taken as UTC. Returns None for anything unparsable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=UTC)
        return int(moment.timestamp())
    if isinstance(value, date):
        return int(datetime(value.year, value.month, value.day, tzinfo=UTC).timestamp())
    if _is_number(value):
        return _epoch_from_number(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if _NUMERIC_RE.match(text):
            return _epoch_from_number(float(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return date_to_epoch_seconds(parsed)
    return None


def normalise_date_value(value: Any, fmt: DateFormat) -> int | str | None:
    seconds = date_to_epoch_seconds(value)
    if seconds is None:
        return None
    if fmt is DateFormat.ISO8601:
        try:
            return datetime.fromtimestamp(seconds, UTC).isoformat()
        except (ValueError, OverflowError, OSError):
            logger.debug("Dropping out-of-range date value: %r", value)
            return None
    return seconds


def normalise_date_fields(
    document: Mapping[str, Any],
    field_types: Mapping[str, FieldType],
    fmt: DateFormat,
) -> dict[str, Any]:
    """Return a copy of ``document`` with every date-typed field in wire form.

    Unparsable dates become None so one bad value never fails the write.
    """
    normalised = dict(document)
    for name, field_type in field_types.items():
        if field_type is not FieldType.DATE or normalised.get(name) is None:
            continue
        value = normalise_date_value(normalised[name], fmt)
        if value is None:
            logger.debug("Unparsable date in field %s: %r", name, normalised[name])
        normalised[name] = value
    return normalised
