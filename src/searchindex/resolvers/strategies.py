"""Resolver strategies — turn one content field value into an indexable value.

Each strategy handles one field kind. Strategies are stateless apart from
injected collaborators (the embedding client), so a single instance is
shared across every document a mapper resolves.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from searchindex.embeddings.client import EmbeddingClient
    from searchindex.models.content import ContentItem
    from searchindex.models.field_mapping import FieldMapping

logger = logging.getLogger(__name__)


class Resolver(ABC):
    """Base class for field resolvers.

    Attributes:
        kind: The field kind tag this strategy is registered under.
    """

    kind: ClassVar[str]

    @abstractmethod
    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        """Resolve ``value`` for ``mapping``; None means "omit the field"."""


class PlainTextResolver(Resolver):
    kind = "plain_text"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, (str, int, float, bool)):
            return str(value)
        return None


class NumberResolver(Resolver):
    """Integers stay integers; everything else is coerced to float."""

    kind = "number"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return float(value)


class BooleanResolver(Resolver):
    kind = "boolean"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if value is None:
            return None
        return bool(value)


class DateResolver(Resolver):
    """Datetimes become epoch seconds, or ISO-8601 with ``format: iso``.

    Other values pass through; engines normalise dates on write.
    """

    kind = "date"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            if mapping.resolver_config.get("format") == "iso":
                return value.isoformat()
            return int(value.timestamp())
        return value


class OptionsResolver(Resolver):
    """Single- and multi-select option fields.

    A multi-value field is a list of option strings or of
    ``{"value", "selected"}`` objects; only selected options are kept.
    """

    kind = "options"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, Mapping):
            return str(value["value"]) if value.get("value") not in (None, "") else None
        if not isinstance(value, list):
            return str(value)

        selected: list[str] = []
        for option in value:
            if isinstance(option, Mapping):
                if option.get("selected", True) and option.get("value") not in (None, ""):
                    selected.append(str(option["value"]))
            elif option not in (None, ""):
                selected.append(str(option))
        return selected or None


class RelationResolver(Resolver):
    """Related items (tags, entries, categories) as titles, ids, slugs or objects.

    The output form is chosen with ``resolver_config["format"]``; the
    default is ``titles``.
    """

    kind = "relation"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if not value:
            return None
        related = [r if isinstance(r, Mapping) else {"id": r, "title": str(r)} for r in value]

        fmt = mapping.resolver_config.get("format", "titles")
        if fmt == "ids":
            resolved: list[Any] = [r.get("id") for r in related if r.get("id") is not None]
        elif fmt == "slugs":
            resolved = [r["slug"] for r in related if r.get("slug")]
        elif fmt == "objects":
            resolved = [{"id": r.get("id"), "title": r.get("title"), "slug": r.get("slug")} for r in related]
        else:
            resolved = [r["title"] for r in related if r.get("title")]
        return resolved or None


class GeoPointResolver(Resolver):
    """``{"lat", "lon"}`` from a lat/lng object or from two numeric fields.

    With a scalar latitude, the longitude is read from the content field
    named by ``resolver_config["lngFieldHandle"]``.
    """

    kind = "geo_point"

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, Mapping):
            lat = value.get("lat")
            lng = value.get("lng", value.get("lon"))
        else:
            lat = value
            lng_handle = mapping.resolver_config.get("lngFieldHandle")
            if not lng_handle:
                logger.warning(
                    "Geo point mapping %s has no lngFieldHandle in resolver_config", mapping.index_field_name
                )
                return None
            lng_field = item.fields.get(lng_handle)
            lng = lng_field.value if lng_field is not None else None
        if lat is None or lng is None:
            return None
        return {"lat": float(lat), "lon": float(lng)}


class EmbeddingResolver(Resolver):
    """Precomputed vectors pass through; text is embedded as a document.

    ``resolver_config["sources"]`` may name several content fields whose
    text is joined before embedding.
    """

    kind = "embedding"

    def __init__(self, client: EmbeddingClient | None = None) -> None:
        self._client = client

    async def resolve(self, value: Any, mapping: FieldMapping, item: ContentItem) -> Any:
        if isinstance(value, list) and value and all(isinstance(v, (int, float)) for v in value):
            return [float(v) for v in value]

        sources = mapping.resolver_config.get("sources")
        if sources:
            parts = [str(item.fields[h].value) for h in sources if h in item.fields and item.fields[h].value]
            text = "\n".join(parts)
        else:
            text = str(value) if isinstance(value, str) else ""
        if not text or self._client is None:
            return None
        return await self._client.embed(text, mapping.resolver_config.get("model"), input_type="document")
