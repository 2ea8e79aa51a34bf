"""Field Mapper — resolves content items into engine documents.

The mapper walks an index's enabled field mappings, reads each value
from the content item (a custom field or a built-in attribute), and runs
it through the strategy for the field's kind. Every document carries
``objectID`` and the two discriminator fields regardless of mappings.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from searchindex.models.content import ContentItem
from searchindex.models.field_mapping import ENTRY_TYPE_FIELD, SECTION_FIELD, FieldMapping, FieldType
from searchindex.models.index import Index
from searchindex.resolvers.registry import ResolverRegistry
from searchindex.resolvers.strategies import Resolver

logger = logging.getLogger(__name__)

# Built-in content attributes a mapping can read instead of a custom field
ATTRIBUTES: dict[str, Callable[[ContentItem], Any]] = {
    "id": lambda item: item.id,
    "title": lambda item: item.title or None,
    "section": lambda item: item.section or None,
    "entry_type": lambda item: item.entry_type or None,
    "status": lambda item: item.status,
    "site_id": lambda item: item.site_id,
}

# Taxonomy types resolved by type rather than by the content field's kind
_TYPE_RESOLVERS: dict[FieldType, str] = {
    FieldType.EMBEDDING: "embedding",
    FieldType.GEO_POINT: "geo_point",
}

DocumentHook = Callable[[ContentItem, Index, dict[str, Any]], dict[str, Any]]


class FieldMapper:
    """Resolves content items into plain field maps for indexing.

    Args:
        registry: Resolver registry used for kind dispatch.
    """

    def __init__(self, registry: ResolverRegistry | None = None) -> None:
        self.registry = registry or ResolverRegistry()
        self._hooks: list[DocumentHook] = []

    def add_document_hook(self, hook: DocumentHook) -> None:
        """Register a hook that may rewrite every resolved document."""
        self._hooks.append(hook)

    async def resolve(self, item: ContentItem, index: Index) -> dict[str, Any]:
        """Build the document for ``item`` under ``index``'s mappings.

        A mapping whose resolution raises is logged and omitted; None
        values are omitted as well.
        """
        document: dict[str, Any] = {
            "objectID": str(item.id),
            SECTION_FIELD: item.section or None,
            ENTRY_TYPE_FIELD: item.entry_type or None,
        }

        for mapping in index.enabled_mappings():
            try:
                value = await self._resolve_field(item, mapping)
            except Exception as e:
                logger.warning(
                    "Failed to resolve field %s for item #%s: %s",
                    mapping.index_field_name,
                    item.id,
                    e,
                )
                continue
            if value is not None:
                document[mapping.index_field_name] = value

        for hook in self._hooks:
            document = hook(item, index, document)
        return document

    def resolver_for(self, item: ContentItem, mapping: FieldMapping) -> Resolver:
        """Pick the strategy for a mapping: by type for vectors and geo points, else by field kind."""
        if mapping.field_type in _TYPE_RESOLVERS:
            return self.registry.get(_TYPE_RESOLVERS[mapping.field_type])
        field = item.fields.get(mapping.source or mapping.index_field_name)
        return self.registry.get(field.kind if field is not None else "plain_text")

    async def _resolve_field(self, item: ContentItem, mapping: FieldMapping) -> Any:
        source = mapping.source or mapping.index_field_name
        if source in ATTRIBUTES and source not in item.fields:
            value = ATTRIBUTES[source](item)
            if mapping.field_type in _TYPE_RESOLVERS:
                return await self.resolver_for(item, mapping).resolve(value, mapping, item)
            return value

        field = item.fields.get(source)
        if field is None and not mapping.resolver_config.get("sources"):
            return None
        value = field.value if field is not None else None
        return await self.resolver_for(item, mapping).resolve(value, mapping, item)
