"""Data models — index definitions, field mappings, content items and results."""

from searchindex.models.content import ContentField, ContentItem
from searchindex.models.field_mapping import IMPLICIT_FIELDS, FieldMapping, FieldRole, FieldType
from searchindex.models.index import Index, IndexMode
from searchindex.models.result import ConnectionStatus, SearchOutcome, SearchResult, SwapVerification

__all__ = [
    "IMPLICIT_FIELDS",
    "ConnectionStatus",
    "ContentField",
    "ContentItem",
    "FieldMapping",
    "FieldRole",
    "FieldType",
    "Index",
    "IndexMode",
    "SearchOutcome",
    "SearchResult",
    "SwapVerification",
]
