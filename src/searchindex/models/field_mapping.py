"""Field mapping models — the engine-agnostic field-type taxonomy."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class FieldType(str, Enum):
    """Canonical field types every engine maps to its native schema."""

    TEXT = "text"
    KEYWORD = "keyword"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    GEO_POINT = "geo_point"
    FACET = "facet"
    OBJECT = "object"
    EMBEDDING = "embedding"


class FieldRole(str, Enum):
    """Optional semantic role tag used by front ends to pick display fields."""

    TITLE = "title"
    SUMMARY = "summary"
    IMAGE = "image"
    THUMBNAIL = "thumbnail"
    URL = "url"
    DATE = "date"


# Discriminator fields injected into every document and every schema.
SECTION_FIELD = "sectionHandle"
ENTRY_TYPE_FIELD = "entryTypeHandle"
IMPLICIT_FIELDS: tuple[str, str] = (SECTION_FIELD, ENTRY_TYPE_FIELD)

DEFAULT_EMBEDDING_DIMENSIONS = 1024


class FieldMapping(BaseModel):
    """Maps one content field (or attribute) to one document key.

    ``source`` names the content field handle the value is read from, or one
    of the built-in attributes (``title``, ``id``, ``section``, ``entry_type``).
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Stable mapping identifier")
    index_field_name: str = Field(min_length=1, max_length=255, description="Document key in the index")
    field_type: FieldType = Field(default=FieldType.TEXT, description="Taxonomy type")
    weight: int = Field(default=5, ge=1, le=10, description="Relevance weight (1-10)")
    enabled: bool = Field(default=True, description="Disabled mappings are skipped everywhere")
    role: FieldRole | None = Field(default=None, description="Optional semantic role tag")
    sort_order: int = Field(default=0, description="Position within the index's mapping list")
    source: str | None = Field(default=None, description="Content field handle or attribute name")
    resolver_config: dict[str, Any] = Field(default_factory=dict, description="Resolver-specific options")

    @property
    def embedding_dimensions(self) -> int:
        """Vector length for ``embedding`` fields."""
        return int(self.resolver_config.get("dimensions") or DEFAULT_EMBEDDING_DIMENSIONS)
