"""Index model — one logical search index bound to one engine."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from searchindex.models.field_mapping import FieldMapping, FieldType


class IndexMode(str, Enum):
    """Whether the index is fed by sync or only queried."""

    SYNCED = "synced"
    READONLY = "readonly"


class Index(BaseModel):
    """A search index definition.

    Read-only indexes point at an externally managed engine index: they
    carry no field mappings and are never targeted by writes.
    """

    handle: str = Field(pattern=r"^[a-zA-Z][a-zA-Z0-9_]*$", max_length=255, description="Unique handle")
    name: str = Field(default="", description="Human-readable name")
    engine_type: str = Field(description="Engine identifier (elasticsearch, opensearch, algolia, ...)")
    engine_config: dict[str, Any] = Field(default_factory=dict, description="Per-index engine overrides")
    field_mappings: list[FieldMapping] = Field(default_factory=list, description="Ordered field mappings")
    mode: IndexMode = Field(default=IndexMode.SYNCED)
    enabled: bool = Field(default=True)
    site_id: int | None = Field(default=None, description="Restrict to one site")
    section_ids: list[int] = Field(default_factory=list, description="Restrict to these sections")
    entry_type_ids: list[int] = Field(default_factory=list, description="Restrict to these entry types")

    @model_validator(mode="after")
    def _check_mappings(self) -> Index:
        if self.mode is IndexMode.READONLY and self.field_mappings:
            raise ValueError("Read-only indexes cannot carry field mappings")
        names = [m.index_field_name for m in self.field_mappings if m.enabled]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate index field names: {duplicates}")
        return self

    @property
    def is_read_only(self) -> bool:
        return self.mode is IndexMode.READONLY

    def enabled_mappings(self) -> list[FieldMapping]:
        """Enabled mappings in declared sort order."""
        return sorted((m for m in self.field_mappings if m.enabled), key=lambda m: m.sort_order)

    def field_types(self) -> dict[str, FieldType]:
        """Index field name → taxonomy type, for enabled mappings."""
        return {m.index_field_name: m.field_type for m in self.enabled_mappings()}

    def embedding_field(self) -> str | None:
        """First enabled ``embedding`` field, if any."""
        for mapping in self.enabled_mappings():
            if mapping.field_type is FieldType.EMBEDDING:
                return mapping.index_field_name
        return None

    def with_handle(self, handle: str) -> Index:
        """Copy of this index targeting another handle (e.g. a swap generation)."""
        return self.model_copy(update={"handle": handle})
