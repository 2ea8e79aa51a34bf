"""Content models — the source items that get resolved into documents."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ContentField(BaseModel):
    """One field value on a content item, tagged with its field kind."""

    kind: str = Field(default="plain_text", description="Field kind tag used for resolver dispatch")
    value: Any = None


class ContentItem(BaseModel):
    """A unit of source content (an entry) that may be indexed."""

    id: int | str
    site_id: int = 1
    section: str = ""
    section_id: int | None = None
    entry_type: str = ""
    entry_type_id: int | None = None
    title: str = ""
    enabled: bool = True
    enabled_for_site: bool = True
    status: str = Field(default="live", description="live, pending, expired or disabled")
    fields: dict[str, ContentField] = Field(default_factory=dict)
    related_ids: list[int | str] = Field(default_factory=list)

    @property
    def is_live(self) -> bool:
        """Enabled, visible on its site, and published."""
        return self.enabled and self.enabled_for_site and self.status == "live"
