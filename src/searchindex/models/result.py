"""Result models — the canonical search result and health/outcome envelopes."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


class SearchResult(BaseModel):
    """Immutable, engine-agnostic search result.

    Every hit carries ``objectID``, ``_score`` and ``_highlights`` in
    addition to its native fields. ``facets`` maps a field to value/count
    pairs sorted by count descending.
    """

    model_config = ConfigDict(frozen=True)

    hits: list[dict[str, Any]] = Field(default_factory=list)
    total_hits: int = 0
    page: int = 1
    per_page: int = 20
    processing_time_ms: int = 0
    facets: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    stats: dict[str, dict[str, float]] = Field(default_factory=dict)
    histograms: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    suggestions: list[str] = Field(default_factory=list)
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        if self.per_page <= 0:
            return 0
        return math.ceil(self.total_hits / self.per_page)

    @classmethod
    def empty(cls) -> SearchResult:
        return cls()

    def __len__(self) -> int:
        return len(self.hits)

    def __getitem__(self, position: int) -> dict[str, Any]:
        return self.hits[position]


class ConnectionStatus(BaseModel):
    """Outcome of an engine connectivity check."""

    success: bool
    message: str = ""
    latency_ms: float | None = Field(default=None, description="Round-trip time of the check")
    last_check: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SearchOutcome(BaseModel):
    """Read-path envelope: a result, or a failure message instead of an exception."""

    success: bool
    message: str = ""
    result: SearchResult | None = None


class SwapVerification(BaseModel):
    """Post-swap read-back of the production index."""

    index: str
    expected_count: int
    live_count: int

    @property
    def matches(self) -> bool:
        return self.live_count == self.expected_count
