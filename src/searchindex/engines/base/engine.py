"""Base engine — the capability interface every search engine adapter implements.

Every backend implements this interface to integrate with searchindex.
An engine is responsible for:
  1. Building its native schema from the field-type taxonomy
  2. Index lifecycle (create, update settings, delete, flush)
  3. Writing and deleting documents
  4. Translating unified options into native search requests
  5. Normalising native responses into ``SearchResult``
  6. Reporting connectivity and optional capabilities (atomic swap)

Shared behaviour lives in :mod:`searchindex.engines.base.helpers` as pure
functions; adapters compose those rather than inheriting defaults.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from searchindex.engines.base import helpers
from searchindex.engines.base.exceptions import SwapError
from searchindex.models.field_mapping import FieldMapping, FieldType
from searchindex.models.index import Index
from searchindex.models.result import ConnectionStatus, SearchResult, SwapVerification

logger = logging.getLogger(__name__)


class Engine(ABC):
    """Abstract base class for search engine adapters.

    Engines are constructed from an already-merged configuration dict (see
    ``EngineSettings.resolve``) and hold one client handle, created in
    :meth:`initialize` and released in :meth:`shutdown`.

    Attributes:
        engine_type: Registry key (e.g. ``"meilisearch"``).
        display_name: Human-readable backend name.
        date_format: Wire format for date-typed fields.
    """

    engine_type: ClassVar[str]
    display_name: ClassVar[str]
    date_format: ClassVar[helpers.DateFormat] = helpers.DateFormat.EPOCH_SECONDS

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        self._config: dict[str, Any] = dict(config or {})
        self._client: Any = None

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    def index_name(self, index: Index) -> str:
        """Native index name: optional ``index_prefix`` + handle."""
        return f"{self._config.get('index_prefix') or ''}{index.handle}"

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Apply wire-format normalisation (dates) before a write."""
        return helpers.normalise_date_fields(document, index.field_types(), self.date_format)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @abstractmethod
    async def initialize(self) -> None:
        """Create the client handle. Called once by the registry."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Release the client handle."""

    @abstractmethod
    async def test_connection(self) -> ConnectionStatus:
        """Check connectivity and credentials. Never raises."""

    # ── Schema ───────────────────────────────────────────────────────────────

    @abstractmethod
    def map_field_type(self, field_type: FieldType) -> Any:
        """Native type descriptor for a taxonomy type."""

    @abstractmethod
    def build_schema(self, mappings: Sequence[FieldMapping]) -> Any:
        """Native schema for the enabled mappings plus the discriminator fields."""

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        """Live native schema/settings of the index (empty when unsupported)."""
        return {}

    async def get_schema_fields(self, index: Index) -> list[dict[str, str]]:
        """Live fields as ``[{"name", "type"}]`` with taxonomy types."""
        return []

    # ── Index lifecycle ──────────────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, index: Index) -> None: ...

    @abstractmethod
    async def update_index_settings(self, index: Index) -> None: ...

    @abstractmethod
    async def delete_index(self, index: Index) -> None: ...

    @abstractmethod
    async def index_exists(self, index: Index) -> bool: ...

    @abstractmethod
    async def flush_index(self, index: Index) -> None:
        """Remove every document while keeping the index and its settings."""

    # ── Documents ────────────────────────────────────────────────────────────

    @abstractmethod
    async def index_document(self, index: Index, doc_id: str, document: Mapping[str, Any]) -> None:
        """Upsert one document."""

    @abstractmethod
    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> None:
        """Upsert many documents; each carries its ``objectID``."""

    @abstractmethod
    async def delete_document(self, index: Index, doc_id: str) -> None:
        """Delete one document. Deleting a missing document is not an error."""

    @abstractmethod
    async def delete_documents(self, index: Index, doc_ids: Sequence[str]) -> None: ...

    @abstractmethod
    async def get_document_count(self, index: Index) -> int: ...

    @abstractmethod
    async def get_all_document_ids(self, index: Index) -> list[str]: ...

    # ── Search ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        """Execute a search with unified (or native pass-through) options."""

    @abstractmethod
    async def search_facet_values(
        self,
        index: Index,
        fields: Sequence[str],
        query: str = "",
        max_per_field: int = 5,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, list[dict[str, Any]]]:
        """Facet values containing ``query`` (case-insensitive), ranked by count."""

    async def get_document(self, index: Index, doc_id: str) -> dict[str, Any] | None:
        """Point lookup built on :meth:`search`.

        Issues a one-hit search for the id and returns the hit whose
        ``objectID`` matches, or None.
        """
        result = await self.search(index, str(doc_id), {"perPage": 1})
        for hit in result.hits:
            if str(hit.get("objectID")) == str(doc_id):
                return hit
        return None

    async def multi_search(
        self,
        queries: Sequence[tuple[Index, str, Mapping[str, Any] | None]],
    ) -> list[SearchResult]:
        """Run several searches; engines with a native batch endpoint may override."""
        return [await self.search(index, query, options) for index, query, options in queries]

    # ── Atomic swap ──────────────────────────────────────────────────────────

    def supports_atomic_swap(self) -> bool:
        return False

    def build_swap_handle(self, index: Index) -> str:
        return helpers.build_swap_handle(index.handle)

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Atomically replace ``index`` with the fully populated ``swap_index``."""
        raise SwapError(f"{self.display_name} does not support atomic index swaps")

    async def verify_swap(self, index: Index, expected_count: int) -> SwapVerification:
        """Read back the production index after a swap."""
        live_count = await self.get_document_count(index)
        verification = SwapVerification(index=index.handle, expected_count=expected_count, live_count=live_count)
        if not verification.matches:
            logger.warning(
                "Post-swap count mismatch for %s: expected %d, live %d",
                index.handle,
                expected_count,
                live_count,
            )
        return verification
