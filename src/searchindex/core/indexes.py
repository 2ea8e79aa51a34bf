"""Index Repository — the set of index definitions this process serves."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from searchindex.models.index import Index

logger = logging.getLogger(__name__)


class IndexNotFoundError(Exception):
    """Raised when a requested index handle is not defined."""


class ReadOnlyIndexError(Exception):
    """Raised when a write operation targets a read-only index."""


class IndexRepository:
    """In-process registry of index definitions keyed by handle.

    Example:
        >>> repo = IndexRepository(settings.indexes)
        >>> index = repo.get("places")
    """

    def __init__(self, indexes: Iterable[Index] = ()) -> None:
        self._indexes: dict[str, Index] = {}
        for index in indexes:
            self.save(index)

    def save(self, index: Index) -> None:
        """Add or replace an index definition."""
        if index.handle in self._indexes:
            logger.debug("Replacing index definition: %s", index.handle)
        self._indexes[index.handle] = index

    def delete(self, handle: str) -> None:
        self._indexes.pop(handle, None)

    def find(self, handle: str) -> Index | None:
        return self._indexes.get(handle)

    def get(self, handle: str) -> Index:
        """Look up an index by handle.

        Raises:
            IndexNotFoundError: If no index has this handle.
        """
        index = self._indexes.get(handle)
        if index is None:
            raise IndexNotFoundError(f"Index '{handle}' not found")
        return index

    def all(self) -> list[Index]:
        return list(self._indexes.values())

    def enabled(self) -> list[Index]:
        return [index for index in self._indexes.values() if index.enabled]

    @property
    def handles(self) -> list[str]:
        return list(self._indexes.keys())


def ensure_writable(index: Index) -> None:
    """Raise :class:`ReadOnlyIndexError` for read-only indexes."""
    if index.is_read_only:
        raise ReadOnlyIndexError(f"Index '{index.handle}' is read-only")
