"""Content sources — where synced documents come from.

A source yields the live content items in an index's scope. The scope is
the index's site, section and entry-type restrictions; an empty
restriction matches everything.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from searchindex.models.content import ContentItem
from searchindex.models.index import Index


def in_scope(index: Index, item: ContentItem) -> bool:
    """Whether ``item`` falls inside ``index``'s content scope (liveness aside)."""
    if index.site_id is not None and item.site_id != index.site_id:
        return False
    if index.section_ids and item.section_id not in index.section_ids:
        return False
    return not (index.entry_type_ids and item.entry_type_id not in index.entry_type_ids)


class ContentSource(ABC):
    """Authoritative store of content items.

    ``count``, ``fetch`` and ``ids`` only consider live items in the
    index's scope, in a stable order so offset/limit windows are disjoint.
    """

    @abstractmethod
    async def count(self, index: Index) -> int: ...

    @abstractmethod
    async def fetch(self, index: Index, offset: int, limit: int) -> list[ContentItem]: ...

    @abstractmethod
    async def ids(self, index: Index) -> list[str]:
        """Ids (as strings) of every live item in scope."""

    @abstractmethod
    async def get(self, item_id: int | str, site_id: int | None = None) -> ContentItem | None:
        """One item regardless of status, or None."""

    @abstractmethod
    async def related(self, item: ContentItem) -> list[ContentItem]:
        """Live items that reference ``item``."""


class InMemoryContentSource(ContentSource):
    """Content source over a list of items, ordered by insertion."""

    def __init__(self, items: Iterable[ContentItem] = ()) -> None:
        self._items: dict[tuple[str, int], ContentItem] = {}
        for item in items:
            self.put(item)

    def put(self, item: ContentItem) -> None:
        self._items[(str(item.id), item.site_id)] = item

    def remove(self, item_id: int | str, site_id: int = 1) -> None:
        self._items.pop((str(item_id), site_id), None)

    def _live(self, index: Index) -> list[ContentItem]:
        return [item for item in self._items.values() if item.is_live and in_scope(index, item)]

    async def count(self, index: Index) -> int:
        return len(self._live(index))

    async def fetch(self, index: Index, offset: int, limit: int) -> list[ContentItem]:
        return self._live(index)[offset : offset + limit]

    async def ids(self, index: Index) -> list[str]:
        return [str(item.id) for item in self._live(index)]

    async def get(self, item_id: int | str, site_id: int | None = None) -> ContentItem | None:
        for (key, item_site), item in self._items.items():
            if key == str(item_id) and (site_id is None or item_site == site_id):
                return item
        return None

    async def related(self, item: ContentItem) -> list[ContentItem]:
        target = str(item.id)
        return [
            other
            for other in self._items.values()
            if other.is_live and other is not item and target in {str(r) for r in other.related_ids}
        ]
