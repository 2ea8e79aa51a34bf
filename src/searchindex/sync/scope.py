"""Request-scoped de-duplication of index jobs."""

from __future__ import annotations


class SyncRequestScope:
    """Remembers which (index, item, site) targets one request already queued.

    A single save can fan out through relation cascades; the scope keeps
    that fan-out from queueing the same document twice. It is not shared
    across requests.
    """

    def __init__(self) -> None:
        self._claimed: set[tuple[str, str, int | None]] = set()

    def claim(self, index_handle: str, item_id: int | str, site_id: int | None) -> bool:
        """Record a target; False when it was already claimed in this scope."""
        key = (index_handle, str(item_id), site_id)
        if key in self._claimed:
            return False
        self._claimed.add(key)
        return True

    def __len__(self) -> int:
        return len(self._claimed)
