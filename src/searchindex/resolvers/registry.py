"""Resolver Registry — dispatches content field kinds to resolver strategies.

Kinds without their own strategy walk a small declared hierarchy
(``dropdown`` → ``options``, ``tags`` → ``relation``, ...) and take the
first registered ancestor; anything still unmatched is treated as plain
text.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from searchindex.resolvers.strategies import (
    BooleanResolver,
    DateResolver,
    EmbeddingResolver,
    GeoPointResolver,
    NumberResolver,
    OptionsResolver,
    PlainTextResolver,
    RelationResolver,
    Resolver,
)

if TYPE_CHECKING:
    from searchindex.embeddings.client import EmbeddingClient

logger = logging.getLogger(__name__)

# Field kind → parent kind
KIND_HIERARCHY: dict[str, str] = {
    "dropdown": "options",
    "radio_buttons": "options",
    "button_group": "options",
    "checkboxes": "options",
    "multi_select": "options",
    "tags": "relation",
    "entries": "relation",
    "categories": "relation",
    "users": "relation",
    "email": "plain_text",
    "url": "plain_text",
    "link": "plain_text",
    "color": "plain_text",
    "country": "plain_text",
    "money": "number",
    "range": "number",
    "lightswitch": "boolean",
    "time": "date",
}


class ResolverRegistry:
    """Registry mapping field kind tags to resolver strategies.

    The built-in strategy map is assembled on first lookup and cached for
    the lifetime of the registry. Third-party strategies registered with
    :meth:`register` take precedence over built-ins of the same kind.

    Example:
        >>> registry = ResolverRegistry()
        >>> registry.register("address", AddressResolver())
        >>> registry.get("dropdown")
        <OptionsResolver>
    """

    def __init__(self, embedding_client: EmbeddingClient | None = None) -> None:
        self._embedding_client = embedding_client
        self._custom: dict[str, Resolver] = {}
        self._strategies: dict[str, Resolver] | None = None
        self._hierarchy = dict(KIND_HIERARCHY)

    def register(self, kind: str, resolver: Resolver, parent: str | None = None) -> None:
        """Register a resolver for a field kind.

        Args:
            kind: Field kind tag.
            resolver: The strategy instance.
            parent: Optional parent kind to declare in the hierarchy.
        """
        if kind in self._custom:
            logger.warning("Overwriting existing resolver registration: %s", kind)
        self._custom[kind] = resolver
        if parent:
            self._hierarchy[kind] = parent
        if self._strategies is not None:
            self._strategies[kind] = resolver
        logger.debug("Registered resolver: %s -> %s", kind, type(resolver).__name__)

    def _strategy_map(self) -> dict[str, Resolver]:
        if self._strategies is None:
            builtins: list[Resolver] = [
                PlainTextResolver(),
                NumberResolver(),
                BooleanResolver(),
                DateResolver(),
                OptionsResolver(),
                RelationResolver(),
                GeoPointResolver(),
                EmbeddingResolver(self._embedding_client),
            ]
            self._strategies = {r.kind: r for r in builtins}
            self._strategies.update(self._custom)
        return self._strategies

    def get(self, kind: str) -> Resolver:
        """Strategy for ``kind``: exact match, then nearest ancestor, then plain text."""
        strategies = self._strategy_map()
        seen: set[str] = set()
        current: str | None = kind
        while current is not None and current not in seen:
            if current in strategies:
                return strategies[current]
            seen.add(current)
            current = self._hierarchy.get(current)
        return strategies[PlainTextResolver.kind]

    @property
    def registered_kinds(self) -> list[str]:
        return list(self._strategy_map().keys())
