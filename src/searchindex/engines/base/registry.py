"""Engine Registry — engine classes by type plus a cache of live engine instances.

Instances are cached per (engine type, serialized configuration), so every
index sharing a configuration shares one client handle. The registry owns
that cache: it is created with the application context and torn down by
:meth:`EngineRegistry.shutdown_all`.
"""

from __future__ import annotations

import importlib
import json
import logging
from typing import TYPE_CHECKING, Any

from searchindex.engines.base.engine import Engine
from searchindex.engines.base.exceptions import EngineNotFoundError
from searchindex.models.result import ConnectionStatus

if TYPE_CHECKING:
    from searchindex.config.settings import EngineSettings
    from searchindex.models.index import Index

logger = logging.getLogger(__name__)

# Built-in engines, imported lazily so optional client packages load on demand
BUILTIN_ENGINES: dict[str, tuple[str, str]] = {
    "elasticsearch": ("searchindex.engines.elasticsearch.engine", "ElasticsearchEngine"),
    "opensearch": ("searchindex.engines.opensearch.engine", "OpenSearchEngine"),
    "algolia": ("searchindex.engines.algolia.engine", "AlgoliaEngine"),
    "meilisearch": ("searchindex.engines.meilisearch.engine", "MeilisearchEngine"),
    "typesense": ("searchindex.engines.typesense.engine", "TypesenseEngine"),
}


def config_key(engine_type: str, config: dict[str, Any]) -> tuple[str, str]:
    """Cache key for an engine instance."""
    return engine_type, json.dumps(config, sort_keys=True, default=str)


class EngineRegistry:
    """Registry of engine classes and cached engine instances.

    Example:
        >>> registry = EngineRegistry(settings.engines)
        >>> registry.register_builtin_engines()
        >>> engine = await registry.get_engine(index)
        >>> result = await engine.search(index, "rock")
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self._settings = settings
        self._classes: dict[str, type[Engine]] = {}
        self._instances: dict[tuple[str, str], Engine] = {}

    def register(self, engine_type: str, engine_class: type[Engine]) -> None:
        """Register an engine class.

        Args:
            engine_type: Unique engine identifier.
            engine_class: The engine class to register.
        """
        if engine_type in self._classes:
            logger.warning("Overwriting existing engine registration: %s", engine_type)
        self._classes[engine_type] = engine_class
        logger.debug("Registered engine: %s", engine_type)

    def register_builtin_engines(self) -> None:
        """Register the five bundled engines."""
        for engine_type, (module_path, class_name) in BUILTIN_ENGINES.items():
            module = importlib.import_module(module_path)
            self.register(engine_type, getattr(module, class_name))

    def engine_class(self, engine_type: str) -> type[Engine]:
        """Look up a registered engine class.

        Raises:
            EngineNotFoundError: If no engine is registered for this type.
        """
        if engine_type not in self._classes:
            raise EngineNotFoundError(
                f"No engine registered with type '{engine_type}'. "
                f"Available engines: {list(self._classes.keys())}"
            )
        return self._classes[engine_type]

    def resolve_config(self, index: Index) -> dict[str, Any]:
        """Effective engine configuration for an index (global + overrides)."""
        if self._settings is None:
            return dict(index.engine_config)
        return self._settings.resolve(index.engine_type, index.engine_config)

    async def get_engine(self, index: Index) -> Engine:
        """Return the cached engine for an index, creating it on first use.

        Args:
            index: The index whose engine type and config select the instance.

        Returns:
            An initialized engine.

        Raises:
            EngineNotFoundError: If the index's engine type is not registered.
        """
        engine_class = self.engine_class(index.engine_type)
        config = self.resolve_config(index)
        key = config_key(index.engine_type, config)

        engine = self._instances.get(key)
        if engine is None:
            engine = engine_class(config)
            await engine.initialize()
            self._instances[key] = engine
            logger.info("Initialized %s engine", engine_class.display_name)
        return engine

    async def test_connection(self, index: Index) -> ConnectionStatus:
        """Connectivity check for an index's engine; never raises."""
        try:
            engine = await self.get_engine(index)
        except Exception as e:
            return ConnectionStatus(success=False, message=str(e))
        return await engine.test_connection()

    async def shutdown_all(self) -> None:
        """Gracefully shut down all cached engine instances."""
        for (engine_type, _), engine in self._instances.items():
            try:
                await engine.shutdown()
                logger.info("Shut down engine: %s", engine_type)
            except Exception:
                logger.warning("Error shutting down engine: %s", engine_type, exc_info=True)
        self._instances.clear()

    @property
    def registered_engines(self) -> list[str]:
        """List all registered engine types."""
        return list(self._classes.keys())

    @property
    def active_engines(self) -> int:
        """Number of cached engine instances."""
        return len(self._instances)
