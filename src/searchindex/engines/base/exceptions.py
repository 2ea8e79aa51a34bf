"""Engine-specific exceptions."""


class EngineError(Exception):
    """Base exception for engine errors."""


class ConnectionError(EngineError):
    """Raised when the engine cannot reach its backend (or was never initialized)."""


class QueryError(EngineError):
    """Raised when a search request fails."""


class IndexingError(EngineError):
    """Raised when an index lifecycle or document write operation fails."""


class ConfigurationError(EngineError):
    """Raised when engine configuration is invalid or a client package is missing."""


class SwapError(EngineError):
    """Raised when an atomic index swap fails.

    A swap failure is terminal for its sync cycle: the post-swap state cannot
    be told apart from a completed swap, so it is never retried automatically.
    """


class EngineNotFoundError(EngineError):
    """Raised when no engine class is registered for an engine type."""
