"""Base engine interface — capability contract, helpers and registry."""

from searchindex.engines.base.engine import Engine
from searchindex.engines.base.registry import EngineRegistry

__all__ = ["Engine", "EngineRegistry"]
