"""Shared adapter for the Elasticsearch-compatible engine family."""

from searchindex.engines.elastic.engine import ElasticCompatEngine

__all__ = ["ElasticCompatEngine"]
