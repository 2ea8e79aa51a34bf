"""Elasticsearch engine — product hooks for Elasticsearch 8.x.

Uses the official ``elasticsearch`` async client::

    pip install "elasticsearch[async]>=8,<9"
"""

from __future__ import annotations

import logging
from typing import Any

from searchindex.engines.base.exceptions import ConfigurationError
from searchindex.engines.elastic.engine import ElasticCompatEngine

logger = logging.getLogger(__name__)


class ElasticsearchEngine(ElasticCompatEngine):
    """Elasticsearch (v8+) engine.

    Config keys: ``host``, ``api_key`` (preferred) or ``username``/``password``,
    ``verify_certs`` and ``index_prefix``.
    """

    engine_type = "elasticsearch"
    display_name = "Elasticsearch"
    vector_type = "dense_vector"

    def _create_client(self) -> Any:
        try:
            from elasticsearch import AsyncElasticsearch
        except ImportError as e:
            raise ConfigurationError(
                'elasticsearch package is required.  Install with: pip install "elasticsearch[async]"'
            ) from e

        host = self._config.get("host") or "http://localhost:9200"
        client_kwargs: dict[str, Any] = {"hosts": [host]}
        if self._config.get("api_key"):
            client_kwargs["api_key"] = self._config["api_key"]
        elif self._config.get("username"):
            client_kwargs["basic_auth"] = (self._config["username"], self._config.get("password") or "")
        if "verify_certs" in self._config:
            client_kwargs["verify_certs"] = bool(self._config["verify_certs"])
        logger.debug("Creating Elasticsearch client for %s", host)
        return AsyncElasticsearch(**client_kwargs)

    def _vector_property(self, dimensions: int) -> dict[str, Any]:
        return {"type": "dense_vector", "dims": dimensions, "index": True, "similarity": "cosine"}

    def _knn_clause(self, field_name: str, vector: list[float], k: int) -> dict[str, Any]:
        return {
            "knn": {
                "field": field_name,
                "query_vector": vector,
                "num_candidates": max(k * 10, 100),
            }
        }
