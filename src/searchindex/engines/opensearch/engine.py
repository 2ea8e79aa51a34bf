"""OpenSearch engine — product hooks for OpenSearch (v2+).

OpenSearch is an AWS-maintained fork of Elasticsearch with a compatible
query DSL. Vector fields use the k-NN plugin's ``knn_vector`` type, which
needs ``index.knn`` enabled at creation time.

Uses the ``opensearch-py`` async client::

    pip install "opensearch-py[async]"
"""

from __future__ import annotations

import logging
from typing import Any

from searchindex.engines.base.exceptions import ConfigurationError
from searchindex.engines.elastic.engine import ElasticCompatEngine
from searchindex.models.index import Index

logger = logging.getLogger(__name__)


class OpenSearchEngine(ElasticCompatEngine):
    """OpenSearch (v2+) engine.

    Config keys: ``host``, ``username``/``password``, ``verify_certs`` and
    ``index_prefix``.
    """

    engine_type = "opensearch"
    display_name = "OpenSearch"
    vector_type = "knn_vector"

    def _create_client(self) -> Any:
        try:
            from opensearchpy import AsyncOpenSearch
        except ImportError as e:
            raise ConfigurationError(
                'opensearch-py package is required.  Install with: pip install "opensearch-py[async]"'
            ) from e

        host = self._config.get("host") or "http://localhost:9200"
        client_kwargs: dict[str, Any] = {
            "hosts": [host],
            "verify_certs": bool(self._config.get("verify_certs", True)),
            "ssl_show_warn": False,
        }
        if self._config.get("username") and self._config.get("password"):
            client_kwargs["http_auth"] = (self._config["username"], self._config["password"])
        logger.debug("Creating OpenSearch client for %s", host)
        return AsyncOpenSearch(**client_kwargs)

    def _vector_property(self, dimensions: int) -> dict[str, Any]:
        return {"type": "knn_vector", "dimension": dimensions}

    def _knn_clause(self, field_name: str, vector: list[float], k: int) -> dict[str, Any]:
        return {"knn": {field_name: {"vector": vector, "k": k}}}

    def _index_settings(self, index: Index) -> dict[str, Any]:
        if index.embedding_field():
            return {"index": {"knn": True}}
        return {}
