"""Search engine layer — pluggable adapters for hosted and self-run engines.

Built-in engines:
  - elasticsearch: Elasticsearch v8+ (official async client)
  - opensearch: OpenSearch v2+ (opensearch-py async client)
  - algolia: Algolia REST API
  - meilisearch: Meilisearch REST API
  - typesense: Typesense REST API

Subclass ``Engine`` and register it with ``EngineRegistry`` to add a backend.
"""
