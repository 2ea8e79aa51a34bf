"""searchindex — Engine-agnostic search indexing and query layer.

One unified API for indexing content into, and querying content from,
Elasticsearch, OpenSearch, Algolia, Meilisearch and Typesense.
"""

__version__ = "0.1.0"
