"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. YAML config file (if specified, via ``Settings.from_yaml``)
  2. Environment variables (SEARCHINDEX_ prefix) and ``.env``
  3. Default values
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from searchindex.models.index import Index


def parse_env(value: Any) -> Any:
    """Resolve ``$NAME`` string values from the environment.

    Non-string values and unresolvable references are returned unchanged.
    """
    if isinstance(value, str) and value.startswith("$") and len(value) > 1:
        return os.environ.get(value[1:], value)
    return value


class ServerSettings(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, description="Server port")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")


class ElasticsearchSettings(BaseModel):
    """Global Elasticsearch connection defaults."""

    host: str = Field(default="http://localhost:9200", description="Cluster URL")
    api_key: str = Field(default="", description="API key authentication")
    username: str = Field(default="", description="Basic auth username")
    password: str = Field(default="", description="Basic auth password")


class OpenSearchSettings(BaseModel):
    """Global OpenSearch connection defaults."""

    host: str = Field(default="http://localhost:9200", description="Cluster URL")
    username: str = Field(default="", description="Basic auth username")
    password: str = Field(default="", description="Basic auth password")


class AlgoliaSettings(BaseModel):
    """Global Algolia credentials."""

    app_id: str = Field(default="", description="Algolia application ID")
    api_key: str = Field(default="", description="Admin API key (writes)")
    search_api_key: str = Field(default="", description="Search-only API key (reads)")


class MeilisearchSettings(BaseModel):
    """Global Meilisearch connection defaults."""

    host: str = Field(default="http://localhost:7700", description="Server URL")
    api_key: str = Field(default="", description="Master or admin key")


class TypesenseSettings(BaseModel):
    """Global Typesense connection defaults."""

    host: str = Field(default="localhost", description="Node hostname")
    port: int = Field(default=8108, description="Node port")
    protocol: str = Field(default="http", description="http or https")
    api_key: str = Field(default="", description="Admin API key")


class EngineSettings(BaseModel):
    """Per-engine global connection settings.

    Each index may override any of these keys through its ``engine_config``.
    """

    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)
    opensearch: OpenSearchSettings = Field(default_factory=OpenSearchSettings)
    algolia: AlgoliaSettings = Field(default_factory=AlgoliaSettings)
    meilisearch: MeilisearchSettings = Field(default_factory=MeilisearchSettings)
    typesense: TypesenseSettings = Field(default_factory=TypesenseSettings)

    def resolve(self, engine_type: str, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Merge an index's engine config over the global block for ``engine_type``.

        Empty override values fall back to the global value. ``$NAME``
        references are resolved from the environment.

        Args:
            engine_type: Engine identifier (e.g. ``"meilisearch"``).
            overrides: Per-index ``engine_config``.

        Returns:
            The effective configuration dict.
        """
        block = getattr(self, engine_type, None)
        merged: dict[str, Any] = block.model_dump() if isinstance(block, BaseModel) else {}
        for key, value in (overrides or {}).items():
            if value in (None, ""):
                continue
            merged[key] = value
        return {key: parse_env(value) for key, value in merged.items()}


class SyncSettings(BaseModel):
    """Document synchronization behaviour."""

    batch_size: int = Field(default=500, ge=1, le=5000, description="Documents per bulk-import batch")
    sync_on_save: bool = Field(default=True, description="Push content changes in real time")
    index_relations: bool = Field(default=True, description="Re-index related content on change")


class EmbeddingSettings(BaseModel):
    """Embedding provider configuration (OpenAI-compatible embeddings endpoint)."""

    api_key: str = Field(default="", description="Embedding provider API key")
    base_url: str = Field(default="https://api.voyageai.com/v1", description="Embeddings API endpoint")
    model: str = Field(default="voyage-3", description="Default embedding model")
    timeout: float = Field(default=10.0, description="Request timeout in seconds")
    cache_ttl: int = Field(default=7 * 24 * 3600, description="Embedding cache TTL in seconds")


class CacheSettings(BaseModel):
    """Cache backend configuration."""

    backend: str = Field(default="memory", description="Cache backend: memory, redis")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root application settings.

    Configuration is loaded from environment variables with the SEARCHINDEX_ prefix.
    Nested settings use double underscores: SEARCHINDEX_ENGINES__MEILISEARCH__HOST=...

    Example:
        SEARCHINDEX_ENGINES__ALGOLIA__APP_ID=ABC123
        SEARCHINDEX_SYNC__BATCH_SIZE=250
        SEARCHINDEX_EMBEDDING__API_KEY=pa-...
    """

    model_config = {
        "env_prefix": "SEARCHINDEX_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    # Application metadata
    app_name: str = Field(default="searchindex", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    engines: EngineSettings = Field(default_factory=EngineSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    # Index definitions served by this process
    indexes: list[Index] = Field(default_factory=list)

    @field_validator("indexes")
    @classmethod
    def _unique_handles(cls, v: list[Index]) -> list[Index]:
        handles = [index.handle for index in v]
        duplicates = sorted({h for h in handles if handles.count(h) > 1})
        if duplicates:
            raise ValueError(f"Duplicate index handles: {duplicates}")
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML configuration file.

        YAML values are passed as constructor arguments, so they override
        environment variables for the keys they set.

        Args:
            path: Path to the YAML config file.

        Returns:
            Populated Settings instance.
        """
        import yaml  # type: ignore[import-untyped]

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)
