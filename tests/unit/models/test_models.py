"""Tests for the data models and settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from searchindex.config.settings import Settings
from searchindex.models.content import ContentItem
from searchindex.models.field_mapping import FieldMapping, FieldType
from searchindex.models.index import Index, IndexMode
from searchindex.models.result import SearchResult, SwapVerification

# ── Index ────────────────────────────────────────────────────────────────────


class TestIndex:
    def test_enabled_mappings_sorted(self, index: Index) -> None:
        names = [m.index_field_name for m in index.enabled_mappings()]
        assert names[0] == "title"
        assert "legacy" not in names

    def test_field_types(self, index: Index) -> None:
        types = index.field_types()
        assert types["postDate"] is FieldType.DATE
        assert "legacy" not in types

    def test_embedding_field(self, index: Index, embedding_index: Index) -> None:
        assert index.embedding_field() is None
        assert embedding_index.embedding_field() == "vector"

    def test_with_handle(self, index: Index) -> None:
        swap = index.with_handle("places_swap")
        assert swap.handle == "places_swap"
        assert index.handle == "places"
        assert swap.field_mappings == index.field_mappings

    def test_invalid_handle(self) -> None:
        with pytest.raises(ValidationError):
            Index(handle="1places", engine_type="algolia")

    def test_duplicate_field_names(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate"):
            Index(
                handle="x",
                engine_type="algolia",
                field_mappings=[FieldMapping(index_field_name="a"), FieldMapping(index_field_name="a")],
            )

    def test_duplicate_allowed_when_disabled(self) -> None:
        Index(
            handle="x",
            engine_type="algolia",
            field_mappings=[FieldMapping(index_field_name="a"), FieldMapping(index_field_name="a", enabled=False)],
        )

    def test_read_only_rejects_mappings(self) -> None:
        with pytest.raises(ValidationError):
            Index(
                handle="x",
                engine_type="algolia",
                mode=IndexMode.READONLY,
                field_mappings=[FieldMapping(index_field_name="a")],
            )

    def test_weight_bounds(self) -> None:
        with pytest.raises(ValidationError):
            FieldMapping(index_field_name="a", weight=11)

    def test_embedding_dimensions_default(self) -> None:
        assert FieldMapping(index_field_name="v", field_type=FieldType.EMBEDDING).embedding_dimensions == 1024


# ── Content / results ────────────────────────────────────────────────────────


class TestContentAndResults:
    def test_item_liveness(self, item: ContentItem) -> None:
        assert item.is_live is True
        assert item.model_copy(update={"status": "pending"}).is_live is False
        assert item.model_copy(update={"enabled_for_site": False}).is_live is False

    def test_total_pages(self) -> None:
        assert SearchResult(total_hits=51, per_page=10).total_pages == 6
        assert SearchResult(total_hits=0, per_page=10).total_pages == 0
        assert SearchResult(total_hits=100, per_page=0).total_pages == 0

    def test_result_is_immutable(self) -> None:
        result = SearchResult.empty()
        with pytest.raises(ValidationError):
            result.total_hits = 3  # type: ignore[misc]

    def test_result_sequence_access(self) -> None:
        result = SearchResult(hits=[{"objectID": "1"}, {"objectID": "2"}])
        assert len(result) == 2
        assert result[1]["objectID"] == "2"

    def test_total_pages_serialised(self) -> None:
        assert SearchResult(total_hits=5, per_page=2).model_dump()["total_pages"] == 3

    def test_swap_verification(self) -> None:
        assert SwapVerification(index="p", expected_count=3, live_count=3).matches
        assert not SwapVerification(index="p", expected_count=3, live_count=2).matches


# ── Settings ─────────────────────────────────────────────────────────────────


class TestSettings:
    def test_defaults(self, settings: Settings) -> None:
        assert settings.sync.batch_size == 500
        assert settings.cache.backend == "memory"
        assert settings.indexes[0].handle == "places"

    def test_duplicate_handles(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate index handles"):
            Settings(
                _env_file=None,  # type: ignore[call-arg]
                indexes=[
                    {"handle": "a", "engine_type": "algolia"},
                    {"handle": "a", "engine_type": "meilisearch"},
                ],
            )

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEARCHINDEX_SYNC__BATCH_SIZE", "250")
        monkeypatch.setenv("SEARCHINDEX_ENGINES__MEILISEARCH__HOST", "http://meili:7700")
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.sync.batch_size == 250
        assert settings.engines.meilisearch.host == "http://meili:7700"

    def test_from_yaml(self, tmp_path: Path) -> None:
        config = tmp_path / "searchindex.yaml"
        config.write_text(
            "sync:\n"
            "  batch_size: 100\n"
            "indexes:\n"
            "  - handle: places\n"
            "    engine_type: typesense\n"
            "    field_mappings:\n"
            "      - index_field_name: title\n"
            "        weight: 10\n"
        )
        settings = Settings.from_yaml(config)
        assert settings.sync.batch_size == 100
        assert settings.indexes[0].field_mappings[0].weight == 10

    def test_from_yaml_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "missing.yaml")
