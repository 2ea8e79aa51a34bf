"""Shared test fixtures and configuration."""

from __future__ import annotations

import pytest

from searchindex.config.settings import Settings
from searchindex.models.content import ContentField, ContentItem
from searchindex.models.field_mapping import FieldMapping, FieldType
from searchindex.models.index import Index


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance with defaults."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        indexes=[
            {
                "handle": "places",
                "name": "Places",
                "engine_type": "meilisearch",
                "field_mappings": [
                    {"index_field_name": "title", "field_type": "text", "weight": 10, "source": "title"},
                    {"index_field_name": "country", "field_type": "keyword"},
                ],
            },
        ],
    )


@pytest.fixture
def mappings() -> list[FieldMapping]:
    """A representative mapping set covering the common taxonomy types."""
    return [
        FieldMapping(index_field_name="title", field_type=FieldType.TEXT, weight=10, source="title", sort_order=0),
        FieldMapping(index_field_name="body", field_type=FieldType.TEXT, weight=3, sort_order=1),
        FieldMapping(index_field_name="summary", field_type=FieldType.TEXT, weight=7, sort_order=2),
        FieldMapping(index_field_name="country", field_type=FieldType.KEYWORD, sort_order=3),
        FieldMapping(index_field_name="population", field_type=FieldType.INTEGER, sort_order=4),
        FieldMapping(index_field_name="rating", field_type=FieldType.FLOAT, sort_order=5),
        FieldMapping(index_field_name="featured", field_type=FieldType.BOOLEAN, sort_order=6),
        FieldMapping(index_field_name="postDate", field_type=FieldType.DATE, sort_order=7),
        FieldMapping(index_field_name="location", field_type=FieldType.GEO_POINT, sort_order=8),
        FieldMapping(index_field_name="tags", field_type=FieldType.FACET, sort_order=9),
        FieldMapping(index_field_name="legacy", field_type=FieldType.TEXT, enabled=False, sort_order=10),
    ]


@pytest.fixture
def index(mappings: list[FieldMapping]) -> Index:
    return Index(handle="places", name="Places", engine_type="meilisearch", field_mappings=mappings)


@pytest.fixture
def embedding_index(mappings: list[FieldMapping]) -> Index:
    return Index(
        handle="places",
        engine_type="elasticsearch",
        field_mappings=[
            *mappings,
            FieldMapping(
                index_field_name="vector",
                field_type=FieldType.EMBEDDING,
                resolver_config={"dimensions": 3},
                sort_order=11,
            ),
        ],
    )


@pytest.fixture
def item() -> ContentItem:
    return ContentItem(
        id=42,
        section="places",
        section_id=1,
        entry_type="city",
        entry_type_id=5,
        title="Lisbon",
        fields={
            "body": ContentField(value="Capital of Portugal"),
            "country": ContentField(kind="dropdown", value="PT"),
            "population": ContentField(kind="number", value="544851"),
            "tags": ContentField(kind="tags", value=[{"id": 7, "title": "Coastal", "slug": "coastal"}]),
        },
    )
