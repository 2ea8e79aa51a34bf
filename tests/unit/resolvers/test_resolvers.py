"""Tests for resolver strategies and the resolver registry."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from searchindex.models.content import ContentField, ContentItem
from searchindex.models.field_mapping import FieldMapping
from searchindex.resolvers.registry import ResolverRegistry
from searchindex.resolvers.strategies import (
    BooleanResolver,
    DateResolver,
    EmbeddingResolver,
    GeoPointResolver,
    NumberResolver,
    OptionsResolver,
    PlainTextResolver,
    RelationResolver,
    Resolver,
)


def _mapping(**config: object) -> FieldMapping:
    return FieldMapping(index_field_name="f", resolver_config=dict(config))


# ── Strategies ───────────────────────────────────────────────────────────────


class TestScalarResolvers:
    async def test_plain_text(self, item: ContentItem) -> None:
        resolver = PlainTextResolver()
        assert await resolver.resolve("x", _mapping(), item) == "x"
        assert await resolver.resolve(3, _mapping(), item) == "3"
        assert await resolver.resolve("", _mapping(), item) is None
        assert await resolver.resolve({"a": 1}, _mapping(), item) is None

    async def test_number(self, item: ContentItem) -> None:
        resolver = NumberResolver()
        assert await resolver.resolve(7, _mapping(), item) == 7
        assert await resolver.resolve("2.5", _mapping(), item) == 2.5
        assert await resolver.resolve("", _mapping(), item) is None
        with pytest.raises(ValueError):
            await resolver.resolve("lots", _mapping(), item)

    async def test_boolean(self, item: ContentItem) -> None:
        assert await BooleanResolver().resolve(1, _mapping(), item) is True
        assert await BooleanResolver().resolve(None, _mapping(), item) is None

    async def test_date(self, item: ContentItem) -> None:
        moment = datetime(2024, 1, 1, tzinfo=UTC)
        assert await DateResolver().resolve(moment, _mapping(), item) == 1704067200
        assert await DateResolver().resolve(moment, _mapping(format="iso"), item) == "2024-01-01T00:00:00+00:00"
        assert await DateResolver().resolve("2024-01-01", _mapping(), item) == "2024-01-01"


class TestStructuredResolvers:
    async def test_options(self, item: ContentItem) -> None:
        resolver = OptionsResolver()
        assert await resolver.resolve("PT", _mapping(), item) == "PT"
        assert await resolver.resolve({"value": "PT", "label": "Portugal"}, _mapping(), item) == "PT"
        options = [{"value": "a", "selected": True}, {"value": "b", "selected": False}, "c"]
        assert await resolver.resolve(options, _mapping(), item) == ["a", "c"]
        assert await resolver.resolve([{"value": "b", "selected": False}], _mapping(), item) is None

    async def test_relation_formats(self, item: ContentItem) -> None:
        related = [{"id": 7, "title": "Coastal", "slug": "coastal"}, {"id": 8, "title": "Historic"}]
        resolver = RelationResolver()
        assert await resolver.resolve(related, _mapping(), item) == ["Coastal", "Historic"]
        assert await resolver.resolve(related, _mapping(format="ids"), item) == [7, 8]
        assert await resolver.resolve(related, _mapping(format="slugs"), item) == ["coastal"]
        objects = await resolver.resolve(related, _mapping(format="objects"), item)
        assert objects[1] == {"id": 8, "title": "Historic", "slug": None}
        assert await resolver.resolve([], _mapping(), item) is None

    async def test_relation_scalar_entries(self, item: ContentItem) -> None:
        assert await RelationResolver().resolve([3, 4], _mapping(format="ids"), item) == [3, 4]

    async def test_geo_point_from_object(self, item: ContentItem) -> None:
        resolved = await GeoPointResolver().resolve({"lat": "38.7", "lng": -9.1}, _mapping(), item)
        assert resolved == {"lat": 38.7, "lon": -9.1}

    async def test_geo_point_from_two_fields(self) -> None:
        item = ContentItem(id=1, fields={"lat": ContentField(value=38.7), "lng": ContentField(value=-9.1)})
        resolved = await GeoPointResolver().resolve(38.7, _mapping(lngFieldHandle="lng"), item)
        assert resolved == {"lat": 38.7, "lon": -9.1}

    async def test_geo_point_without_longitude(self, item: ContentItem) -> None:
        assert await GeoPointResolver().resolve(38.7, _mapping(), item) is None
        assert await GeoPointResolver().resolve({"lat": 1.0}, _mapping(), item) is None


class TestEmbeddingResolver:
    async def test_precomputed_vector(self, item: ContentItem) -> None:
        assert await EmbeddingResolver().resolve([1, 0.5], _mapping(), item) == [1.0, 0.5]

    async def test_embeds_joined_sources(self, item: ContentItem) -> None:
        client = MagicMock()
        client.embed = AsyncMock(return_value=[0.1, 0.2])
        resolved = await EmbeddingResolver(client).resolve(None, _mapping(sources=["body", "country"]), item)
        assert resolved == [0.1, 0.2]
        client.embed.assert_awaited_once_with("Capital of Portugal\nPT", None, input_type="document")

    async def test_no_client(self, item: ContentItem) -> None:
        assert await EmbeddingResolver().resolve("some text", _mapping(), item) is None


# ── Registry ─────────────────────────────────────────────────────────────────


class TestResolverRegistry:
    def test_exact_match(self) -> None:
        assert isinstance(ResolverRegistry().get("number"), NumberResolver)

    @pytest.mark.parametrize(
        ("kind", "expected"),
        [
            ("dropdown", OptionsResolver),
            ("checkboxes", OptionsResolver),
            ("tags", RelationResolver),
            ("entries", RelationResolver),
            ("money", NumberResolver),
            ("lightswitch", BooleanResolver),
            ("email", PlainTextResolver),
            ("something_custom", PlainTextResolver),
        ],
    )
    def test_hierarchy(self, kind: str, expected: type[Resolver]) -> None:
        assert isinstance(ResolverRegistry().get(kind), expected)

    def test_strategies_shared(self) -> None:
        registry = ResolverRegistry()
        assert registry.get("dropdown") is registry.get("radio_buttons")

    def test_custom_resolver_wins(self) -> None:
        class UpperResolver(PlainTextResolver):
            kind = "upper"

        registry = ResolverRegistry()
        registry.get("plain_text")
        custom = UpperResolver()
        registry.register("email", custom)
        assert registry.get("email") is custom
        assert "email" in registry.registered_kinds

    def test_custom_kind_with_parent(self) -> None:
        registry = ResolverRegistry()
        registry.register("rating_stars", NumberResolver(), parent="number")
        registry.register("half_stars", MagicMock(spec=Resolver), parent="rating_stars")
        assert isinstance(registry.get("half_stars"), MagicMock)
        assert isinstance(registry.get("rating_stars"), NumberResolver)

    def test_embedding_client_injected(self) -> None:
        client = MagicMock()
        resolver = ResolverRegistry(client).get("embedding")
        assert isinstance(resolver, EmbeddingResolver)
        assert resolver._client is client
