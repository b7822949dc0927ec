"""
Tests for the store adapters with mocked drivers (no network).
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import redis

from catalog_search.models import ProductFilter, SortField
from catalog_search.stores.catalog import InMemoryCatalogReader, SupabaseCatalogReader
from catalog_search.stores.kv import RedisKeyValueStore
from core.errors import StoreUnavailableError


# =============================================================================
# Supabase catalog reader
# =============================================================================

class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, pages=None, count=None, error=None):
        self.calls = []
        self._pages = list(pages or [[]])
        self._count = count
        self._error = error

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return record

    def execute(self):
        if self._error is not None:
            raise self._error
        data = self._pages.pop(0) if self._pages else []
        return SimpleNamespace(data=data, count=self._count)

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


def _client(query):
    client = MagicMock()
    client.table.return_value.select.return_value = query
    return client


def _row(product_id, **overrides):
    row = {
        "id": product_id,
        "name": f"Product {product_id}",
        "price": 1000,
        "stock": 1,
        "status": "active",
        "tags": ["Sale"],
        "created_at": "2024-05-01T00:00:00+00:00",
    }
    row.update(overrides)
    return row


class TestSupabaseCatalogReader:

    def test_find_translates_filter_and_order(self):
        query = FakeQuery(pages=[[_row("p-1"), _row("p-2", description=None)]])
        reader = SupabaseCatalogReader(_client(query), table="catalog_products")

        product_filter = ProductFilter(
            text="blue shirt", category_id="cat-1", brand="acme",
            min_price=100, max_price=900, in_stock=True, min_rating=4.0, tags=("sale",),
        )
        products = reader.find(product_filter, (SortField("price", True), SortField("id")), limit=20, offset=40)

        assert [p.id for p in products] == ["p-1", "p-2"]
        assert products[0].tags == ["sale"]
        assert products[1].description == ""
        assert ("eq", ("status", "active"), {}) in query.calls
        assert ("eq", ("category_id", "cat-1"), {}) in query.calls
        assert ("ilike", ("brand", "acme"), {}) in query.calls
        assert ("gt", ("stock", 0), {}) in query.calls
        assert ("overlaps", ("tags", ["sale"]), {}) in query.calls
        assert query.called("order") == [
            ("order", ("price",), {"desc": True}),
            ("order", ("id",), {"desc": False}),
        ]
        assert query.called("range") == [("range", (40, 59), {})]

        (_, (expression,), _), = query.called("or_")
        assert 'name.ilike."*blue shirt*"' in expression
        assert 'tags.ov.{"blue","shirt"}' in expression

    def test_brand_wildcards_are_escaped(self):
        query = FakeQuery()
        SupabaseCatalogReader(_client(query)).count(ProductFilter(brand="50%_off"))
        assert ("ilike", ("brand", "50\\%\\_off"), {}) in query.calls

    def test_id_restriction(self):
        query = FakeQuery()
        SupabaseCatalogReader(_client(query)).find(ProductFilter(ids=frozenset({"p-2", "p-1"})), (), limit=2)
        assert ("in_", ("id", ["p-1", "p-2"]), {}) in query.calls

    def test_zero_limit_skips_the_query(self):
        query = FakeQuery()
        assert SupabaseCatalogReader(_client(query)).find(ProductFilter(), (), limit=0) == []
        assert query.calls == []

    def test_count(self):
        query = FakeQuery(count=42)
        assert SupabaseCatalogReader(_client(query)).count(ProductFilter()) == 42

    def test_aggregate_pages_through_rows(self, monkeypatch):
        monkeypatch.setattr(SupabaseCatalogReader, "PAGE_SIZE", 2)
        query = FakeQuery(pages=[
            [{"id": "1", "tags": ["a", "b"]}, {"id": "2", "tags": ["a"]}],
            [{"id": "3", "tags": None}],
        ])
        buckets = SupabaseCatalogReader(_client(query)).aggregate(ProductFilter(), "tags")

        assert {b.key: b.count for b in buckets} == {"a": 2, "b": 1}
        assert len(query.called("range")) == 2

    def test_unknown_group_by(self):
        with pytest.raises(ValueError):
            SupabaseCatalogReader(_client(FakeQuery())).aggregate(ProductFilter(), "color")

    def test_driver_errors_become_store_unavailable(self):
        query = FakeQuery(error=ConnectionError("timeout"))
        with pytest.raises(StoreUnavailableError) as exc_info:
            SupabaseCatalogReader(_client(query)).count(ProductFilter())
        assert exc_info.value.store == "catalog"


class TestInMemoryCatalogReader:

    def test_find_count_and_aggregate(self, catalog):
        shirts = ProductFilter(category_id="cat-shirts")
        assert catalog.count(shirts) == 2
        assert [p.id for p in catalog.find(shirts, (SortField("price"),), 1)] == ["p-001"]

        brands = {b.key: b.count for b in catalog.aggregate(ProductFilter(), "brand")}
        assert brands == {"Acme": 2, "Northwind": 2, "Stride": 1}

    def test_nulls_sort_last(self, make_product):
        reader = InMemoryCatalogReader([
            make_product("a", "A"),
            make_product("b", "B", updated_at="2024-05-30T00:00:00+00:00"),
        ])
        ordered = reader.find(ProductFilter(), (SortField("updated_at", True),), 10)
        assert [p.id for p in ordered] == ["b", "a"]

    def test_id_restriction(self, catalog):
        only = ProductFilter(ids=frozenset({"p-002", "p-006"}))
        assert [p.id for p in catalog.find(only, (SortField("id"),), 10)] == ["p-002"]


# =============================================================================
# Redis key-value store
# =============================================================================

class TestRedisKeyValueStore:

    def test_errors_become_store_unavailable(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("refused")

        with pytest.raises(StoreUnavailableError) as exc_info:
            RedisKeyValueStore(client).get("k")
        assert exc_info.value.store == "cache"

    def test_set_if_absent_uses_nx_with_expiry(self):
        client = MagicMock()
        client.set.return_value = None
        assert RedisKeyValueStore(client).set_if_absent("flag", "t", 60) is False
        client.set.assert_called_once_with("flag", "t", nx=True, ex=60)

    def test_set_with_ttl_uses_setex(self):
        client = MagicMock()
        RedisKeyValueStore(client).set_with_ttl("k", "v", 300)
        client.setex.assert_called_once_with("k", 300, "v")

    def test_delete_by_pattern_scans(self):
        client = MagicMock()
        client.scan_iter.return_value = iter(["search:a:1", "search:a:2"])
        client.delete.return_value = 2

        assert RedisKeyValueStore(client).delete_by_pattern("search:a:*") == 2
        client.scan_iter.assert_called_once_with(match="search:a:*", count=RedisKeyValueStore.SCAN_COUNT)
        client.keys.assert_not_called()

    def test_range_and_scores(self):
        client = MagicMock()
        client.zrevrange.return_value = [("shirt", 3.0)]
        client.zmscore.return_value = [1.5, None]
        store = RedisKeyValueStore(client)

        assert store.range_by_score_desc("z", 0, 9) == [("shirt", 3.0)]
        client.zrevrange.assert_called_once_with("z", 0, 9, withscores=True)
        assert store.get_sorted_set_scores("z", ["a", "b"]) == {"a": 1.5, "b": None}

    def test_replace_sorted_set_swaps_in_staging_key(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        RedisKeyValueStore(client).replace_sorted_set("ranking_index", {"p-1": 2.0})

        client.pipeline.assert_called_once_with(transaction=True)
        pipe.zadd.assert_called_once_with("ranking_index:staging", {"p-1": 2.0})
        pipe.rename.assert_called_once_with("ranking_index:staging", "ranking_index")
        pipe.execute.assert_called_once()

    def test_increment_counters(self):
        client = MagicMock()
        pipe = client.pipeline.return_value
        RedisKeyValueStore(client).increment_counters("stats", {"n": 1, "ms": 2.5}, ttl_seconds=60)

        pipe.hincrby.assert_called_once_with("stats", "n", 1)
        pipe.hincrbyfloat.assert_called_once_with("stats", "ms", 2.5)
        pipe.expire.assert_called_once_with("stats", 60)

    def test_trim_sorted_set(self):
        client = MagicMock()
        client.zremrangebyrank.return_value = 3
        assert RedisKeyValueStore(client).trim_sorted_set("z", 10) == 3
        client.zremrangebyrank.assert_called_once_with("z", 0, -11)
