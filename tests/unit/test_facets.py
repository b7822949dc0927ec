"""
Unit tests for facet aggregation and price buckets.
"""

import threading
from unittest.mock import MagicMock

import pytest

from catalog_search.facets import FacetAggregator, build_price_buckets
from catalog_search.models import AggregateBucket, ProductFilter
from catalog_search.stores.catalog import InMemoryCatalogReader
from core.errors import StoreUnavailableError


def _prices(*values):
    return [AggregateBucket(key=v, count=1) for v in values]


class TestPriceBuckets:
    """build_price_buckets: contiguous integer ranges with accurate counts."""

    def test_five_evenly_spread_prices(self):
        buckets = build_price_buckets(_prices(100, 200, 300, 400, 500), 5)

        assert [(b.min, b.max) for b in buckets] == [
            (100, 179), (180, 259), (260, 339), (340, 419), (420, 500),
        ]
        assert [b.count for b in buckets] == [1, 1, 1, 1, 1]

    def test_buckets_are_contiguous_and_cover_range(self):
        buckets = build_price_buckets(_prices(100, 200, 300, 400, 500), 5)

        assert buckets[0].min == 100
        assert buckets[-1].max == 500
        for left, right in zip(buckets, buckets[1:]):
            assert right.min == left.max + 1

    def test_single_price_gives_one_bucket(self):
        buckets = build_price_buckets([AggregateBucket(key=2500, count=3)], 5)
        assert len(buckets) == 1
        assert (buckets[0].min, buckets[0].max, buckets[0].count) == (2500, 2500, 3)

    def test_empty_input(self):
        assert build_price_buckets([], 5) == []

    def test_narrow_range_uses_fewer_buckets(self):
        buckets = build_price_buckets(_prices(10, 11, 12), 5)
        assert [(b.min, b.max) for b in buckets] == [(10, 10), (11, 12)]
        assert sum(b.count for b in buckets) == 3

    def test_counts_sum_to_total(self):
        prices = [AggregateBucket(key=p, count=c) for p, c in [(999, 2), (1500, 1), (4999, 4), (12000, 1)]]
        buckets = build_price_buckets(prices, 5)
        assert sum(b.count for b in buckets) == 8


class TestFacetAggregator:
    """Dimension aggregation, own-dimension exclusion and degradation."""

    @pytest.fixture
    def aggregator(self, catalog):
        agg = FacetAggregator(catalog, timeout_ms=2000, max_workers=4)
        yield agg
        agg.close()

    def test_unfiltered_summary(self, aggregator):
        summary = aggregator.aggregate(ProductFilter())

        assert summary.partial is False
        categories = {c.id: c.count for c in summary.categories}
        # Inactive products never count
        assert "cat-accessories" not in categories
        assert categories["cat-shirts"] == 2
        tags = {t.label: t.count for t in summary.tags}
        assert tags["sale"] == 2
        assert tags["cotton"] == 2
        assert summary.price_ranges[0].min == 29900
        assert summary.price_ranges[-1].max == 79900

    def test_category_labels(self, aggregator):
        summary = aggregator.aggregate(ProductFilter())
        labels = {c.id: c.label for c in summary.categories}
        assert labels["cat-shirts"] == "Shirts"

    def test_own_dimension_exclusion_for_category(self, aggregator):
        unfiltered = aggregator.aggregate(ProductFilter())
        filtered = aggregator.aggregate(ProductFilter(category_id="cat-shirts"))

        assert {c.id: c.count for c in filtered.categories} == {
            c.id: c.count for c in unfiltered.categories
        }
        # Other dimensions do honor the category filter
        assert {b.label for b in filtered.brands} == {"Acme"}

    def test_own_dimension_exclusion_for_tags(self, aggregator):
        filtered = aggregator.aggregate(ProductFilter(tags=("linen",)))
        tags = {t.label: t.count for t in filtered.tags}
        assert tags["sale"] == 2
        assert [c.id for c in filtered.categories] == ["cat-shirts"]

    def test_tags_ordered_by_count_then_label(self, aggregator):
        summary = aggregator.aggregate(ProductFilter())
        ordered = [(t.count, t.label) for t in summary.tags]
        assert ordered == sorted(ordered, key=lambda item: (-item[0], item[1]))

    def test_tag_facet_is_capped(self, make_product):
        products = [
            make_product(f"p-{i}", f"Item {i}", tags=[f"tag{i:02d}"]) for i in range(30)
        ]
        agg = FacetAggregator(InMemoryCatalogReader(products), timeout_ms=2000)
        try:
            summary = agg.aggregate(ProductFilter())
        finally:
            agg.close()
        assert len(summary.tags) == 20
        assert summary.tags[0].label == "tag00"

    def test_failed_dimension_marks_summary_partial(self, catalog):
        flaky = MagicMock(wraps=catalog)

        def aggregate(product_filter, group_by):
            if group_by == "brand":
                raise StoreUnavailableError("brand aggregation failed", store="catalog")
            return catalog.aggregate(product_filter, group_by)

        flaky.aggregate.side_effect = aggregate
        agg = FacetAggregator(flaky, timeout_ms=2000)
        try:
            summary = agg.aggregate(ProductFilter())
        finally:
            agg.close()

        assert summary.partial is True
        assert summary.brands == []
        assert summary.categories

    def test_slow_dimension_times_out(self, catalog):
        release = threading.Event()
        slow = MagicMock(wraps=catalog)

        def aggregate(product_filter, group_by):
            if group_by == "price":
                release.wait(timeout=5)
            return catalog.aggregate(product_filter, group_by)

        slow.aggregate.side_effect = aggregate
        agg = FacetAggregator(slow, timeout_ms=500)
        try:
            summary = agg.aggregate(ProductFilter())
        finally:
            release.set()
            agg.close()

        assert summary.partial is True
        assert summary.price_ranges == []
        assert summary.tags
