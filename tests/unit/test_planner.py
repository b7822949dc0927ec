"""
Unit tests for the query planner.

Tests cover:
1. Normalization (query text, tags, blank filters)
2. Bounds (page size, page, prices, rating, tag count)
3. Canonical cache key stability
4. Parse failures surfacing as SearchValidationError

Run with: PYTHONPATH=src python -m pytest tests/unit/test_planner.py -v
"""

import json

import pytest

from catalog_search.models import SearchRequest, SortMode
from catalog_search.query_planner import QueryPlanner
from core.errors import SearchValidationError


@pytest.fixture
def planner():
    return QueryPlanner()


class TestNormalization:
    """Text, tag and filter normalization."""

    def test_query_is_trimmed_and_collapsed(self, planner):
        plan = planner.plan({"query": "  Blue   Cotton\tShirt "})
        assert plan.display_query == "Blue Cotton Shirt"
        assert plan.match_text == "blue cotton shirt"
        assert plan.request.query == "Blue Cotton Shirt"

    def test_empty_query_means_no_text_predicate(self, planner):
        plan = planner.plan({"query": "   "})
        assert plan.product_filter.text is None
        assert plan.match_text == ""

    def test_tags_are_lowercased_deduped_and_sorted(self, planner):
        plan = planner.plan({"tags": [" Sale", "cotton", "SALE", ""]})
        assert plan.product_filter.tags == ("cotton", "sale")

    def test_comma_separated_tags(self, planner):
        plan = planner.plan({"tags": "summer,Linen"})
        assert plan.product_filter.tags == ("linen", "summer")

    def test_blank_category_and_brand_are_ignored(self, planner):
        plan = planner.plan({"category_id": "  ", "brand": ""})
        assert plan.product_filter.category_id is None
        assert plan.product_filter.brand is None
        assert plan.cache_scope == "_"

    def test_brand_matches_case_insensitively(self, planner):
        plan = planner.plan({"brand": "Acme"})
        assert plan.product_filter.brand == "acme"
        assert plan.request.brand == "Acme"

    def test_defaults(self, planner):
        plan = planner.plan({})
        assert plan.sort == SortMode.RELEVANCE
        assert plan.page == 1
        assert plan.page_size == 20
        assert plan.offset == 0
        assert plan.product_filter.in_stock is False

    def test_accepts_request_model(self, planner):
        plan = planner.plan(SearchRequest(query="shirt", page=3, page_size=10))
        assert plan.offset == 20
        assert plan.limit == 10


class TestBounds:
    """Rejections and clamping."""

    @pytest.mark.parametrize("page_size", [0, -1, 101])
    def test_page_size_out_of_range_is_rejected(self, planner, page_size):
        with pytest.raises(SearchValidationError) as exc_info:
            planner.plan({"page_size": page_size})
        assert exc_info.value.field == "page_size"

    @pytest.mark.parametrize("page_size", [1, 100])
    def test_page_size_bounds_are_inclusive(self, planner, page_size):
        assert planner.plan({"page_size": page_size}).page_size == page_size

    def test_page_below_one_is_clamped(self, planner):
        plan = planner.plan({"page": 0})
        assert plan.page == 1
        assert plan.offset == 0

    def test_negative_price_is_rejected(self, planner):
        with pytest.raises(SearchValidationError) as exc_info:
            planner.plan({"min_price": -1})
        assert exc_info.value.field == "min_price"

    def test_inverted_price_range_is_swapped(self, planner):
        plan = planner.plan({"min_price": 50000, "max_price": 10000})
        assert plan.product_filter.min_price == 10000
        assert plan.product_filter.max_price == 50000

    @pytest.mark.parametrize("rating", [-0.5, 5.1])
    def test_rating_out_of_range_is_rejected(self, planner, rating):
        with pytest.raises(SearchValidationError) as exc_info:
            planner.plan({"min_rating": rating})
        assert exc_info.value.field == "min_rating"

    def test_overlong_query_is_rejected(self, planner):
        with pytest.raises(SearchValidationError):
            planner.plan({"query": "x" * 201})

    def test_too_many_tags_are_rejected(self, planner):
        with pytest.raises(SearchValidationError) as exc_info:
            planner.plan({"tags": [f"tag{i}" for i in range(21)]})
        assert exc_info.value.field == "tags"

    def test_unparseable_value_is_a_validation_error(self, planner):
        with pytest.raises(SearchValidationError) as exc_info:
            planner.plan({"page_size": "lots"})
        err = exc_info.value
        assert err.field == "page_size"
        assert err.errors and err.errors[0]["loc"] == "page_size"

    def test_unknown_sort_is_a_validation_error(self, planner):
        with pytest.raises(SearchValidationError) as exc_info:
            planner.plan({"sort": "cheapest"})
        assert exc_info.value.field == "sort"

    def test_non_mapping_input_is_rejected(self, planner):
        with pytest.raises(SearchValidationError):
            planner.plan(["query", "shirt"])


class TestCanonicalKey:
    """Equivalent requests share one cache identity."""

    def test_tag_order_and_query_case_do_not_matter(self, planner):
        a = planner.plan({"query": "Blue Shirt", "tags": ["sale", "cotton"]})
        b = planner.plan({"query": "blue  shirt", "tags": ["Cotton", "sale"]})
        assert a.canonical == b.canonical

    def test_different_pages_differ(self, planner):
        a = planner.plan({"query": "shirt", "page": 1})
        b = planner.plan({"query": "shirt", "page": 2})
        assert a.canonical != b.canonical

    def test_canonical_is_compact_sorted_json(self, planner):
        plan = planner.plan({"query": "Shirt", "category_id": "cat-shirts"})
        payload = json.loads(plan.canonical)
        assert payload["q"] == "shirt"
        assert payload["category_id"] == "cat-shirts"
        assert list(payload) == sorted(payload)
        assert plan.cache_scope == "cat-shirts"
