"""
Catalog Search: filtered product search with facets, popularity ranking,
result caching, autocomplete and query analytics.

Provides:
- SearchEngine: Facade over the whole pipeline
- QueryPlanner: Request validation and normalization
- FacetAggregator: Concurrent, time-bounded facet distributions
- RankingEngine: Composite popularity/recency score and batch index
- CacheManager: Get-or-compute result cache with scoped invalidation
- AutocompleteService: Prefix suggestions
- AnalyticsRecorder: Fire-and-forget query frequency and daily stats
"""

from catalog_search.analytics import AnalyticsRecorder
from catalog_search.autocomplete import AutocompleteService
from catalog_search.cache import CacheManager
from catalog_search.engine import SearchEngine, build_search_engine, get_search_engine
from catalog_search.facets import FacetAggregator, build_price_buckets
from catalog_search.models import (
    Product,
    ProductFilter,
    SearchRequest,
    SearchResult,
    SortMode,
)
from catalog_search.query_planner import QueryPlanner, SearchPlan
from catalog_search.ranking import RankingEngine

__all__ = [
    "SearchEngine",
    "build_search_engine",
    "get_search_engine",
    "QueryPlanner",
    "SearchPlan",
    "FacetAggregator",
    "build_price_buckets",
    "RankingEngine",
    "CacheManager",
    "AutocompleteService",
    "AnalyticsRecorder",
    "Product",
    "ProductFilter",
    "SearchRequest",
    "SearchResult",
    "SortMode",
]
