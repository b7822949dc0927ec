"""
Search Engine: the facade callers use.

Pipeline for search():
1. Plan: validate and normalize the request (no store calls on rejection)
2. Cache lookup by the canonical request
3. On miss, the primary fetch (find + count) runs on the search pool while
   facets are aggregated; the primary fetch is bounded and fails the
   request, facets are bounded and degrade to a partial summary
4. Rank the page, attach related-query suggestions, cache the result
   (results with partial facets are not cached)
5. Record analytics in the background

Relevance ordering is by composite score over the whole match set: small
sets are scored in full, large ones are read from the top of the ranking
index. Only a large set without a fresh index is approximated by re-ranking
the most popular candidates.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from config.constants import (
    DEFAULT_AUTOCOMPLETE_CONFIG,
    DEFAULT_FACET_CONFIG,
    DEFAULT_QUERY_LIMITS,
    DEFAULT_RANKING_CONFIG,
    INVALIDATE_ALL,
    UNSCOPED_CATEGORY,
)
from config.settings import Settings, get_settings
from core.errors import SearchEngineError, StoreUnavailableError
from core.logging import LoggerMixin, get_logger
from core.utils import utc_now
from catalog_search.analytics import AnalyticsRecorder
from catalog_search.autocomplete import AutocompleteService
from catalog_search.cache import CacheManager, popularity_key, search_key
from catalog_search.facets import FacetAggregator
from catalog_search.models import (
    STORE_ORDERINGS,
    DailySearchStats,
    EnrichedProduct,
    FacetSummary,
    PopularQuery,
    Product,
    ProductFilter,
    RebuildOutcome,
    SearchRequest,
    SearchResult,
    SortMode,
)
from catalog_search.query_planner import QueryPlanner, SearchPlan
from catalog_search.ranking import RankedProduct, RankingEngine
from catalog_search.stores.catalog import CatalogReader, InMemoryCatalogReader, SupabaseCatalogReader
from catalog_search.stores.kv import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore

logger = get_logger(__name__)

HEALTH_PROBE_KEY = "health:probe"


class SearchEngine(LoggerMixin):
    """
    Catalog search, autocomplete and search analytics over a catalog reader
    and a key-value store.

    Usage:
        engine = SearchEngine(InMemoryCatalogReader(products), InMemoryKeyValueStore())
        result = engine.search({"query": "blue shirt", "page_size": 10})
        engine.autocomplete("blu")
        engine.invalidate("cat-shirts")
        engine.close()
    """

    def __init__(
        self,
        catalog: CatalogReader,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = settings or get_settings()
        self._settings = settings
        self._catalog = catalog
        self._store = store

        self.planner = QueryPlanner(DEFAULT_QUERY_LIMITS)
        self.cache = CacheManager(store)
        self.analytics = AnalyticsRecorder(
            store,
            retention_days=settings.analytics_stats_retention_days,
            max_workers=settings.analytics_workers,
            enabled=settings.analytics_enabled,
            config=DEFAULT_AUTOCOMPLETE_CONFIG,
            clock=clock,
        )
        self.ranking = RankingEngine(
            store,
            catalog,
            DEFAULT_RANKING_CONFIG,
            index_ttl_seconds=settings.ranking_index_ttl_seconds,
            batch_size=settings.ranking_rebuild_batch_size,
            lock_ttl_seconds=settings.ranking_rebuild_lock_ttl_seconds,
            clock=clock,
        )
        self.facets = FacetAggregator(
            catalog,
            DEFAULT_FACET_CONFIG,
            timeout_ms=settings.facet_timeout_ms,
            max_workers=settings.facet_workers,
        )
        self.autocompleter = AutocompleteService(
            catalog,
            self.cache,
            self.analytics,
            DEFAULT_AUTOCOMPLETE_CONFIG,
            ttl_seconds=settings.autocomplete_cache_ttl_seconds,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=settings.search_workers, thread_name_prefix="search"
        )

    # =========================================================================
    # Search
    # =========================================================================

    def search(self, request: Union[SearchRequest, Mapping[str, Any]]) -> SearchResult:
        """
        Run a search.

        Args:
            request: SearchRequest or a mapping of request fields

        Returns:
            SearchResult (served from cache when an identical request was
            answered within the TTL)

        Raises:
            SearchValidationError: Malformed request; nothing was queried.
            StoreUnavailableError: Catalog or cache failure or timeout.
        """
        t_start = time.perf_counter()
        plan = self.planner.plan(request)

        # Degraded facets are served for this request only, never cached
        result = self.cache.get_or_compute(
            search_key(plan.cache_scope, plan.canonical),
            self._settings.search_cache_ttl_seconds,
            lambda: self._execute(plan, t_start),
            SearchResult,
            should_cache=lambda r: not r.facets.partial,
        )

        duration_ms = (time.perf_counter() - t_start) * 1000
        self.analytics.record(plan.display_query, result.total, duration_ms)
        return result

    def _execute(self, plan: SearchPlan, t_start: float) -> SearchResult:
        product_filter = plan.product_filter

        deadline = time.monotonic() + self._settings.primary_fetch_timeout_ms / 1000
        if plan.sort == SortMode.RELEVANCE:
            futures = [self._executor.submit(self._relevance_page, plan)]
        else:
            futures = [
                self._executor.submit(
                    self._catalog.find, product_filter, STORE_ORDERINGS[plan.sort], plan.limit, plan.offset
                ),
                self._executor.submit(self._catalog.count, product_filter),
            ]

        # Facets run on their own pool while the primary fetch is in flight
        facets = self.facets.aggregate(product_filter)

        results = self._join_primary(futures, deadline)
        if plan.sort == SortMode.RELEVANCE:
            ranked, total = results[0]
        else:
            products, total = results
            ranked = self.ranking.rank(products, plan.sort)

        took_ms = int((time.perf_counter() - t_start) * 1000)
        result = self._assemble(plan, ranked, total, facets, took_ms)
        self.logger.info(
            "Search executed",
            query=plan.display_query,
            sort=plan.sort.value,
            page=plan.page,
            total=total,
            returned=len(result.products),
            partial_facets=facets.partial,
            took_ms=took_ms,
        )
        return result

    def _relevance_page(self, plan: SearchPlan) -> Tuple[List[RankedProduct], int]:
        """
        One page in composite-score order.

        Match sets up to relevance_full_rank_limit are fetched and scored in
        full. Larger sets are read from the top of the ranking index; without
        a fresh index they fall back to re-ranking the most popular window.
        """
        product_filter = plan.product_filter
        total = self._catalog.count(product_filter)
        stop = plan.offset + plan.limit
        if plan.offset >= total:
            return [], total

        if total <= self._settings.relevance_full_rank_limit:
            products = self._catalog.find(product_filter, STORE_ORDERINGS[SortMode.RELEVANCE], total)
            return self.ranking.rank(products)[plan.offset:stop], total

        ranked = self.ranking.top_from_index(product_filter, stop)
        if ranked is not None:
            return ranked[plan.offset:stop], total

        self.logger.warning(
            "Ranking index not fresh, approximating relevance order",
            total=total,
            window=self._settings.relevance_window,
        )
        if stop <= self._settings.relevance_window:
            candidates = self._catalog.find(
                product_filter, STORE_ORDERINGS[SortMode.RELEVANCE], self._settings.relevance_window
            )
            return self.ranking.rank(candidates)[plan.offset:stop], total
        page = self._catalog.find(product_filter, STORE_ORDERINGS[SortMode.RELEVANCE], plan.limit, plan.offset)
        return self.ranking.rank(page), total

    def _join_primary(self, futures: List[Future], deadline: float) -> List[Any]:
        timeout = max(0.0, deadline - time.monotonic())
        _, not_done = wait(futures, timeout=timeout)
        if not_done:
            for future in not_done:
                future.cancel()
            self.logger.error(
                "Primary fetch timed out",
                timeout_ms=self._settings.primary_fetch_timeout_ms,
            )
            raise StoreUnavailableError(
                f"Catalog fetch exceeded {self._settings.primary_fetch_timeout_ms}ms",
                store="catalog",
            )

        try:
            return [future.result() for future in futures]
        except SearchEngineError:
            raise
        except Exception as e:
            self.logger.error("Primary fetch failed", error=str(e))
            raise StoreUnavailableError(f"Catalog fetch failed: {e}", store="catalog") from e

    def _assemble(
        self,
        plan: SearchPlan,
        ranked: List[RankedProduct],
        total: int,
        facets: FacetSummary,
        took_ms: int,
    ) -> SearchResult:
        return SearchResult(
            products=[EnrichedProduct.from_product(p, score) for p, score in ranked],
            total=total,
            page=plan.page,
            page_size=plan.page_size,
            facets=facets,
            suggestions=self.analytics.related_queries(plan.display_query),
            took_ms=took_ms,
        )

    # =========================================================================
    # Autocomplete & Popular Queries
    # =========================================================================

    def autocomplete(self, prefix: Optional[str], limit: int = 10) -> List[str]:
        return self.autocompleter.suggest(prefix, limit)

    def popular_queries(self, limit: int = 10) -> List[PopularQuery]:
        """Most searched queries (cached briefly so trending lists stay cheap)."""
        limit = max(1, min(int(limit), DEFAULT_AUTOCOMPLETE_CONFIG.LEDGER_SCAN))
        return self.cache.get_or_compute(
            popularity_key(limit),
            self._settings.popular_queries_cache_ttl_seconds,
            lambda: self.analytics.popular_queries(limit),
            List[PopularQuery],
        )

    def daily_stats(self, day: Optional[str] = None) -> DailySearchStats:
        return self.analytics.daily_stats(day)

    def prune_ledger(self, keep: int) -> int:
        return self.analytics.prune_ledger(keep)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def invalidate(self, scope: Optional[str] = INVALIDATE_ALL) -> int:
        return self.cache.invalidate(scope)

    def invalidate_product(self, product: Product) -> int:
        """Drop cached results a change to this product could affect."""
        return self.cache.invalidate(product.category_id or UNSCOPED_CATEGORY)

    def rebuild_ranking_index(self) -> RebuildOutcome:
        return self.ranking.rebuild_index()

    def check_stores(self) -> Dict[str, str]:
        """Connectivity of the catalog and the key-value store."""
        status: Dict[str, str] = {}
        try:
            self._catalog.count(ProductFilter())
            status["catalog"] = "ok"
        except Exception as e:
            self.logger.warning("Catalog health check failed", error=str(e))
            status["catalog"] = "unavailable"
        try:
            self._store.exists(HEALTH_PROBE_KEY)
            status["cache"] = "ok"
        except Exception as e:
            self.logger.warning("Cache health check failed", error=str(e))
            status["cache"] = "unavailable"
        return status

    def close(self) -> None:
        """Shut down worker pools; pending analytics writes are flushed."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.facets.close()
        self.analytics.close(wait=True)


# =============================================================================
# Backends
# =============================================================================

def build_catalog_reader(settings: Settings) -> CatalogReader:
    if settings.catalog_backend == "supabase":
        # Imported here so the in-memory setup never needs credentials
        from config.database import get_supabase_client

        return SupabaseCatalogReader(get_supabase_client(), table=settings.products_table)

    logger.warning("Using in-memory catalog (empty unless products are loaded)")
    return InMemoryCatalogReader()


def build_key_value_store(settings: Settings) -> KeyValueStore:
    if settings.redis_enabled:
        from config.database import get_redis_client_optional

        client = get_redis_client_optional()
        if client is not None:
            logger.info("Using Redis cache tier")
            return RedisKeyValueStore(client)
        logger.warning("Redis unavailable, falling back to in-memory cache tier")

    return InMemoryKeyValueStore()


def build_search_engine(settings: Optional[Settings] = None) -> SearchEngine:
    settings = settings or get_settings()
    return SearchEngine(
        build_catalog_reader(settings),
        build_key_value_store(settings),
        settings=settings,
    )


# =============================================================================
# Singleton
# =============================================================================

_engine: Optional[SearchEngine] = None
_engine_lock = threading.Lock()


def get_search_engine() -> SearchEngine:
    """Get or create the SearchEngine singleton (thread-safe)."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = build_search_engine()
    return _engine


def close_search_engine() -> None:
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.close()
            _engine = None
