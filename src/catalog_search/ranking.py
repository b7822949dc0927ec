"""
Ranking Engine: composite popularity/recency score.

score = order_count * 0.5
      + review_count * 0.2
      + wishlist_count * 0.1
      + max(0, 100 - age_in_days) * 0.2

The score drives "relevance" ordering. Explicit sort modes (price, rating,
newest) bypass it and order on the requested field with id tie-breaks.

Scores for the whole catalog are precomputed by rebuild_index() into the
`ranking_index` sorted set. Request-time ranking reads the index while its
freshness marker exists and scores on the fly otherwise (missing index,
expired marker, or a rebuild in progress). Large match sets are ordered by
walking the index from the top (top_from_index).
"""

import time
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config.constants import (
    DEFAULT_RANKING_CONFIG,
    RANKING_INDEX_KEY,
    RANKING_INDEX_MARKER_KEY,
    RANKING_REBUILD_LOCK_KEY,
    RankingConfig,
)
from core.logging import LoggerMixin
from core.utils import ensure_utc, utc_now
from catalog_search.models import (
    STORE_ORDERINGS,
    Product,
    ProductFilter,
    RebuildOutcome,
    SortField,
    SortMode,
    sort_products,
)
from catalog_search.stores.catalog import CatalogReader
from catalog_search.stores.kv import KeyValueStore


SECONDS_PER_DAY = 86400

RankedProduct = Tuple[Product, Optional[float]]


class RankingEngine(LoggerMixin):
    """
    Score and order products.

    Usage:
        engine = RankingEngine(store, catalog)
        engine.score(product)                         # float >= 0
        engine.rank(products, SortMode.RELEVANCE)     # [(product, score), ...]
        engine.rebuild_index()                        # batch refresh
    """

    def __init__(
        self,
        store: KeyValueStore,
        catalog: CatalogReader,
        config: RankingConfig = DEFAULT_RANKING_CONFIG,
        index_ttl_seconds: int = 3600,
        batch_size: int = 500,
        lock_ttl_seconds: int = 900,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._catalog = catalog
        self._config = config
        self._index_ttl_seconds = index_ttl_seconds
        self._batch_size = batch_size
        self._lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock

    # =========================================================================
    # Scoring
    # =========================================================================

    def age_in_days(self, product: Product, now: Optional[datetime] = None) -> int:
        now = ensure_utc(now or self._clock())
        elapsed = (now - ensure_utc(product.created_at)).total_seconds()
        return max(0, int(elapsed // SECONDS_PER_DAY))

    def recency_term(self, product: Product, now: Optional[datetime] = None) -> float:
        """Linear decay from the window length down to zero; never negative."""
        return float(max(0, self._config.RECENCY_WINDOW_DAYS - self.age_in_days(product, now)))

    def score(self, product: Product, now: Optional[datetime] = None) -> float:
        """Composite score for one product (always >= 0)."""
        cfg = self._config
        weight = (
            max(0, product.order_count) * cfg.ORDER_WEIGHT
            + max(0, product.review_count) * cfg.REVIEW_WEIGHT
            + max(0, product.wishlist_count) * cfg.WISHLIST_WEIGHT
            + self.recency_term(product, now) * cfg.RECENCY_WEIGHT
        )
        return round(weight, 6)

    # =========================================================================
    # Ordering
    # =========================================================================

    def relevance_scores(self, products: Sequence[Product]) -> Dict[str, float]:
        """
        Scores for a result set.

        Uses the precomputed index when it is fresh, and scores any product
        the index does not know on the fly.
        """
        now = self._clock()
        indexed = self.indexed_scores([p.id for p in products]) or {}

        scores: Dict[str, float] = {}
        misses = 0
        for product in products:
            value = indexed.get(product.id)
            if value is None:
                value = self.score(product, now)
                misses += 1
            scores[product.id] = value
        if indexed and misses:
            self.logger.debug("Ranking index missed products", misses=misses, total=len(products))
        return scores

    def rank(
        self,
        products: Sequence[Product],
        sort: SortMode = SortMode.RELEVANCE,
        scores: Optional[Dict[str, float]] = None,
    ) -> List[RankedProduct]:
        """
        Order products for a sort mode.

        Relevance: score desc, then most recently updated, then id.
        Other modes: the store ordering for that field, ties by id.
        """
        if sort != SortMode.RELEVANCE:
            return [(p, None) for p in sort_products(products, STORE_ORDERINGS[sort])]

        if scores is None:
            scores = self.relevance_scores(products)
        ordered = sorted(
            products,
            key=lambda p: (
                -scores[p.id],
                -ensure_utc(p.last_modified).timestamp(),
                p.id,
            ),
        )
        return [(p, scores[p.id]) for p in ordered]

    # =========================================================================
    # Batch Index
    # =========================================================================

    def index_is_fresh(self) -> bool:
        return self._store.exists(RANKING_INDEX_MARKER_KEY)

    def indexed_scores(self, product_ids: Sequence[str]) -> Optional[Dict[str, Optional[float]]]:
        """Stored scores while the index is fresh, otherwise None."""
        if not product_ids or not self.index_is_fresh():
            return None
        return self._store.get_sorted_set_scores(RANKING_INDEX_KEY, list(product_ids))

    def top_from_index(self, product_filter: ProductFilter, count: int) -> Optional[List[RankedProduct]]:
        """
        The `count` best-scoring products matching a filter, read in index order.

        Walks the ranking index from the top in batches and keeps the members
        the catalog confirms against the filter. Products added after the last
        rebuild are not in the index and only appear once it is rebuilt.

        Returns:
            Ranked products, or None while the index is not fresh.
        """
        if count <= 0:
            return []
        if not self.index_is_fresh():
            return None

        ranked: List[RankedProduct] = []
        start = 0
        while len(ranked) < count:
            rows = self._store.range_by_score_desc(RANKING_INDEX_KEY, start, start + self._batch_size - 1)
            if not rows:
                break
            scores = dict(rows)
            matched = self._catalog.find(
                replace(product_filter, ids=frozenset(scores)),
                STORE_ORDERINGS[SortMode.RELEVANCE],
                len(scores),
            )
            ranked.extend(self.rank(matched, SortMode.RELEVANCE, scores))
            if len(rows) < self._batch_size:
                break
            start += self._batch_size
        return ranked[:count]

    @property
    def is_rebuilding(self) -> bool:
        return self._store.exists(RANKING_REBUILD_LOCK_KEY)

    def rebuild_index(self) -> RebuildOutcome:
        """
        Recompute scores for every active product into the ranking index.

        Only one rebuild runs at a time across every worker sharing the
        key-value store; a concurrent call returns a "skipped" outcome
        immediately instead of waiting.
        """
        token = uuid.uuid4().hex
        if not self._store.set_if_absent(RANKING_REBUILD_LOCK_KEY, token, self._lock_ttl_seconds):
            self.logger.info("Ranking index rebuild already running, skipping")
            return RebuildOutcome(status="skipped")

        t_start = time.perf_counter()
        try:
            # Readers fall back to on-the-fly scoring until the marker returns
            self._store.delete(RANKING_INDEX_MARKER_KEY)
            now = self._clock()

            scores: Dict[str, float] = {}
            order = (SortField("id"),)
            offset = 0
            while True:
                batch = self._catalog.find(ProductFilter(), order, self._batch_size, offset)
                for product in batch:
                    scores[product.id] = self.score(product, now)
                if len(batch) < self._batch_size:
                    break
                offset += self._batch_size

            self._store.replace_sorted_set(RANKING_INDEX_KEY, scores)
            self._store.set_with_ttl(
                RANKING_INDEX_MARKER_KEY, ensure_utc(now).isoformat(), self._index_ttl_seconds
            )

            took_ms = int((time.perf_counter() - t_start) * 1000)
            self.logger.info("Ranking index rebuilt", products=len(scores), took_ms=took_ms)
            return RebuildOutcome(status="completed", products_indexed=len(scores), took_ms=took_ms)
        finally:
            # Only clear the flag this rebuild set; it may have expired and been retaken
            if self._store.get(RANKING_REBUILD_LOCK_KEY) == token:
                self._store.delete(RANKING_REBUILD_LOCK_KEY)
