"""
Facet Aggregator: category, brand, tag and price distributions.

Each dimension is aggregated against the current filter with that
dimension's own constraint removed, so a selected category still shows the
other categories the shopper could switch to.

The four aggregations are independent reads and run concurrently. The join
is bounded: dimensions that miss the deadline (or fail) are left empty and
the summary is marked partial. Facets never fail a search.
"""

from bisect import bisect_right
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence

from config.constants import DEFAULT_FACET_CONFIG, FacetConfig
from core.errors import FacetTimeoutError
from core.logging import LoggerMixin
from catalog_search.models import (
    AggregateBucket,
    CategoryBucket,
    FacetSummary,
    FacetValue,
    PriceBucket,
    ProductFilter,
)
from catalog_search.stores.catalog import CatalogReader


def build_price_buckets(price_counts: Sequence[AggregateBucket], bucket_count: int = 5) -> List[PriceBucket]:
    """
    Split [min, max] of the observed prices into equal-width buckets.

    Buckets are contiguous and non-overlapping over integer prices; the last
    one includes max. When every price is the same a single bucket is
    returned. Each bucket carries the number of products priced inside it.

    Args:
        price_counts: (price, count) buckets from the catalog
        bucket_count: Desired number of buckets

    Returns:
        Ordered list of PriceBucket
    """
    if not price_counts:
        return []

    low = min(int(b.key) for b in price_counts)
    high = max(int(b.key) for b in price_counts)
    total = sum(b.count for b in price_counts)
    if high <= low:
        return [PriceBucket(min=low, max=high, count=total)]

    span = high - low
    # Never more buckets than distinct integer steps in the range
    n = max(1, min(bucket_count, span))
    edges = [low + (span * i) // n for i in range(n + 1)]
    lowers = edges[:-1]

    counts = [0] * n
    for bucket in price_counts:
        idx = bisect_right(lowers, int(bucket.key)) - 1
        counts[idx] += bucket.count

    ranges = []
    for i in range(n):
        upper = high if i == n - 1 else edges[i + 1] - 1
        ranges.append(PriceBucket(min=lowers[i], max=upper, count=counts[i]))
    return ranges


def _top_values(buckets: Sequence[AggregateBucket], limit: int) -> List[FacetValue]:
    # Count desc, label asc for deterministic ties
    ordered = sorted(buckets, key=lambda b: (-b.count, str(b.key)))
    return [FacetValue(label=str(b.key), count=b.count) for b in ordered[:limit]]


class FacetAggregator(LoggerMixin):
    """
    Compute a FacetSummary for a filter.

    Usage:
        aggregator = FacetAggregator(catalog, timeout_ms=800)
        summary = aggregator.aggregate(plan.product_filter)
    """

    DIMENSIONS = ("category", "brand", "tags", "price")

    def __init__(
        self,
        catalog: CatalogReader,
        config: FacetConfig = DEFAULT_FACET_CONFIG,
        timeout_ms: int = 800,
        max_workers: int = 8,
    ):
        self._catalog = catalog
        self._config = config
        self._timeout_ms = timeout_ms
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="facets")
        self._builders: Dict[str, Callable[[ProductFilter], Any]] = {
            "category": self._category_facet,
            "brand": self._brand_facet,
            "tags": self._tag_facet,
            "price": self._price_facet,
        }

    # =========================================================================
    # Dimensions
    # =========================================================================

    def _category_facet(self, product_filter: ProductFilter) -> List[CategoryBucket]:
        buckets = self._catalog.aggregate(product_filter.without("category"), "category")
        ordered = sorted(buckets, key=lambda b: (-b.count, b.label or str(b.key)))
        return [
            CategoryBucket(id=str(b.key), label=b.label or str(b.key), count=b.count)
            for b in ordered
        ]

    def _brand_facet(self, product_filter: ProductFilter) -> List[FacetValue]:
        buckets = self._catalog.aggregate(product_filter.without("brand"), "brand")
        return _top_values(buckets, self._config.TOP_BRANDS)

    def _tag_facet(self, product_filter: ProductFilter) -> List[FacetValue]:
        buckets = self._catalog.aggregate(product_filter.without("tags"), "tags")
        return _top_values(buckets, self._config.TOP_TAGS)

    def _price_facet(self, product_filter: ProductFilter) -> List[PriceBucket]:
        buckets = self._catalog.aggregate(product_filter.without("price"), "price")
        return build_price_buckets(buckets, self._config.PRICE_BUCKET_COUNT)

    # =========================================================================
    # Join
    # =========================================================================

    def aggregate(self, product_filter: ProductFilter, timeout_ms: Optional[int] = None) -> FacetSummary:
        """
        Run every dimension concurrently and join within the timeout.

        Args:
            product_filter: The request's full filter
            timeout_ms: Override of the configured join timeout

        Returns:
            FacetSummary; `partial` is True if any dimension is missing.
        """
        timeout_ms = self._timeout_ms if timeout_ms is None else timeout_ms
        futures = {
            dimension: self._executor.submit(self._builders[dimension], product_filter)
            for dimension in self.DIMENSIONS
        }
        _, not_done = wait(futures.values(), timeout=timeout_ms / 1000)

        results: Dict[str, Any] = {}
        late: List[str] = []
        failed: List[str] = []
        for dimension, future in futures.items():
            if future in not_done:
                future.cancel()
                late.append(dimension)
                continue
            try:
                results[dimension] = future.result()
            except Exception as e:
                failed.append(dimension)
                self.logger.warning("Facet dimension failed", dimension=dimension, error=str(e))

        if late:
            timeout = FacetTimeoutError(late, timeout_ms)
            self.logger.warning("Facet join timed out", dimensions=late, timeout_ms=timeout_ms, error=str(timeout))

        return FacetSummary(
            categories=results.get("category", []),
            brands=results.get("brand", []),
            tags=results.get("tags", []),
            price_ranges=results.get("price", []),
            partial=bool(late or failed),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
