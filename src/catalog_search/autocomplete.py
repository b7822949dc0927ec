"""
Autocomplete Service.

Suggests completions for a partial query from three sources:
1. Names of active products containing the prefix
2. Name words and tags containing the prefix (longer than 2 chars)
3. Popular queries from the search frequency ledger

Suggestions starting with the prefix come first, then shorter ones, then
lexical order, so the same catalog state always yields the same list.
"""

from typing import Iterable, List, Optional

from config.constants import DEFAULT_AUTOCOMPLETE_CONFIG, AutocompleteConfig
from core.logging import get_logger
from core.utils import collapse_whitespace
from catalog_search.analytics import AnalyticsRecorder
from catalog_search.cache import CacheManager, autocomplete_key
from catalog_search.models import STORE_ORDERINGS, ProductFilter, SortMode
from catalog_search.stores.catalog import CatalogReader

logger = get_logger(__name__)


class AutocompleteService:
    """
    Prefix suggestions over product names, tags and popular queries.

    Usage:
        service = AutocompleteService(catalog, cache, analytics)
        service.suggest("shi", limit=5)   # ["shirt", "shirts", "blue cotton shirt"]
    """

    def __init__(
        self,
        catalog: CatalogReader,
        cache: CacheManager,
        analytics: AnalyticsRecorder,
        config: AutocompleteConfig = DEFAULT_AUTOCOMPLETE_CONFIG,
        ttl_seconds: int = 60,
    ):
        self._catalog = catalog
        self._cache = cache
        self._analytics = analytics
        self._config = config
        self._ttl_seconds = ttl_seconds

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self._config.DEFAULT_LIMIT
        return max(1, min(int(limit), self._config.MAX_LIMIT))

    def suggest(self, prefix: Optional[str], limit: Optional[int] = None) -> List[str]:
        """
        Get autocomplete suggestions.

        Args:
            prefix: Partial query text as typed
            limit: Max suggestions (clamped to 1..20, default 10)

        Returns:
            Ordered, case-insensitively unique suggestions. Empty when the
            trimmed prefix is shorter than 2 characters.
        """
        needle = collapse_whitespace(prefix).lower()
        if len(needle) < self._config.MIN_PREFIX_LENGTH:
            return []
        limit = self.clamp_limit(limit)

        return self._cache.get_or_compute(
            autocomplete_key(needle, limit),
            self._ttl_seconds,
            lambda: self._compute(needle, limit),
            List[str],
        )

    def _compute(self, needle: str, limit: int) -> List[str]:
        candidates: List[str] = []

        # 1. Product names and their words/tags
        products = self._catalog.find(
            ProductFilter(text=needle),
            STORE_ORDERINGS[SortMode.RELEVANCE],
            limit * self._config.PRODUCT_SCAN_FACTOR,
        )
        for product in products:
            if needle not in product.name.lower():
                continue
            candidates.append(collapse_whitespace(product.name))
            candidates.extend(self._tokens(product.name.split(), needle))
            candidates.extend(self._tokens(product.tags, needle))

        # 2. Popular queries
        candidates.extend(self._analytics.queries_containing(needle, self._config.LEDGER_SCAN))

        suggestions = _dedupe(candidates)
        suggestions.sort(key=lambda s: (not s.lower().startswith(needle), len(s), s.lower(), s))
        logger.debug("Autocomplete computed", prefix=needle, candidates=len(candidates), returned=min(limit, len(suggestions)))
        return suggestions[:limit]

    def _tokens(self, values: Iterable[str], needle: str) -> List[str]:
        return [
            v for v in values
            if len(v) >= self._config.MIN_TOKEN_LENGTH and needle in v.lower()
        ]


def _dedupe(values: Iterable[str]) -> List[str]:
    """Case-insensitive dedupe keeping the first spelling seen."""
    seen = set()
    unique = []
    for value in values:
        folded = value.lower()
        if not value or folded in seen:
            continue
        seen.add(folded)
        unique.append(value)
    return unique
