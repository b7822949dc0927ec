"""
Search policy constants.

These are values that don't change based on environment but may need
to be tuned or referenced across the codebase. Components take them as
injectable frozen dataclasses so tests and deployments can override them.
"""

from dataclasses import dataclass


# =============================================================================
# Ranking Configuration
# =============================================================================

@dataclass(frozen=True)
class RankingConfig:
    """Weights of the composite popularity/recency score."""

    ORDER_WEIGHT: float = 0.5
    REVIEW_WEIGHT: float = 0.2
    WISHLIST_WEIGHT: float = 0.1
    RECENCY_WEIGHT: float = 0.2

    # Recency term decays linearly from RECENCY_WINDOW_DAYS to zero
    RECENCY_WINDOW_DAYS: int = 100


DEFAULT_RANKING_CONFIG = RankingConfig()


# =============================================================================
# Facet Configuration
# =============================================================================

@dataclass(frozen=True)
class FacetConfig:
    """Shape of the facet summary."""

    PRICE_BUCKET_COUNT: int = 5
    TOP_TAGS: int = 20
    TOP_BRANDS: int = 20


DEFAULT_FACET_CONFIG = FacetConfig()


# =============================================================================
# Query Limits
# =============================================================================

@dataclass(frozen=True)
class QueryLimits:
    """Bounds enforced by the query planner."""

    MIN_PAGE_SIZE: int = 1
    MAX_PAGE_SIZE: int = 100
    DEFAULT_PAGE_SIZE: int = 20
    MAX_QUERY_LENGTH: int = 200
    MAX_TAGS: int = 20
    MAX_RATING: float = 5.0


DEFAULT_QUERY_LIMITS = QueryLimits()


# =============================================================================
# Autocomplete Configuration
# =============================================================================

@dataclass(frozen=True)
class AutocompleteConfig:
    """Candidate generation limits for suggestions."""

    MIN_PREFIX_LENGTH: int = 2
    MIN_TOKEN_LENGTH: int = 3
    DEFAULT_LIMIT: int = 10
    MAX_LIMIT: int = 20
    # Product rows scanned per suggestion request, as a multiple of limit
    PRODUCT_SCAN_FACTOR: int = 2
    # Ledger entries scanned for popular-query candidates
    LEDGER_SCAN: int = 100

    # Related-query suggestions embedded in search results
    RESULT_SUGGESTIONS: int = 5


DEFAULT_AUTOCOMPLETE_CONFIG = AutocompleteConfig()


# =============================================================================
# Key-Value Namespaces
# =============================================================================

SEARCH_KEY_PREFIX = "search"
AUTOCOMPLETE_KEY_PREFIX = "autocomplete"
POPULARITY_KEY_PREFIX = "popularity"
RANKING_INDEX_KEY = "ranking_index"
RANKING_INDEX_MARKER_KEY = "ranking_index:built_at"
RANKING_REBUILD_LOCK_KEY = "ranking_index:rebuild_lock"
QUERY_FREQUENCY_KEY = "search_frequency"
SEARCH_STATS_KEY_PREFIX = "search_stats"

# Placeholder for requests without a category filter in search cache keys
UNSCOPED_CATEGORY = "_"
INVALIDATE_ALL = "all"
