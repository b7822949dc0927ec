"""
Search API Routes.

Provides catalog search, autocomplete, popular queries, daily stats and
cache/ranking maintenance.

NOTE: Routes use `def` (not `async def`) because the engine and its store
clients (Supabase, Redis) are synchronous. FastAPI runs sync handlers in a
thread pool, so they never block the event loop.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from config.constants import INVALIDATE_ALL
from core.logging import get_logger
from catalog_search.engine import SearchEngine, get_search_engine
from catalog_search.models import DailySearchStats, PopularQuery, RebuildOutcome, SearchResult

logger = get_logger(__name__)

router = APIRouter(prefix="/api/search", tags=["Search"])

# Query parameters accepted by GET /api/search
SEARCH_PARAMS = (
    "query", "category_id", "brand", "min_price", "max_price",
    "in_stock", "min_rating", "tags", "sort", "page", "page_size",
)


def get_engine(request: Request) -> SearchEngine:
    """Engine attached to the app at startup, or the process singleton."""
    engine = getattr(request.app.state, "search_engine", None)
    return engine if engine is not None else get_search_engine()


class InvalidateRequest(BaseModel):
    scope: str = Field(INVALIDATE_ALL, description="'all' or a category id")


class InvalidateResponse(BaseModel):
    scope: str
    deleted: int


class AutocompleteResponse(BaseModel):
    query: str
    suggestions: List[str]


# =============================================================================
# Search
# =============================================================================

@router.get(
    "",
    response_model=SearchResult,
    summary="Search the product catalog",
)
def search(
    request: Request,
    engine: SearchEngine = Depends(get_engine),
) -> SearchResult:
    """
    Filtered, faceted product search.

    Parameters are read from the query string and validated by the query
    planner, so every malformed value is answered with 400:

    - **query**: free text (name/description substring, or tag word)
    - **category_id**, **brand**: exact filters
    - **min_price**, **max_price**: inclusive, minor currency units
    - **in_stock**, **min_rating**
    - **tags**: comma separated or repeated, any-match
    - **sort**: relevance | price_asc | price_desc | rating | newest
    - **page** (1-based), **page_size** (1..100)
    """
    return engine.search(_search_params(request))


def _search_params(request: Request) -> Dict[str, Any]:
    params = request.query_params
    raw: Dict[str, Any] = {k: params[k] for k in SEARCH_PARAMS if k in params}
    tags = params.getlist("tags")
    if len(tags) > 1:
        raw["tags"] = ",".join(tags)
    return raw


# =============================================================================
# Autocomplete & Popular Queries
# =============================================================================

@router.get(
    "/autocomplete",
    response_model=AutocompleteResponse,
    summary="Autocomplete suggestions",
)
def autocomplete(
    q: str = Query("", description="Partial query text"),
    limit: int = Query(10, description="Max suggestions (clamped to 1..20)"),
    engine: SearchEngine = Depends(get_engine),
) -> AutocompleteResponse:
    return AutocompleteResponse(query=q, suggestions=engine.autocomplete(q, limit))


@router.get(
    "/popular",
    response_model=List[PopularQuery],
    summary="Most frequent search queries",
)
def popular_queries(
    limit: int = Query(10, ge=1, le=100),
    engine: SearchEngine = Depends(get_engine),
) -> List[PopularQuery]:
    return engine.popular_queries(limit)


@router.get(
    "/stats",
    response_model=DailySearchStats,
    summary="Search counters for one day",
)
def daily_stats(
    day: Optional[str] = Query(None, description="YYYY-MM-DD (UTC); today when omitted"),
    engine: SearchEngine = Depends(get_engine),
) -> DailySearchStats:
    return engine.daily_stats(day)


# =============================================================================
# Maintenance
# =============================================================================

@router.post(
    "/invalidate",
    response_model=InvalidateResponse,
    summary="Drop cached search results",
)
def invalidate(
    body: InvalidateRequest,
    engine: SearchEngine = Depends(get_engine),
) -> InvalidateResponse:
    """Called by catalog write paths after a product or category changes."""
    deleted = engine.invalidate(body.scope)
    return InvalidateResponse(scope=body.scope, deleted=deleted)


@router.post(
    "/ranking-index/rebuild",
    response_model=RebuildOutcome,
    summary="Recompute the ranking index",
)
def rebuild_ranking_index(engine: SearchEngine = Depends(get_engine)) -> RebuildOutcome:
    """Returns status 'skipped' when a rebuild is already running."""
    outcome = engine.rebuild_ranking_index()
    logger.info("Ranking index rebuild requested", status=outcome.status)
    return outcome
