"""
Query Planner: turns a caller's search request into a validated plan.

The plan carries:
1. The normalized request (original query casing kept for display)
2. A store-agnostic ProductFilter (lower-cased text, sorted tags)
3. Sort mode and offset/limit
4. A canonical, order-independent serialization used for cache keys

Planning is pure: no store calls, no side effects. Every rejection is a
SearchValidationError so callers can answer "bad request" without touching
the catalog.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from config.constants import DEFAULT_QUERY_LIMITS, UNSCOPED_CATEGORY, QueryLimits
from core.errors import SearchValidationError
from core.logging import get_logger
from core.utils import collapse_whitespace, normalize_string_set
from catalog_search.models import ProductFilter, SearchRequest, SortMode

logger = get_logger(__name__)


@dataclass(frozen=True)
class SearchPlan:
    """Validated, normalized search request."""
    request: SearchRequest
    display_query: str
    product_filter: ProductFilter
    sort: SortMode
    page: int
    page_size: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size

    @property
    def match_text(self) -> str:
        return self.product_filter.text or ""

    @property
    def cache_scope(self) -> str:
        """Category the cached result belongs to, for scoped invalidation."""
        return self.product_filter.category_id or UNSCOPED_CATEGORY

    @property
    def canonical(self) -> str:
        """
        Stable serialization of everything that affects the result.

        Tag order and query casing do not change it.
        """
        f = self.product_filter
        payload: Dict[str, Any] = {
            "q": f.text,
            "category_id": f.category_id,
            "brand": f.brand,
            "min_price": f.min_price,
            "max_price": f.max_price,
            "in_stock": f.in_stock,
            "min_rating": f.min_rating,
            "tags": list(f.tags),
            "sort": self.sort.value,
            "page": self.page,
            "page_size": self.page_size,
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class QueryPlanner:
    """
    Validate and normalize search requests.

    Usage:
        planner = QueryPlanner()
        plan = planner.plan({"query": "Blue", "tags": ["sale"], "page_size": 10})
        plan.product_filter.text   # "blue"
        plan.display_query         # "Blue"
    """

    def __init__(self, limits: QueryLimits = DEFAULT_QUERY_LIMITS):
        self._limits = limits

    def plan(self, raw: Union[SearchRequest, Mapping[str, Any]]) -> SearchPlan:
        """
        Build a SearchPlan.

        Args:
            raw: A SearchRequest or a mapping of request fields
                 (e.g. HTTP query parameters).

        Returns:
            SearchPlan ready for execution.

        Raises:
            SearchValidationError: If the request is malformed.
        """
        request = self._coerce(raw)
        limits = self._limits

        if not limits.MIN_PAGE_SIZE <= request.page_size <= limits.MAX_PAGE_SIZE:
            raise SearchValidationError(
                f"page_size must be between {limits.MIN_PAGE_SIZE} and {limits.MAX_PAGE_SIZE}",
                field="page_size",
            )
        page = max(1, request.page)

        display_query = collapse_whitespace(request.query)
        if len(display_query) > limits.MAX_QUERY_LENGTH:
            raise SearchValidationError(
                f"query must be at most {limits.MAX_QUERY_LENGTH} characters",
                field="query",
            )

        min_price, max_price = request.min_price, request.max_price
        for name, value in (("min_price", min_price), ("max_price", max_price)):
            if value is not None and value < 0:
                raise SearchValidationError(f"{name} must not be negative", field=name)
        if min_price is not None and max_price is not None and min_price > max_price:
            min_price, max_price = max_price, min_price

        if request.min_rating is not None and not 0 <= request.min_rating <= limits.MAX_RATING:
            raise SearchValidationError(
                f"min_rating must be between 0 and {limits.MAX_RATING}",
                field="min_rating",
            )

        tags = normalize_string_set(request.tags)
        if len(tags) > limits.MAX_TAGS:
            raise SearchValidationError(
                f"at most {limits.MAX_TAGS} tags may be given",
                field="tags",
            )

        category_id = _blank_to_none(request.category_id)
        brand = _blank_to_none(request.brand)

        product_filter = ProductFilter(
            text=display_query.lower() or None,
            category_id=category_id,
            brand=brand.lower() if brand else None,
            min_price=min_price,
            max_price=max_price,
            in_stock=request.in_stock,
            min_rating=request.min_rating,
            tags=tuple(tags),
        )

        normalized = request.model_copy(update={
            "query": display_query or None,
            "category_id": category_id,
            "brand": brand,
            "min_price": min_price,
            "max_price": max_price,
            "tags": tags,
            "page": page,
        })

        return SearchPlan(
            request=normalized,
            display_query=display_query,
            product_filter=product_filter,
            sort=request.sort,
            page=page,
            page_size=request.page_size,
        )

    @staticmethod
    def _coerce(raw: Union[SearchRequest, Mapping[str, Any]]) -> SearchRequest:
        if isinstance(raw, SearchRequest):
            return raw
        if not isinstance(raw, Mapping):
            raise SearchValidationError(f"Unsupported request type: {type(raw).__name__}")
        try:
            return SearchRequest.model_validate(dict(raw))
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            first = errors[0]["loc"] if errors else None
            logger.debug("Rejected search request", errors=errors)
            raise SearchValidationError("Invalid search request", field=first, errors=errors) from e


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
