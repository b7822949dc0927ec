"""
Pydantic models for the catalog search engine.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from core.utils import normalize_string_set


# ============================================================================
# Enums
# ============================================================================

class SortMode(str, Enum):
    """Result ordering requested by the caller."""
    RELEVANCE = "relevance"    # Composite popularity/recency score
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    RATING = "rating"
    NEWEST = "newest"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


# ============================================================================
# Catalog Records
# ============================================================================

class Product(BaseModel):
    """A catalog row as read from the product store. Never mutated here."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    price: int = Field(0, description="Price in minor currency units")
    stock: int = 0
    status: ProductStatus = ProductStatus.ACTIVE
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)

    # Popularity counters maintained by external write paths
    average_rating: float = 0.0
    review_count: int = 0
    order_count: int = 0
    wishlist_count: int = 0

    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return []
        return normalize_string_set(v)

    @field_validator("description", mode="before")
    @classmethod
    def empty_description(cls, v):
        return v or ""

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.created_at


# ============================================================================
# Store Query Primitives
# ============================================================================

@dataclass(frozen=True)
class ProductFilter:
    """
    Store-agnostic predicate over products.

    Every catalog reader interprets the same fields:
    - text: case-insensitive substring on name/description, or a tag equal
      to one of the words of the text
    - tags: any-match membership
    - min_price/max_price: inclusive range
    - ids: restricts matches to the given product ids (index walks)
    """
    text: Optional[str] = None
    category_id: Optional[str] = None
    brand: Optional[str] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    in_stock: bool = False
    min_rating: Optional[float] = None
    tags: Tuple[str, ...] = ()
    status: ProductStatus = ProductStatus.ACTIVE
    ids: Optional[FrozenSet[str]] = None

    @property
    def text_words(self) -> List[str]:
        return self.text.split() if self.text else []

    def without(self, *dimensions: str) -> "ProductFilter":
        """Copy of the filter with the named facet dimensions unconstrained."""
        changes: Dict[str, Any] = {}
        for dimension in dimensions:
            if dimension == "category":
                changes["category_id"] = None
            elif dimension == "brand":
                changes["brand"] = None
            elif dimension == "tags":
                changes["tags"] = ()
            elif dimension == "price":
                changes["min_price"] = None
                changes["max_price"] = None
            else:
                raise ValueError(f"Unknown facet dimension: {dimension}")
        return replace(self, **changes)

    def matches(self, product: Product) -> bool:
        """Evaluate the predicate in Python (used by in-process readers)."""
        if product.status != self.status:
            return False
        if self.ids is not None and product.id not in self.ids:
            return False
        if self.category_id is not None and product.category_id != self.category_id:
            return False
        if self.brand is not None and (product.brand or "").lower() != self.brand.lower():
            return False
        if self.min_price is not None and product.price < self.min_price:
            return False
        if self.max_price is not None and product.price > self.max_price:
            return False
        if self.in_stock and product.stock <= 0:
            return False
        if self.min_rating is not None and product.average_rating < self.min_rating:
            return False
        if self.tags and not set(self.tags).intersection(product.tags):
            return False
        if self.text:
            needle = self.text.lower()
            in_text = needle in product.name.lower() or needle in product.description.lower()
            if not in_text and not set(self.text_words).intersection(product.tags):
                return False
        return True


@dataclass(frozen=True)
class SortField:
    """One ordering key understood by catalog readers."""
    field: str
    descending: bool = False


# Store-side orderings per sort mode; id keeps ties deterministic.
STORE_ORDERINGS: Dict[SortMode, Tuple[SortField, ...]] = {
    SortMode.PRICE_ASC: (SortField("price"), SortField("id")),
    SortMode.PRICE_DESC: (SortField("price", True), SortField("id")),
    SortMode.RATING: (
        SortField("average_rating", True),
        SortField("review_count", True),
        SortField("id"),
    ),
    SortMode.NEWEST: (SortField("created_at", True), SortField("id")),
    # Candidate window for relevance: the dominant score term first
    SortMode.RELEVANCE: (
        SortField("order_count", True),
        SortField("review_count", True),
        SortField("updated_at", True),
        SortField("id"),
    ),
}


def sort_products(products: Sequence[Product], order: Sequence[SortField]) -> List[Product]:
    """Order products like a catalog store would; nulls sort last."""
    ordered = list(products)
    # Stable sorts applied from the least significant key
    for sort_field in reversed(order):
        present = [p for p in ordered if getattr(p, sort_field.field) is not None]
        missing = [p for p in ordered if getattr(p, sort_field.field) is None]
        present.sort(key=lambda p: getattr(p, sort_field.field), reverse=sort_field.descending)
        ordered = present + missing
    return ordered


@dataclass(frozen=True)
class AggregateBucket:
    """A group-by row: the grouped value, an optional display label, a count."""
    key: Any
    count: int
    label: Optional[str] = None


# ============================================================================
# Request Models
# ============================================================================

class SearchRequest(BaseModel):
    """
    Search request as sent by callers.

    Only types are enforced here; bounds and normalization are the query
    planner's job so that every violation surfaces as SearchValidationError.
    """
    model_config = ConfigDict(extra="ignore")

    query: Optional[str] = Field(None, description="Free-text query")
    category_id: Optional[str] = Field(None, description="Category filter")
    brand: Optional[str] = Field(None, description="Brand filter")
    min_price: Optional[int] = Field(None, description="Minimum price (inclusive, minor units)")
    max_price: Optional[int] = Field(None, description="Maximum price (inclusive, minor units)")
    in_stock: bool = Field(False, description="Only products with stock > 0")
    min_rating: Optional[float] = Field(None, description="Minimum average rating")
    tags: List[str] = Field(default_factory=list, description="Any-match tag filter")
    sort: SortMode = Field(SortMode.RELEVANCE, description="Result ordering")
    page: int = Field(1, description="Page number (1-indexed)")
    page_size: int = Field(20, description="Results per page")

    @field_validator("tags", mode="before")
    @classmethod
    def split_tags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t for t in v.split(",")]
        return v


# ============================================================================
# Response Models
# ============================================================================

class EnrichedProduct(BaseModel):
    """A product as returned in search results."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    price: int
    stock: int
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None

    average_rating: float = 0.0
    review_count: int = 0
    sale_count: int = 0
    main_image: Optional[str] = None
    score: Optional[float] = Field(None, description="Composite score (relevance sort only)")

    @classmethod
    def from_product(cls, product: Product, score: Optional[float] = None) -> "EnrichedProduct":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            stock=product.stock,
            category_id=product.category_id,
            category_name=product.category_name,
            brand=product.brand,
            tags=product.tags,
            created_at=product.created_at,
            updated_at=product.updated_at,
            average_rating=round(product.average_rating, 2),
            review_count=product.review_count,
            sale_count=product.order_count,
            main_image=product.images[0] if product.images else None,
            score=round(score, 4) if score is not None else None,
        )


class CategoryBucket(BaseModel):
    id: str
    label: str
    count: int


class FacetValue(BaseModel):
    """A single facet value with its count."""
    label: str
    count: int


class PriceBucket(BaseModel):
    """Inclusive price range [min, max] in minor units."""
    min: int
    max: int
    count: int


class FacetSummary(BaseModel):
    """Per-request facet distributions."""
    categories: List[CategoryBucket] = Field(default_factory=list)
    brands: List[FacetValue] = Field(default_factory=list)
    tags: List[FacetValue] = Field(default_factory=list)
    price_ranges: List[PriceBucket] = Field(default_factory=list)
    partial: bool = Field(False, description="True when a dimension timed out or failed")


class SearchResult(BaseModel):
    """Response from search. Immutable; cached verbatim."""
    model_config = ConfigDict(frozen=True)

    products: List[EnrichedProduct]
    total: int
    page: int
    page_size: int
    facets: FacetSummary
    suggestions: List[str] = Field(default_factory=list)
    took_ms: int = 0


class PopularQuery(BaseModel):
    query: str
    count: int


class RebuildOutcome(BaseModel):
    """Result of a ranking index rebuild request."""
    status: str = Field(description="'completed' or 'skipped' (another rebuild is running)")
    products_indexed: int = 0
    took_ms: int = 0


class DailySearchStats(BaseModel):
    """Search counters for one UTC day."""
    day: str
    total_searches: int = 0
    total_results: int = 0
    total_duration_ms: float = 0.0

    @computed_field
    @property
    def average_duration_ms(self) -> float:
        if not self.total_searches:
            return 0.0
        return self.total_duration_ms / self.total_searches
