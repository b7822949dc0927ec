"""
Catalog readers: predicate-based reads over the product store.

The engine only needs three primitives (CatalogReader):
- find(filter, order, limit, offset) -> products
- count(filter) -> number of matches
- aggregate(filter, group_by) -> buckets

Backends:
1. InMemoryCatalogReader: evaluates ProductFilter in Python (dev/tests)
2. SupabaseCatalogReader: translates ProductFilter into PostgREST filters
"""

from collections import Counter
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

from supabase import Client

from core.errors import StoreUnavailableError
from core.logging import get_logger
from catalog_search.models import (
    AggregateBucket,
    Product,
    ProductFilter,
    SortField,
    sort_products,
)

logger = get_logger(__name__)


GROUP_BY_FIELDS = ("category", "brand", "tags", "price")


class CatalogReader(Protocol):
    """Read primitives the engine uses against the product store."""

    def find(
        self,
        product_filter: ProductFilter,
        order: Sequence[SortField],
        limit: int,
        offset: int = 0,
    ) -> List[Product]: ...

    def count(self, product_filter: ProductFilter) -> int: ...

    def aggregate(self, product_filter: ProductFilter, group_by: str) -> List[AggregateBucket]: ...


def _check_group_by(group_by: str) -> None:
    if group_by not in GROUP_BY_FIELDS:
        raise ValueError(f"Unsupported group_by {group_by!r}; expected one of {GROUP_BY_FIELDS}")


def _buckets_from_rows(rows: Iterable[Dict[str, Any]], group_by: str) -> List[AggregateBucket]:
    """Count grouped values from raw rows (shared by both backends)."""
    if group_by == "category":
        counts: Counter = Counter()
        labels: Dict[Any, Optional[str]] = {}
        for row in rows:
            category_id = row.get("category_id")
            if category_id is None:
                continue
            counts[category_id] += 1
            labels.setdefault(category_id, row.get("category_name"))
        return [AggregateBucket(key=k, count=c, label=labels.get(k)) for k, c in counts.items()]

    if group_by == "tags":
        counts = Counter(tag for row in rows for tag in (row.get("tags") or []))
        return [AggregateBucket(key=k, count=c) for k, c in counts.items()]

    column = "brand" if group_by == "brand" else "price"
    counts = Counter(row.get(column) for row in rows if row.get(column) is not None)
    return [AggregateBucket(key=k, count=c) for k, c in counts.items()]


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryCatalogReader:
    """
    Catalog held in process memory.

    Note: Intended for development and tests; the product list is treated
    as read-only once handed over.
    """

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._products: List[Product] = list(products or [])

    @property
    def products(self) -> List[Product]:
        return list(self._products)

    def _matching(self, product_filter: ProductFilter) -> List[Product]:
        return [p for p in self._products if product_filter.matches(p)]

    def find(
        self,
        product_filter: ProductFilter,
        order: Sequence[SortField],
        limit: int,
        offset: int = 0,
    ) -> List[Product]:
        ordered = sort_products(self._matching(product_filter), order)
        return ordered[offset:offset + limit]

    def count(self, product_filter: ProductFilter) -> int:
        return len(self._matching(product_filter))

    def aggregate(self, product_filter: ProductFilter, group_by: str) -> List[AggregateBucket]:
        _check_group_by(group_by)
        rows = (p.model_dump(include={"category_id", "category_name", "brand", "tags", "price"})
                for p in self._matching(product_filter))
        return _buckets_from_rows(rows, group_by)


# =============================================================================
# Supabase Backend
# =============================================================================

@contextmanager
def _catalog_errors(operation: str) -> Iterator[None]:
    """Translate client/network failures into StoreUnavailableError."""
    try:
        yield
    except StoreUnavailableError:
        raise
    except Exception as e:
        logger.error("Catalog query failed", operation=operation, error=str(e))
        raise StoreUnavailableError(f"Catalog store unavailable during {operation}: {e}", store="catalog") from e


def _escape_like(value: str) -> str:
    """Match a value literally in an ILIKE pattern (no % or _ wildcards)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _quote(value: str) -> str:
    """Quote a value for a PostgREST logic-tree expression."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class SupabaseCatalogReader:
    """
    Catalog reader over a Supabase (PostgREST) products table.

    Expected columns match the Product model; `tags` is a text[] column.
    Text search is ILIKE containment on name/description plus tag overlap
    with the query words.
    """

    PRODUCT_COLUMNS = (
        "id,name,description,price,stock,status,category_id,category_name,brand,"
        "tags,images,average_rating,review_count,order_count,wishlist_count,"
        "created_at,updated_at"
    )
    GROUP_COLUMNS: Dict[str, str] = {
        "category": "id,category_id,category_name",
        "brand": "id,brand",
        "tags": "id,tags",
        "price": "id,price",
    }
    PAGE_SIZE = 1000

    def __init__(self, client: Client, table: str = "products"):
        self._client = client
        self._table = table

    def _select(self, columns: str, count: Optional[str] = None):
        return self._client.table(self._table).select(columns, count=count)

    @staticmethod
    def _apply_filter(query, product_filter: ProductFilter):
        query = query.eq("status", product_filter.status.value)
        if product_filter.ids is not None:
            query = query.in_("id", sorted(product_filter.ids))
        if product_filter.category_id is not None:
            query = query.eq("category_id", product_filter.category_id)
        if product_filter.brand is not None:
            query = query.ilike("brand", _escape_like(product_filter.brand))
        if product_filter.min_price is not None:
            query = query.gte("price", product_filter.min_price)
        if product_filter.max_price is not None:
            query = query.lte("price", product_filter.max_price)
        if product_filter.in_stock:
            query = query.gt("stock", 0)
        if product_filter.min_rating is not None:
            query = query.gte("average_rating", product_filter.min_rating)
        if product_filter.tags:
            query = query.overlaps("tags", list(product_filter.tags))
        if product_filter.text:
            pattern = _quote(f"*{product_filter.text}*")
            clauses = [f"name.ilike.{pattern}", f"description.ilike.{pattern}"]
            words = product_filter.text_words
            if words:
                clauses.append("tags.ov.{" + ",".join(_quote(w) for w in words) + "}")
            query = query.or_(",".join(clauses))
        return query

    def find(
        self,
        product_filter: ProductFilter,
        order: Sequence[SortField],
        limit: int,
        offset: int = 0,
    ) -> List[Product]:
        if limit <= 0:
            return []
        query = self._apply_filter(self._select(self.PRODUCT_COLUMNS), product_filter)
        for sort_field in order:
            query = query.order(sort_field.field, desc=sort_field.descending)
        with _catalog_errors("find"):
            result = query.range(offset, offset + limit - 1).execute()
        return [Product.model_validate(row) for row in (result.data or [])]

    def count(self, product_filter: ProductFilter) -> int:
        query = self._apply_filter(self._select("id", count="exact"), product_filter)
        with _catalog_errors("count"):
            result = query.limit(1).execute()
        return int(result.count or 0)

    def _scan(self, columns: str, product_filter: ProductFilter) -> Iterator[Dict[str, Any]]:
        """Page through every matching row (PostgREST caps rows per response)."""
        offset = 0
        while True:
            query = self._apply_filter(self._select(columns), product_filter).order("id")
            with _catalog_errors("aggregate"):
                result = query.range(offset, offset + self.PAGE_SIZE - 1).execute()
            rows = result.data or []
            yield from rows
            if len(rows) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

    def aggregate(self, product_filter: ProductFilter, group_by: str) -> List[AggregateBucket]:
        _check_group_by(group_by)
        return _buckets_from_rows(self._scan(self.GROUP_COLUMNS[group_by], product_filter), group_by)
