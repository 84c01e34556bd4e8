"""Translate raw listing parameters into a product query.

The builders never raise on malformed input: anything that does not parse
falls back to the endpoint default. The one exception is the search endpoint,
which requires a search term.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from errors import ValidationError

SCORE_FIELD = "score"

SORTABLE_FIELDS = frozenset({
    "productId",
    "name",
    "price",
    "discountedPrice",
    "category",
    "quantity",
    "inStock",
    "createdAt",
    "updatedAt",
    "ratings.average",
    "ratings.count",
})

Params = Mapping[str, Optional[str]]

# Largest page a client can ask for. A configured default above it still applies.
MAX_PAGE_SIZE = 1000

# Largest offset BSON can encode (signed 64-bit).
MAX_SKIP = 2 ** 63 - 1


def parse_positive_int(raw: Optional[str], default: int) -> int:
    """Integer >= 1 parsed from ``raw``, else ``default``."""
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return value if value >= 1 else default


def parse_page_size(raw: Optional[str], default: int) -> int:
    """Like parse_positive_int, capped at MAX_PAGE_SIZE (or ``default`` if larger)."""
    return min(parse_positive_int(raw, default), max(default, MAX_PAGE_SIZE))


def parse_number(raw: Optional[str]) -> Optional[float]:
    """Finite number parsed from ``raw``, else None."""
    if raw is None or str(raw).strip() == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_direction(raw: Optional[str]) -> int:
    return ASCENDING if raw == "asc" else DESCENDING


@dataclass(frozen=True)
class ProductQuery:
    """Validated filter, sort and pagination for a product listing."""

    page: int
    page_size: int
    sort_field: str
    sort_direction: int = DESCENDING
    category: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    in_stock: Optional[bool] = None
    text_search: Optional[str] = None
    secondary_sort: Tuple[Tuple[str, int], ...] = ()

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    def mongo_filter(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.category:
            query["category"] = self.category
        if self.in_stock is not None:
            query["inStock"] = self.in_stock
        price: Dict[str, float] = {}
        if self.min_price is not None:
            price["$gte"] = self.min_price
        if self.max_price is not None:
            price["$lte"] = self.max_price
        if price:
            query["price"] = price
        if self.text_search:
            query["$text"] = {"$search": self.text_search}
        return query

    def mongo_sort(self) -> List[Tuple[str, Any]]:
        if self.sort_field == SCORE_FIELD:
            # Relevance ranking has no direction.
            sort: List[Tuple[str, Any]] = [(SCORE_FIELD, {"$meta": "textScore"})]
        else:
            sort = [(self.sort_field, self.sort_direction)]
        sort.extend(self.secondary_sort)
        return sort

    def projection(self) -> Optional[Dict[str, Any]]:
        if self.text_search:
            return {SCORE_FIELD: {"$meta": "textScore"}}
        return None

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.page_size)


def _sort_field(raw: Optional[str], default: str, text_search: Optional[str]) -> str:
    if raw in SORTABLE_FIELDS:
        return raw
    if raw == SCORE_FIELD and text_search:
        return SCORE_FIELD
    return default


def build_list_query(params: Params, default_page_size: int = 1000) -> ProductQuery:
    """Query for the general product listing."""
    search = (params.get("search") or "").strip() or None
    return ProductQuery(
        page=parse_positive_int(params.get("page"), 1),
        page_size=parse_page_size(params.get("limit"), default_page_size),
        category=params.get("category") or None,
        min_price=parse_number(params.get("minPrice")),
        max_price=parse_number(params.get("maxPrice")),
        in_stock=True if params.get("inStock") == "true" else None,
        text_search=search,
        sort_field=_sort_field(params.get("sortField"), "productId", search),
        sort_direction=parse_direction(params.get("sortOrder")),
    )


def build_category_query(category: str, params: Params, default_page_size: int = 10) -> ProductQuery:
    """Newest products first within one category."""
    return ProductQuery(
        page=parse_positive_int(params.get("page"), 1),
        page_size=parse_page_size(params.get("limit"), default_page_size),
        category=category,
        sort_field="createdAt",
        sort_direction=DESCENDING,
    )


def build_search_query(params: Params, default_page_size: int = 10) -> ProductQuery:
    """Relevance-ranked full-text search. Raises ValidationError without ``q``."""
    term = (params.get("q") or "").strip()
    if not term:
        raise ValidationError("Search query is required")
    return ProductQuery(
        page=parse_positive_int(params.get("page"), 1),
        page_size=parse_page_size(params.get("limit"), default_page_size),
        text_search=term,
        sort_field=SCORE_FIELD,
    )


def build_featured_query(params: Params, default_limit: int = 5) -> ProductQuery:
    """Best rated in-stock products."""
    return ProductQuery(
        page=1,
        page_size=parse_page_size(params.get("limit"), default_limit),
        in_stock=True,
        sort_field="ratings.average",
        sort_direction=DESCENDING,
        secondary_sort=(("ratings.count", DESCENDING),),
    )


def build_new_arrivals_query(params: Params, default_limit: int = 5) -> ProductQuery:
    """Most recently added in-stock products."""
    return ProductQuery(
        page=1,
        page_size=parse_page_size(params.get("limit"), default_limit),
        in_stock=True,
        sort_field="createdAt",
        sort_direction=DESCENDING,
    )
