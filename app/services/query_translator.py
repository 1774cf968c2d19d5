"""
Translate flat search parameters into a MongoDB listing query.

Parameters arrive exactly as the client sent them (strings, possibly
repeated), keyed by their wire names: ``state``, ``city``, ``location``,
``minPrice``, ``maxPrice``, ``furnishing``, ``gender``, ``preferences``,
``sortBy``, ``page`` and ``limit``.

Absent or blank parameters add no filter. Numeric parameters that do not
parse, or are out of range, raise ``ValidationError`` naming the field.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from app import config
from app.errors import ValidationError
from app.models.listing import Pagination

SUBSTRING_FIELDS = ("state", "city", "location")
EXACT_FIELDS = ("furnishing", "gender")

DEFAULT_SORT = "newest"
SORT_OPTIONS: Dict[str, List[Tuple[str, int]]] = {
    "newest": [("created_at", DESCENDING), ("_id", DESCENDING)],
    "oldest": [("created_at", ASCENDING), ("_id", ASCENDING)],
    "price-low": [("price", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)],
    "price-high": [("price", DESCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)],
}


@dataclass
class ListingQuery:
    filter: Dict[str, Any]
    sort: List[Tuple[str, int]]
    page: int
    limit: int
    sort_by: str = DEFAULT_SORT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _blank(raw) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def _parse_number(name: str, raw, *, integer: bool = False, minimum: Optional[float] = None,
                  maximum: Optional[float] = None):
    if _blank(raw):
        return None
    try:
        value = float(raw.strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError):
        raise ValidationError.for_field(name, "must be a number")
    if not math.isfinite(value):
        raise ValidationError.for_field(name, "must be a finite number")
    if integer:
        if not value.is_integer():
            raise ValidationError.for_field(name, "must be a whole number")
        value = int(value)
    if minimum is not None and value < minimum:
        raise ValidationError.for_field(name, f"must be at least {minimum:g}")
    if maximum is not None and value > maximum:
        raise ValidationError.for_field(name, f"must be at most {maximum:g}")
    return value


def _as_list(raw) -> List[str]:
    if raw is None:
        return []
    values = raw if isinstance(raw, (list, tuple)) else [raw]
    return [str(v).strip() for v in values if not _blank(v)]


def _contains(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


def build_filter(params: Mapping[str, Any]) -> Dict[str, Any]:
    query: Dict[str, Any] = {}

    for name in SUBSTRING_FIELDS:
        raw = params.get(name)
        if not _blank(raw):
            query[name] = _contains(str(raw).strip())

    min_price = _parse_number("minPrice", params.get("minPrice"), minimum=0)
    max_price = _parse_number("maxPrice", params.get("maxPrice"), minimum=0)
    if min_price is not None or max_price is not None:
        price_filter = {}
        if min_price is not None:
            price_filter["$gte"] = min_price
        if max_price is not None:
            price_filter["$lte"] = max_price
        query["price"] = price_filter

    for name in EXACT_FIELDS:
        raw = params.get(name)
        if not _blank(raw):
            query[name] = str(raw).strip()

    prefs = _as_list(params.get("preferences"))
    if len(prefs) == 1:
        query["prefs"] = _contains(prefs[0])
    elif prefs:
        # any one matching tag is enough
        query["$or"] = [{"prefs": _contains(p)} for p in prefs]

    return query


def translate(params: Mapping[str, Any]) -> ListingQuery:
    query = build_filter(params)

    sort_by = params.get("sortBy")
    sort_by = sort_by.strip() if isinstance(sort_by, str) and sort_by.strip() in SORT_OPTIONS else DEFAULT_SORT

    page = _parse_number("page", params.get("page"), integer=True, minimum=1)
    limit = _parse_number("limit", params.get("limit"), integer=True, minimum=1, maximum=config.MAX_PAGE_LIMIT)

    return ListingQuery(
        filter=query,
        sort=list(SORT_OPTIONS[sort_by]),
        page=page or 1,
        limit=limit or config.DEFAULT_PAGE_LIMIT,
        sort_by=sort_by,
    )


def paginate(total_count: int, page: int, limit: int) -> Pagination:
    total_pages = math.ceil(total_count / limit) if limit else 0
    return Pagination(
        current_page=page,
        total_pages=total_pages,
        total_count=total_count,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
        limit=limit,
    )
