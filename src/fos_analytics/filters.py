"""Request filter sets and their compilation to predicate ASTs.

A :class:`FilterSet` is parsed leniently from query parameters: malformed
values are dropped and numeric knobs fall back to defaults, so a bad query
string narrows nothing rather than failing the request.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Final

import orjson

from fos_analytics.expressions import (
    SEARCH_COLUMNS,
    TAG_COLUMNS,
    firm_label_sql,
    product_label_sql,
    tag_list_sql,
    year_sql,
)
from fos_analytics.outcomes import SUPPORTED_OUTCOMES, normalize_outcome, outcome_bucket_sql
from fos_analytics.query_filters import (
    FilterExpression,
    FilterIn,
    FilterListAny,
    FilterMatch,
    and_,
    or_,
)

DEFAULT_PAGE: Final[int] = 1
DEFAULT_PAGE_SIZE: Final[int] = 25
MIN_PAGE_SIZE: Final[int] = 5
MAX_PAGE_SIZE: Final[int] = 100
MAX_QUERY_TERMS: Final[int] = 6
MIN_YEAR: Final[int] = 1900
MAX_YEAR: Final[int] = 2100


@dataclass(frozen=True, slots=True)
class FilterSet:
    """Normalised request filters. Empty dimensions mean "no constraint"."""

    query: str = ""
    years: tuple[int, ...] = ()
    outcomes: tuple[str, ...] = ()
    products: tuple[str, ...] = ()
    firms: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def query_terms(self) -> tuple[str, ...]:
        return tuple(self.query.split()[:MAX_QUERY_TERMS])

    def is_empty(self) -> bool:
        """True when no predicate applies (pagination does not count)."""
        return not (
            self.query_terms
            or self.years
            or self.outcomes
            or self.products
            or self.firms
            or self.tags
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "years": list(self.years),
            "outcomes": list(self.outcomes),
            "products": list(self.products),
            "firms": list(self.firms),
            "tags": list(self.tags),
            "page": self.page,
            "pageSize": self.page_size,
        }

    def cache_key(self) -> str:
        """Stable serialisation of every field, pagination included."""
        return orjson.dumps(self.as_dict(), option=orjson.OPT_SORT_KEYS).decode()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _get_all(params: Mapping[str, Any], key: str) -> list[str]:
    """All raw values for *key*; supports Starlette ``QueryParams``."""
    getlist = getattr(params, "getlist", None)
    if callable(getlist):
        raw: Any = getlist(key)
    else:
        raw = params.get(key)
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, Iterable):
        return [str(v) for v in raw if v is not None]
    return [str(raw)]


def _split_values(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        for part in value.split(","):
            item = part.strip()
            if item and item not in seen:
                seen.add(item)
                out.append(item)
    return out


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _parse_years(values: Iterable[str]) -> tuple[int, ...]:
    years: set[int] = set()
    for item in _split_values(values):
        year = _parse_int(item)
        if year is not None and MIN_YEAR <= year <= MAX_YEAR:
            years.add(year)
    return tuple(sorted(years))


def _parse_outcomes(values: Iterable[str]) -> tuple[str, ...]:
    out: list[str] = []
    for item in _split_values(values):
        lowered = item.lower()
        bucket = lowered if lowered in SUPPORTED_OUTCOMES else normalize_outcome(item)
        if bucket not in out:
            out.append(bucket)
    return tuple(out)


def _parse_tags(values: Iterable[str]) -> tuple[str, ...]:
    out: list[str] = []
    for item in _split_values(values):
        tag = item.lower()
        if tag not in out:
            out.append(tag)
    return tuple(out)


def clamp_page_size(value: int | None) -> int:
    if value is None:
        return DEFAULT_PAGE_SIZE
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, value))


def parse_filters(params: Mapping[str, Any]) -> FilterSet:
    """Build a :class:`FilterSet` from (possibly repeated) query parameters."""
    query_values = _get_all(params, "query")
    page = _parse_int(next(iter(_get_all(params, "page")), None))
    page_size = _parse_int(next(iter(_get_all(params, "pageSize")), None))
    return FilterSet(
        query=" ".join(v.strip() for v in query_values if v.strip()),
        years=_parse_years(_get_all(params, "year")),
        outcomes=_parse_outcomes(_get_all(params, "outcome")),
        products=tuple(_split_values(_get_all(params, "product"))),
        firms=tuple(_split_values(_get_all(params, "firm"))),
        tags=_parse_tags(_get_all(params, "tag")),
        page=page if page is not None and page > 0 else DEFAULT_PAGE,
        page_size=clamp_page_size(page_size),
    )


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PageWindow:
    page: int
    page_size: int
    total: int
    total_pages: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def page_window(total: int, page: int, page_size: int) -> PageWindow:
    """Clamp *page* into ``[1, total_pages]``; an empty result has one page."""
    size = clamp_page_size(page_size)
    total_pages = max(1, math.ceil(max(0, total) / size))
    return PageWindow(
        page=min(max(1, page), total_pages),
        page_size=size,
        total=max(0, total),
        total_pages=total_pages,
    )


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

def build_filter_expr(filters: FilterSet, alias: str = "d") -> FilterExpression | None:
    """Compile *filters* into a predicate AST, or ``None`` when unfiltered.

    Dimensions are AND-ed, values within a dimension OR-ed. Each free-text
    term must match at least one searchable column.
    """
    clauses: list[FilterExpression] = []
    for term in filters.query_terms:
        clauses.append(or_(*(FilterMatch(f"{alias}.{col}", term) for col in SEARCH_COLUMNS)))
    if filters.years:
        clauses.append(FilterIn(year_sql(alias), filters.years))
    if filters.outcomes:
        clauses.append(FilterIn(f"({outcome_bucket_sql(f'{alias}.outcome')})", filters.outcomes))
    if filters.products:
        clauses.append(FilterIn(product_label_sql(alias), filters.products))
    if filters.firms:
        clauses.append(FilterIn(firm_label_sql(alias), filters.firms))
    if filters.tags:
        clauses.append(or_(*(
            FilterListAny(tag_list_sql(f"{alias}.{col}"), filters.tags) for col in TAG_COLUMNS
        )))
    if not clauses:
        return None
    return and_(*clauses)
