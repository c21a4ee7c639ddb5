"""AST-based predicate expressions compiled to parameterised DuckDB SQL.

Node types:

* **FilterMatch** (leaf): contains-style ``ILIKE`` against a text column.
* **FilterIn** (leaf): set membership of a scalar expression.
* **FilterListAny** (leaf): a list-valued expression shares at least one
  element with a value set (elements compared lower-cased and trimmed).
* **FilterGroup** (compound): AND/OR of children.

Column references inside nodes are trusted SQL expressions produced by
:mod:`fos_analytics.filters`; user values only ever travel as ``?`` bind
parameters.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FilterMatch:
    """Leaf: ``column ILIKE '%value%'`` with wildcards in *value* escaped."""

    column: str
    value: str


@dataclass(frozen=True, slots=True)
class FilterIn:
    """Leaf: ``column IN (values...)``."""

    column: str
    values: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class FilterListAny:
    """Leaf: some element of the list expression *column* is in *values*."""

    column: str
    values: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FilterGroup:
    """Compound: AND/OR of children."""

    operator: str  # "and" | "or"
    children: tuple[FilterExpression, ...]


FilterExpression = FilterMatch | FilterIn | FilterListAny | FilterGroup


def and_(*children: FilterExpression) -> FilterExpression:
    """AND the children, collapsing a single child to itself."""
    if len(children) == 1:
        return children[0]
    return FilterGroup(operator="and", children=tuple(children))


def or_(*children: FilterExpression) -> FilterExpression:
    """OR the children, collapsing a single child to itself."""
    if len(children) == 1:
        return children[0]
    return FilterGroup(operator="or", children=tuple(children))


# ---------------------------------------------------------------------------
# SQL generation
# ---------------------------------------------------------------------------

def escape_like(value: str) -> str:
    """Escape SQL LIKE/ILIKE wildcards so ``%`` and ``_`` match literally.

    Uses backslash as escape character (pair with ``ESCAPE '\\\\'`` in SQL).
    """
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_filter_sql(expr: FilterExpression) -> tuple[str, list[Any]]:
    """Compile *expr* into a SQL boolean fragment + parameter list.

    Returns
    -------
    tuple[str, list[Any]]
        ``(sql_fragment, params)`` where *params* are the positional ``?``
        bind values in fragment order.
    """
    if isinstance(expr, FilterMatch):
        return (
            f"COALESCE({expr.column}, '') ILIKE ? ESCAPE '\\'",
            [f"%{escape_like(expr.value)}%"],
        )
    if isinstance(expr, FilterIn):
        if not expr.values:
            # Membership in the empty set
            return ("(1=0)", [])
        placeholders = ", ".join("?" for _ in expr.values)
        return (f"{expr.column} IN ({placeholders})", list(expr.values))
    if isinstance(expr, FilterListAny):
        if not expr.values:
            return ("(1=0)", [])
        placeholders = ", ".join("?" for _ in expr.values)
        sql = (
            f"list_has_any([lower(trim(tag_value)) FOR tag_value IN {expr.column}], "
            f"[{placeholders}])"
        )
        return (sql, [v.strip().lower() for v in expr.values])

    # FilterGroup
    if not expr.children:
        # Degenerate empty group is vacuously true
        return ("(1=1)", [])

    parts: list[str] = []
    params: list[Any] = []
    joiner = " AND " if expr.operator == "and" else " OR "
    for child in expr.children:
        child_sql, child_params = build_filter_sql(child)
        parts.append(child_sql)
        params.extend(child_params)
    return ("(" + joiner.join(parts) + ")", params)
