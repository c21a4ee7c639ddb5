"""The filtered-aggregation query family.

Every aggregate of a request is computed over one :class:`Population`:

* unfiltered (empty FilterSet): queries read ``fos_decisions`` directly and
  evaluate the outcome bucket inline;
* filtered: a ``WITH filtered AS (...)`` CTE applies the compiled predicate
  once and precomputes ``outcome_bucket``; every query reads from it.

Because all cells, listings and counts share one predicate, they cannot
drift apart. SQL returns integer counts only; rates are derived in Python by
:func:`rate` so there is a single rounding step.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Final

from fos_analytics.expressions import (
    DECISIONS_TABLE,
    firm_label_sql,
    outcome_count_sql,
    product_label_sql,
    tag_list_sql,
    year_sql,
)
from fos_analytics.filters import FilterSet, build_filter_expr, page_window
from fos_analytics.identity import case_id_sql, case_lookup_sql
from fos_analytics.models import (
    CaseListItem,
    CasePage,
    DataQuality,
    FilterOptions,
    FirmBenchmarkRow,
    FirmPoint,
    MatrixCell,
    OutcomePoint,
    Overview,
    Pagination,
    ProductPoint,
    ProductTreeFirm,
    ProductTreeNode,
    ProgressYear,
    TagCount,
    TrendPoint,
    YearProductOutcomeCell,
)
from fos_analytics.outcomes import SUPPORTED_OUTCOMES, normalize_outcome, outcome_bucket_sql
from fos_analytics.query_filters import FilterExpression, build_filter_sql
from fos_analytics.store import StoreCursor
from fos_analytics.tagging import normalize_tag_label, parse_string_array

TOP_PRODUCTS: Final[int] = 12
TOP_FIRMS: Final[int] = 15
TOP_TAGS: Final[int] = 12
BENCHMARK_FIRMS: Final[int] = 40
MATRIX_CELLS: Final[int] = 60
TREE_PRODUCTS: Final[int] = 12
TREE_FIRMS_PER_PRODUCT: Final[int] = 5
OPTION_PRODUCTS: Final[int] = 40
OPTION_FIRMS: Final[int] = 120
OPTION_TAGS: Final[int] = 40

TAG_COLUMN_PRECEDENTS: Final[str] = "precedents"
TAG_COLUMN_ROOT_CAUSES: Final[str] = "root_cause_tags"


def rate(numerator: int, denominator: int) -> float:
    """Percentage rounded to two decimals; 0.0 for an empty denominator."""
    if denominator <= 0:
        return 0.0
    return round(100.0 * numerator / denominator, 2)


def iso_date(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    return text or None


def _int(value: Any) -> int:
    return int(value) if value is not None else 0


# ---------------------------------------------------------------------------
# Population
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Population:
    """The filtered record set shared by every query of one request."""

    cte: str
    relation: str
    outcome: str
    params: tuple[Any, ...] = ()

    @property
    def filtered(self) -> bool:
        return bool(self.cte)

    @classmethod
    def unfiltered(cls) -> Population:
        return cls(
            cte="",
            relation=f"{DECISIONS_TABLE} d",
            outcome=f"({outcome_bucket_sql('d.outcome')})",
        )

    @classmethod
    def from_expr(cls, expr: FilterExpression) -> Population:
        where, params = build_filter_sql(expr)
        cte = (
            "WITH filtered AS (\n"
            f"  SELECT d.*, {outcome_bucket_sql('d.outcome')} AS outcome_bucket\n"
            f"  FROM {DECISIONS_TABLE} d\n"
            f"  WHERE {where}\n"
            ")\n"
        )
        return cls(cte=cte, relation="filtered d", outcome="d.outcome_bucket", params=tuple(params))

    def sql(self, body: str) -> str:
        return self.cte + body

    def bind(self, *extra: Any) -> list[Any]:
        return [*self.params, *extra]


def population_for(filters: FilterSet) -> Population:
    expr = build_filter_expr(filters)
    if expr is None:
        return Population.unfiltered()
    return Population.from_expr(expr)


def _count(pop: Population, bucket: str) -> str:
    return outcome_count_sql(pop.outcome, bucket)


# ---------------------------------------------------------------------------
# Dashboard aggregates
# ---------------------------------------------------------------------------

def query_overview(cur: StoreCursor, pop: Population) -> Overview:
    row = cur.fetch_one(
        pop.sql(
            f"""
            SELECT
                COUNT(*) AS total,
                {_count(pop, 'upheld')} AS upheld,
                {_count(pop, 'not_upheld')} AS not_upheld,
                {_count(pop, 'partially_upheld')} AS partially_upheld,
                MIN(d.decision_date) AS earliest,
                MAX(d.decision_date) AS latest
            FROM {pop.relation}
            """
        ),
        pop.bind(),
    ) or {}
    total = _int(row.get("total"))
    upheld = _int(row.get("upheld"))
    not_upheld = _int(row.get("not_upheld"))
    return Overview(
        total_cases=total,
        upheld_cases=upheld,
        not_upheld_cases=not_upheld,
        partially_upheld_cases=_int(row.get("partially_upheld")),
        upheld_rate=rate(upheld, total),
        not_upheld_rate=rate(not_upheld, total),
        earliest_decision_date=iso_date(row.get("earliest")),
        latest_decision_date=iso_date(row.get("latest")),
    )


def query_data_quality(cur: StoreCursor, pop: Population) -> DataQuality:
    row = cur.fetch_one(
        pop.sql(
            f"""
            SELECT
                COUNT(*) FILTER (WHERE d.decision_date IS NULL) AS missing_decision_date,
                {_count(pop, 'unknown')} AS missing_outcome,
                COUNT(*) FILTER (
                    WHERE NULLIF(trim(d.ombudsman_reasoning_text), '') IS NOT NULL
                ) AS with_reasoning_text
            FROM {pop.relation}
            """
        ),
        pop.bind(),
    ) or {}
    return DataQuality(
        missing_decision_date=_int(row.get("missing_decision_date")),
        missing_outcome=_int(row.get("missing_outcome")),
        with_reasoning_text=_int(row.get("with_reasoning_text")),
    )


def query_trends(cur: StoreCursor, pop: Population) -> list[TrendPoint]:
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT
                {year_sql()} AS year,
                COUNT(*) AS total,
                {_count(pop, 'upheld')} AS upheld,
                {_count(pop, 'not_upheld')} AS not_upheld,
                {_count(pop, 'partially_upheld')} AS partially_upheld,
                {_count(pop, 'unknown')} AS unknown_count
            FROM {pop.relation}
            WHERE d.decision_date IS NOT NULL
            GROUP BY 1
            ORDER BY 1
            """
        ),
        pop.bind(),
    )
    return [
        TrendPoint(
            year=int(r["year"]),
            total=_int(r["total"]),
            upheld=_int(r["upheld"]),
            not_upheld=_int(r["not_upheld"]),
            partially_upheld=_int(r["partially_upheld"]),
            unknown=_int(r["unknown_count"]),
        )
        for r in rows
    ]


def query_outcome_distribution(cur: StoreCursor, pop: Population) -> list[OutcomePoint]:
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT {pop.outcome} AS bucket, COUNT(*) AS total
            FROM {pop.relation}
            GROUP BY 1
            ORDER BY total DESC, bucket ASC
            """
        ),
        pop.bind(),
    )
    return [OutcomePoint(outcome=str(r["bucket"]), count=_int(r["total"])) for r in rows]


def query_products(cur: StoreCursor, pop: Population, limit: int = TOP_PRODUCTS) -> list[ProductPoint]:
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT
                {product_label_sql()} AS product,
                COUNT(*) AS total,
                {_count(pop, 'upheld')} AS upheld
            FROM {pop.relation}
            GROUP BY 1
            ORDER BY total DESC, product ASC
            LIMIT ?
            """
        ),
        pop.bind(limit),
    )
    return [
        ProductPoint(
            product=str(r["product"]),
            total=_int(r["total"]),
            upheld_rate=rate(_int(r["upheld"]), _int(r["total"])),
        )
        for r in rows
    ]


def query_firms(cur: StoreCursor, pop: Population, limit: int = TOP_FIRMS) -> list[FirmPoint]:
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT
                {firm_label_sql()} AS firm,
                COUNT(*) AS total,
                {_count(pop, 'upheld')} AS upheld,
                {_count(pop, 'not_upheld')} AS not_upheld
            FROM {pop.relation}
            GROUP BY 1
            ORDER BY total DESC, firm ASC
            LIMIT ?
            """
        ),
        pop.bind(limit),
    )
    return [
        FirmPoint(
            firm=str(r["firm"]),
            total=_int(r["total"]),
            upheld_rate=rate(_int(r["upheld"]), _int(r["total"])),
            not_upheld_rate=rate(_int(r["not_upheld"]), _int(r["total"])),
        )
        for r in rows
    ]


def has_tag_values(cur: StoreCursor, column: str) -> bool:
    """Whether any record in the corpus has a non-empty *column* list."""
    value = cur.fetch_scalar(
        f"""
        SELECT EXISTS (
            SELECT 1 FROM {DECISIONS_TABLE} d
            WHERE len({tag_list_sql(f'd.{column}')}) > 0
        )
        """
    )
    return bool(value)


def query_tag_frequency(
    cur: StoreCursor,
    pop: Population,
    column: str,
    limit: int = TOP_TAGS,
) -> list[TagCount]:
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT label, COUNT(*) AS total
            FROM (
                SELECT lower(trim(tag_value)) AS label
                FROM (
                    SELECT unnest({tag_list_sql(f'd.{column}')}) AS tag_value
                    FROM {pop.relation}
                ) expanded
            ) labels
            WHERE label <> ''
            GROUP BY label
            ORDER BY total DESC, label ASC
            LIMIT ?
            """
        ),
        pop.bind(limit),
    )
    return [
        TagCount(label=normalize_tag_label(str(r["label"])), count=_int(r["total"]))
        for r in rows
    ]


@dataclass(frozen=True, slots=True)
class YearLeader:
    """The highest-volume label (firm or product) within one year."""

    year: int
    label: str
    total: int


def query_year_leaders(cur: StoreCursor, pop: Population, label_sql: str) -> list[YearLeader]:
    """Rank-1 label per decision year (ties broken alphabetically)."""
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT year, label, total
            FROM (
                SELECT
                    year,
                    label,
                    total,
                    ROW_NUMBER() OVER (
                        PARTITION BY year ORDER BY total DESC, label ASC
                    ) AS rn
                FROM (
                    SELECT {year_sql()} AS year, {label_sql} AS label, COUNT(*) AS total
                    FROM {pop.relation}
                    WHERE d.decision_date IS NOT NULL
                    GROUP BY 1, 2
                ) grouped
            ) ranked
            WHERE rn = 1
            ORDER BY year
            """
        ),
        pop.bind(),
    )
    return [
        YearLeader(year=int(r["year"]), label=str(r["label"]), total=_int(r["total"]))
        for r in rows
    ]


# ---------------------------------------------------------------------------
# Analysis aggregates
# ---------------------------------------------------------------------------

def query_year_product_outcome(cur: StoreCursor, pop: Population) -> list[YearProductOutcomeCell]:
    """Year × product × outcome cells. Undated records form a ``year=None`` cell."""
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT
                {year_sql()} AS year,
                {product_label_sql()} AS product,
                COUNT(*) AS total,
                {_count(pop, 'upheld')} AS upheld,
                {_count(pop, 'not_upheld')} AS not_upheld,
                {_count(pop, 'partially_upheld')} AS partially_upheld,
                {_count(pop, 'settled')} AS settled,
                {_count(pop, 'not_settled')} AS not_settled,
                {_count(pop, 'unknown')} AS unknown_count
            FROM {pop.relation}
            GROUP BY 1, 2
            ORDER BY year ASC NULLS LAST, total DESC, product ASC
            """
        ),
        pop.bind(),
    )
    return [
        YearProductOutcomeCell(
            year=int(r["year"]) if r["year"] is not None else None,
            product=str(r["product"]),
            total=_int(r["total"]),
            upheld=_int(r["upheld"]),
            not_upheld=_int(r["not_upheld"]),
            partially_upheld=_int(r["partially_upheld"]),
            settled=_int(r["settled"]),
            not_settled=_int(r["not_settled"]),
            unknown=_int(r["unknown_count"]),
            upheld_rate=rate(_int(r["upheld"]), _int(r["total"])),
        )
        for r in rows
    ]


def query_firm_benchmark(
    cur: StoreCursor,
    pop: Population,
    limit: int = BENCHMARK_FIRMS,
) -> list[FirmBenchmarkRow]:
    """Per-firm volume, rates, mean decision year and most frequent product."""
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT
                firms.firm,
                firms.total,
                firms.upheld,
                firms.not_upheld,
                firms.avg_year,
                predominant.product
            FROM (
                SELECT
                    {firm_label_sql()} AS firm,
                    COUNT(*) AS total,
                    {_count(pop, 'upheld')} AS upheld,
                    {_count(pop, 'not_upheld')} AS not_upheld,
                    AVG({year_sql()}) AS avg_year
                FROM {pop.relation}
                GROUP BY 1
            ) firms
            LEFT JOIN (
                SELECT firm, product
                FROM (
                    SELECT
                        firm,
                        product,
                        ROW_NUMBER() OVER (
                            PARTITION BY firm ORDER BY total DESC, product ASC
                        ) AS rn
                    FROM (
                        SELECT
                            {firm_label_sql()} AS firm,
                            {product_label_sql()} AS product,
                            COUNT(*) AS total
                        FROM {pop.relation}
                        GROUP BY 1, 2
                    ) firm_products
                ) ranked
                WHERE rn = 1
            ) predominant ON predominant.firm = firms.firm
            ORDER BY firms.total DESC, firms.firm ASC
            LIMIT ?
            """
        ),
        pop.bind(limit),
    )
    return [
        FirmBenchmarkRow(
            firm=str(r["firm"]),
            total=_int(r["total"]),
            upheld_rate=rate(_int(r["upheld"]), _int(r["total"])),
            not_upheld_rate=rate(_int(r["not_upheld"]), _int(r["total"])),
            avg_decision_year=round(float(r["avg_year"])) if r["avg_year"] is not None else None,
            predominant_product=str(r["product"]) if r["product"] is not None else None,
        )
        for r in rows
    ]


def query_precedent_root_cause_matrix(
    cur: StoreCursor,
    pop: Population,
    limit: int = MATRIX_CELLS,
) -> list[MatrixCell]:
    """Co-occurrence counts of precedent and root-cause tags within a record."""
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT precedent, root_cause, COUNT(*) AS total
            FROM (
                SELECT precedent, lower(trim(root_cause_value)) AS root_cause
                FROM (
                    SELECT
                        lower(trim(precedent_value)) AS precedent,
                        unnest(root_causes) AS root_cause_value
                    FROM (
                        SELECT
                            unnest({tag_list_sql('d.precedents')}) AS precedent_value,
                            {tag_list_sql('d.root_cause_tags')} AS root_causes
                        FROM {pop.relation}
                    ) by_precedent
                ) pairs
            ) normalised
            WHERE precedent <> '' AND root_cause <> ''
            GROUP BY precedent, root_cause
            ORDER BY total DESC, precedent ASC, root_cause ASC
            LIMIT ?
            """
        ),
        pop.bind(limit),
    )
    return [
        MatrixCell(
            precedent=normalize_tag_label(str(r["precedent"])),
            root_cause=normalize_tag_label(str(r["root_cause"])),
            count=_int(r["total"]),
        )
        for r in rows
    ]


def query_product_tree(
    cur: StoreCursor,
    pop: Population,
    *,
    max_products: int = TREE_PRODUCTS,
    firms_per_product: int = TREE_FIRMS_PER_PRODUCT,
) -> list[ProductTreeNode]:
    """Products by volume, each with its highest-volume firms."""
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT product, firm, total, upheld, product_total, product_upheld
            FROM (
                SELECT
                    product,
                    firm,
                    total,
                    upheld,
                    SUM(total) OVER (PARTITION BY product) AS product_total,
                    SUM(upheld) OVER (PARTITION BY product) AS product_upheld,
                    ROW_NUMBER() OVER (
                        PARTITION BY product ORDER BY total DESC, firm ASC
                    ) AS rn
                FROM (
                    SELECT
                        {product_label_sql()} AS product,
                        {firm_label_sql()} AS firm,
                        COUNT(*) AS total,
                        {_count(pop, 'upheld')} AS upheld
                    FROM {pop.relation}
                    GROUP BY 1, 2
                ) grouped
            ) ranked
            WHERE rn <= ?
            ORDER BY product_total DESC, product ASC, total DESC, firm ASC
            """
        ),
        pop.bind(firms_per_product),
    )
    nodes: list[ProductTreeNode] = []
    current: str | None = None
    firms: list[ProductTreeFirm] = []
    totals: tuple[int, int] = (0, 0)
    for r in rows:
        product = str(r["product"])
        if product != current:
            if current is not None:
                nodes.append(_tree_node(current, totals, firms))
                if len(nodes) >= max_products:
                    return nodes
            current = product
            firms = []
            totals = (_int(r["product_total"]), _int(r["product_upheld"]))
        firms.append(ProductTreeFirm(
            firm=str(r["firm"]),
            total=_int(r["total"]),
            upheld_rate=rate(_int(r["upheld"]), _int(r["total"])),
        ))
    if current is not None:
        nodes.append(_tree_node(current, totals, firms))
    return nodes


def _tree_node(product: str, totals: tuple[int, int], firms: list[ProductTreeFirm]) -> ProductTreeNode:
    total, upheld = totals
    return ProductTreeNode(
        product=product,
        total=total,
        upheld_rate=rate(upheld, total),
        firms=firms,
    )


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

def _case_columns() -> str:
    return f"""
        {case_id_sql()} AS case_id,
        d.decision_reference,
        d.decision_date,
        {year_sql()} AS year,
        {firm_label_sql()} AS firm_name,
        {product_label_sql()} AS product_group,
        d.outcome AS raw_outcome,
        d.ombudsman_name,
        d.decision_summary,
        d.decision_logic,
        d.precedents,
        d.root_cause_tags,
        d.vulnerability_flags,
        d.pdf_url,
        d.source_url
    """


def case_fields_from_row(row: dict[str, Any]) -> dict[str, Any]:
    """Field mapping shared by listing items and case details."""
    return {
        "case_id": str(row["case_id"]),
        "decision_reference": row.get("decision_reference") or None,
        "decision_date": iso_date(row.get("decision_date")),
        "year": int(row["year"]) if row.get("year") is not None else None,
        "firm_name": str(row["firm_name"]),
        "product_group": str(row["product_group"]),
        "outcome": normalize_outcome(row.get("raw_outcome")),
        "ombudsman_name": row.get("ombudsman_name") or None,
        "decision_summary": row.get("decision_summary") or None,
        "decision_logic": row.get("decision_logic") or None,
        "precedents": parse_string_array(row.get("precedents")),
        "root_cause_tags": parse_string_array(row.get("root_cause_tags")),
        "vulnerability_flags": parse_string_array(row.get("vulnerability_flags")),
        "pdf_url": row.get("pdf_url") or None,
        "source_url": row.get("source_url") or None,
    }


def query_case_page(cur: StoreCursor, pop: Population, page: int, page_size: int) -> CasePage:
    """One page of the population, newest decisions first."""
    total = _int(cur.fetch_scalar(pop.sql(f"SELECT COUNT(*) FROM {pop.relation}"), pop.bind()))
    window = page_window(total, page, page_size)
    rows = cur.fetch_all(
        pop.sql(
            f"""
            SELECT {_case_columns()}
            FROM {pop.relation}
            ORDER BY d.decision_date DESC NULLS LAST, d.decision_reference ASC NULLS LAST
            LIMIT ? OFFSET ?
            """
        ),
        pop.bind(window.page_size, window.offset),
    )
    return CasePage(
        cases=[CaseListItem(**case_fields_from_row(r)) for r in rows],
        pagination=Pagination(
            page=window.page,
            page_size=window.page_size,
            total=window.total,
            total_pages=window.total_pages,
        ),
    )


def query_case_row(cur: StoreCursor, case_id: str) -> dict[str, Any] | None:
    """Raw record for a case id, natural reference or checksum."""
    return cur.fetch_one(
        f"""
        SELECT
            {_case_columns()},
            d.complaint_text,
            d.firm_response_text,
            d.ombudsman_reasoning_text,
            d.final_decision_text,
            d.full_text
        FROM {DECISIONS_TABLE} d
        WHERE {case_lookup_sql()}
        ORDER BY d.decision_date DESC NULLS LAST
        LIMIT 1
        """,
        [case_id, case_id, case_id],
    )


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------

def query_filter_options(cur: StoreCursor, *, include_tags: dict[str, bool]) -> FilterOptions:
    """Unfiltered option catalogs for the filter controls.

    *include_tags* maps tag column → whether it has any values.
    """
    years = cur.fetch_all(
        f"""
        SELECT DISTINCT {year_sql()} AS year
        FROM {DECISIONS_TABLE} d
        WHERE d.decision_date IS NOT NULL
        ORDER BY year DESC
        """
    )
    products = cur.fetch_all(
        f"""
        SELECT {product_label_sql()} AS label, COUNT(*) AS total
        FROM {DECISIONS_TABLE} d
        GROUP BY 1
        ORDER BY total DESC, label ASC
        LIMIT ?
        """,
        [OPTION_PRODUCTS],
    )
    firms = cur.fetch_all(
        f"""
        SELECT {firm_label_sql()} AS label, COUNT(*) AS total
        FROM {DECISIONS_TABLE} d
        GROUP BY 1
        ORDER BY total DESC, label ASC
        LIMIT ?
        """,
        [OPTION_FIRMS],
    )
    tags: list[str] = []
    unfiltered = Population.unfiltered()
    for column, present in include_tags.items():
        if not present:
            continue
        for tag in query_tag_frequency(cur, unfiltered, column, OPTION_TAGS):
            key = tag.label.lower()
            if key not in tags:
                tags.append(key)
    return FilterOptions(
        years=[int(r["year"]) for r in years],
        products=[str(r["label"]) for r in products],
        firms=[str(r["label"]) for r in firms],
        outcomes=list(SUPPORTED_OUTCOMES),
        tags=sorted(tags),
    )


def query_year_counts(cur: StoreCursor, start_year: int | None = None) -> list[ProgressYear]:
    where = "WHERE d.decision_date IS NOT NULL"
    params: list[Any] = []
    if start_year is not None:
        where += f" AND {year_sql()} >= ?"
        params.append(start_year)
    rows = cur.fetch_all(
        f"""
        SELECT {year_sql()} AS year, COUNT(*) AS total
        FROM {DECISIONS_TABLE} d
        {where}
        GROUP BY 1
        ORDER BY 1
        """,
        params,
    )
    return [ProgressYear(year=int(r["year"]), total=_int(r["total"])) for r in rows]


def query_total(cur: StoreCursor, pop: Population) -> int:
    return _int(cur.fetch_scalar(pop.sql(f"SELECT COUNT(*) FROM {pop.relation}"), pop.bind()))
