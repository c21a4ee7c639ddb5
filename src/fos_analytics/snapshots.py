"""Assembly of aggregate query results into response snapshots.

Assembly never queries the store: narratives and headline figures are
derived from rows the aggregate family already returned for the same
population.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from fos_analytics.aggregates import YearLeader, case_fields_from_row, rate
from fos_analytics.enrichment import enrich_decision
from fos_analytics.models import (
    AnalysisSnapshot,
    CaseDetail,
    CasePage,
    DashboardSnapshot,
    DataQuality,
    FilterOptions,
    FirmBenchmarkRow,
    FirmPoint,
    IngestionStatus,
    MatrixCell,
    OutcomePoint,
    Overview,
    ProductPoint,
    ProductTreeNode,
    TagCount,
    TrendPoint,
    YearInsight,
    YearProductOutcomeCell,
)

BASELINE_TREND = "baseline year in the current filter window"


@dataclass(frozen=True, slots=True)
class YearTotals:
    year: int
    total: int
    upheld: int


def _volume_trend(total: int, prior: int | None) -> str:
    if prior is None:
        return BASELINE_TREND
    return f"{total - prior:+,} vs prior year"


def build_year_narratives(
    totals: Iterable[YearTotals],
    top_products: Mapping[int, str],
    top_firms: Mapping[int, YearLeader],
) -> list[YearInsight]:
    """One headline/detail pair per year, newest first.

    The prior year is the previous year present in *totals*, so gaps in the
    filter window compare against the nearest earlier year.
    """
    ordered = sorted(totals, key=lambda t: t.year)
    insights: list[YearInsight] = []
    prior: int | None = None
    for item in ordered:
        upheld_rate = rate(item.upheld, item.total)
        parts = [f"Volume trend: {_volume_trend(item.total, prior)}."]
        product = top_products.get(item.year)
        if product:
            parts.append(f"Top product: {product}.")
        firm = top_firms.get(item.year)
        if firm is not None:
            parts.append(f"Top firm: {firm.label} ({firm.total:,} decisions).")
        insights.append(YearInsight(
            year=item.year,
            headline=f"{item.year}: {item.total:,} decisions, {upheld_rate:.1f}% upheld",
            detail=" ".join(parts),
        ))
        prior = item.total
    insights.sort(key=lambda i: i.year, reverse=True)
    return insights


def _overview_with_tags(
    overview: Overview,
    precedents: list[TagCount],
    root_causes: list[TagCount],
) -> Overview:
    return overview.model_copy(update={
        "top_precedent": precedents[0].label if precedents else None,
        "top_root_cause": root_causes[0].label if root_causes else None,
    })


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def assemble_dashboard(
    *,
    overview: Overview,
    trends: list[TrendPoint],
    outcomes: list[OutcomePoint],
    products: list[ProductPoint],
    firms: list[FirmPoint],
    precedents: list[TagCount],
    root_causes: list[TagCount],
    top_products: list[YearLeader],
    top_firms: list[YearLeader],
    case_page: CasePage,
    options: FilterOptions,
    ingestion: IngestionStatus,
    data_quality: DataQuality,
) -> DashboardSnapshot:
    insights = build_year_narratives(
        (YearTotals(t.year, t.total, t.upheld) for t in trends),
        {leader.year: leader.label for leader in top_products},
        {leader.year: leader for leader in top_firms},
    )
    return DashboardSnapshot(
        overview=_overview_with_tags(overview, precedents, root_causes),
        trends=trends,
        outcomes=outcomes,
        products=products,
        firms=firms,
        precedents=precedents,
        root_causes=root_causes,
        insights=insights,
        cases=case_page.cases,
        pagination=case_page.pagination,
        filters=options,
        ingestion=ingestion,
        data_quality=data_quality,
    )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def top_products_by_year(cells: Iterable[YearProductOutcomeCell]) -> dict[int, str]:
    """Highest-volume product per dated year (ties broken alphabetically)."""
    best: dict[int, str] = {}
    dated = [c for c in cells if c.year is not None]
    for cell in sorted(dated, key=lambda c: (c.year, -c.total, c.product)):
        best.setdefault(cell.year, cell.product)  # type: ignore[arg-type]
    return best


def year_totals_from_cells(cells: Iterable[YearProductOutcomeCell]) -> list[YearTotals]:
    acc: dict[int, list[int]] = {}
    for cell in cells:
        if cell.year is None:
            continue
        bucket = acc.setdefault(cell.year, [0, 0])
        bucket[0] += cell.total
        bucket[1] += cell.upheld
    return [YearTotals(year, total, upheld) for year, (total, upheld) in acc.items()]


def assemble_analysis(
    *,
    overview: Overview,
    cells: list[YearProductOutcomeCell],
    firm_benchmark: list[FirmBenchmarkRow],
    precedents: list[TagCount],
    root_causes: list[TagCount],
    matrix: list[MatrixCell],
    product_tree: list[ProductTreeNode],
    top_firms: list[YearLeader],
    options: FilterOptions,
) -> AnalysisSnapshot:
    narratives = build_year_narratives(
        year_totals_from_cells(cells),
        top_products_by_year(cells),
        {leader.year: leader for leader in top_firms},
    )
    return AnalysisSnapshot(
        overview=_overview_with_tags(overview, precedents, root_causes),
        year_product_outcome=cells,
        firm_benchmark=firm_benchmark,
        precedents=precedents,
        root_causes=root_causes,
        precedent_root_cause_matrix=matrix,
        product_tree=product_tree,
        year_narratives=narratives,
        filters=options,
    )


# ---------------------------------------------------------------------------
# Case detail
# ---------------------------------------------------------------------------

def case_detail_from_row(row: Mapping[str, Any]) -> CaseDetail:
    """Detail view of a stored record with missing fields inferred on read."""
    fields = case_fields_from_row(dict(row))
    enriched = enrich_decision(row)
    fields.update(
        decision_logic=enriched.decision_logic,
        precedents=list(enriched.precedents),
        root_cause_tags=list(enriched.root_cause_tags),
        vulnerability_flags=list(enriched.vulnerability_flags),
    )
    return CaseDetail(
        **fields,
        complaint_text=enriched.complaint_text,
        firm_response_text=enriched.firm_response_text,
        ombudsman_reasoning_text=enriched.ombudsman_reasoning_text,
        final_decision_text=enriched.final_decision_text,
        full_text=row.get("full_text") or None,
        section_sources=enriched.section_sources,
        section_confidence=enriched.section_confidence,
    )
