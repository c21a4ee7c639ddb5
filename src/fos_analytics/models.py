"""Response shapes of the query surface.

Fields are snake_case in Python and serialise with camelCase aliases.
Dates and timestamps travel as ISO-8601 strings.
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SectionSource = Literal["stored", "inferred", "missing"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Dashboard blocks
# ---------------------------------------------------------------------------

class Overview(ApiModel):
    total_cases: int = 0
    upheld_cases: int = 0
    not_upheld_cases: int = 0
    partially_upheld_cases: int = 0
    upheld_rate: float = 0.0
    not_upheld_rate: float = 0.0
    top_root_cause: str | None = None
    top_precedent: str | None = None
    earliest_decision_date: str | None = None
    latest_decision_date: str | None = None


class TrendPoint(ApiModel):
    year: int
    total: int
    upheld: int
    not_upheld: int
    partially_upheld: int
    unknown: int


class OutcomePoint(ApiModel):
    outcome: str
    count: int


class ProductPoint(ApiModel):
    product: str
    total: int
    upheld_rate: float


class FirmPoint(ApiModel):
    firm: str
    total: int
    upheld_rate: float
    not_upheld_rate: float


class TagCount(ApiModel):
    label: str
    count: int


class YearInsight(ApiModel):
    year: int
    headline: str
    detail: str


class DataQuality(ApiModel):
    missing_decision_date: int = 0
    missing_outcome: int = 0
    with_reasoning_text: int = 0


class FilterOptions(ApiModel):
    years: list[int] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)
    firms: list[str] = Field(default_factory=list)
    outcomes: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class Pagination(ApiModel):
    page: int
    page_size: int
    total: int
    total_pages: int


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------

class CaseListItem(ApiModel):
    case_id: str
    decision_reference: str | None = None
    decision_date: str | None = None
    year: int | None = None
    firm_name: str
    product_group: str
    outcome: str
    ombudsman_name: str | None = None
    decision_summary: str | None = None
    decision_logic: str | None = None
    precedents: list[str] = Field(default_factory=list)
    root_cause_tags: list[str] = Field(default_factory=list)
    vulnerability_flags: list[str] = Field(default_factory=list)
    pdf_url: str | None = None
    source_url: str | None = None


class CaseDetail(CaseListItem):
    complaint_text: str | None = None
    firm_response_text: str | None = None
    ombudsman_reasoning_text: str | None = None
    final_decision_text: str | None = None
    full_text: str | None = None
    section_sources: dict[str, SectionSource] = Field(default_factory=dict)
    section_confidence: dict[str, float] = Field(default_factory=dict)


class CasePage(ApiModel):
    cases: list[CaseListItem]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class IngestionStatus(ApiModel):
    status: Literal["running", "idle", "warning", "error"] = "idle"
    source: Literal["fos_ingestion_runs", "derived"] = "derived"
    last_run_at: str | None = None
    last_success_at: str | None = None
    active_year: int | None = None
    windows_done: int | None = None
    windows_total: int | None = None
    failed_windows: int | None = None
    records_ingested: int | None = None
    earliest_decision_date: str | None = None
    latest_decision_date: str | None = None


class ProgressYear(ApiModel):
    year: int
    total: int


class ProgressSummary(ApiModel):
    total_cases: int
    years: list[ProgressYear]
    ingestion: IngestionStatus


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

class YearProductOutcomeCell(ApiModel):
    year: int | None
    product: str
    total: int
    upheld: int
    not_upheld: int
    partially_upheld: int
    settled: int
    not_settled: int
    unknown: int
    upheld_rate: float


class FirmBenchmarkRow(ApiModel):
    firm: str
    total: int
    upheld_rate: float
    not_upheld_rate: float
    avg_decision_year: int | None = None
    predominant_product: str | None = None


class MatrixCell(ApiModel):
    precedent: str
    root_cause: str
    count: int


class ProductTreeFirm(ApiModel):
    firm: str
    total: int
    upheld_rate: float


class ProductTreeNode(ApiModel):
    product: str
    total: int
    upheld_rate: float
    firms: list[ProductTreeFirm]


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class DashboardSnapshot(ApiModel):
    overview: Overview
    trends: list[TrendPoint]
    outcomes: list[OutcomePoint]
    products: list[ProductPoint]
    firms: list[FirmPoint]
    precedents: list[TagCount]
    root_causes: list[TagCount]
    insights: list[YearInsight]
    cases: list[CaseListItem]
    pagination: Pagination
    filters: FilterOptions
    ingestion: IngestionStatus
    data_quality: DataQuality


class AnalysisSnapshot(ApiModel):
    overview: Overview
    year_product_outcome: list[YearProductOutcomeCell]
    firm_benchmark: list[FirmBenchmarkRow]
    precedents: list[TagCount]
    root_causes: list[TagCount]
    precedent_root_cause_matrix: list[MatrixCell]
    product_tree: list[ProductTreeNode]
    year_narratives: list[YearInsight]
    filters: FilterOptions


class SnapshotMeta(ApiModel):
    cached: bool
    query_ms: int
    snapshot_at: str
