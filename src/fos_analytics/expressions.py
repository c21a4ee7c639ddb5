"""Shared SQL expressions over the ``fos_decisions`` table.

Every query in the aggregate family derives labels, years, tag lists and the
outcome bucket through these helpers so the same record lands in the same
bucket in every aggregate.
"""
from __future__ import annotations

from typing import Final

DECISIONS_TABLE: Final[str] = "fos_decisions"
INGESTION_RUNS_TABLE: Final[str] = "fos_ingestion_runs"

UNSPECIFIED_PRODUCT: Final[str] = "Unspecified"
UNKNOWN_FIRM: Final[str] = "Unknown firm"

SEARCH_COLUMNS: Final[tuple[str, ...]] = (
    "decision_reference",
    "business_name",
    "product_sector",
    "decision_summary",
    "decision_logic",
    "final_decision_text",
    "ombudsman_reasoning_text",
)

TAG_COLUMNS: Final[tuple[str, ...]] = ("precedents", "root_cause_tags")


def product_label_sql(alias: str = "d") -> str:
    return f"COALESCE(NULLIF(trim({alias}.product_sector), ''), '{UNSPECIFIED_PRODUCT}')"


def firm_label_sql(alias: str = "d") -> str:
    return f"COALESCE(NULLIF(trim({alias}.business_name), ''), '{UNKNOWN_FIRM}')"


def year_sql(alias: str = "d") -> str:
    return f"CAST(EXTRACT(YEAR FROM {alias}.decision_date) AS INTEGER)"


def tag_list_sql(column: str) -> str:
    """Decode a JSON tag column to ``VARCHAR[]``; NULL or malformed gives ``[]``."""
    return f"COALESCE(TRY_CAST(TRY_CAST({column} AS JSON) AS VARCHAR[]), CAST([] AS VARCHAR[]))"


def outcome_count_sql(outcome_expr: str, bucket: str) -> str:
    return f"COUNT(*) FILTER (WHERE {outcome_expr} = '{bucket}')"
