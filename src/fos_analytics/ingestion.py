"""Ingestion status from the optional run log, with a derived fallback.

The run-log table is written by an external ingester and its schema varies
between deployments. Reading it is a two-step process:

1. :func:`detect_run_log` introspects the store and returns the typed set of
   columns that are present;
2. :func:`select_strategy` turns that capability set into either an
   :class:`ExplicitRunLog` (what to select, what to order by) or a
   :class:`DerivedStatus` (summarise the corpus instead).

The status endpoint never fails because of the run log: any gap falls back to
a status derived from the corpus date range and row count.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

from fos_analytics.aggregates import iso_date
from fos_analytics.expressions import DECISIONS_TABLE, INGESTION_RUNS_TABLE
from fos_analytics.models import IngestionStatus
from fos_analytics.outcomes import normalize_run_status
from fos_analytics.store import DuckDBError, StoreCursor

log = logging.getLogger(__name__)

OPTIONAL_RUN_COLUMNS: Final[tuple[str, ...]] = (
    "status",
    "started_at",
    "updated_at",
    "finished_at",
    "active_year",
    "windows_done",
    "windows_total",
    "failed_windows",
    "records_ingested",
    "last_success_at",
)

# Most recent activity first.
ORDER_COLUMN_PREFERENCE: Final[tuple[str, ...]] = ("updated_at", "finished_at", "started_at")

_COUNTER_COLUMNS: Final[tuple[str, ...]] = (
    "active_year",
    "windows_done",
    "windows_total",
    "failed_windows",
    "records_ingested",
)


@dataclass(frozen=True, slots=True)
class RunLogCapabilities:
    table_exists: bool
    columns: frozenset[str] = frozenset()

    @property
    def selectable(self) -> tuple[str, ...]:
        return tuple(c for c in OPTIONAL_RUN_COLUMNS if c in self.columns)

    @property
    def order_column(self) -> str | None:
        for column in ORDER_COLUMN_PREFERENCE:
            if column in self.columns:
                return column
        return None


@dataclass(frozen=True, slots=True)
class ExplicitRunLog:
    columns: tuple[str, ...]
    order_column: str


@dataclass(frozen=True, slots=True)
class DerivedStatus:
    reason: str


RunLogStrategy = ExplicitRunLog | DerivedStatus


def detect_run_log(cur: StoreCursor, table: str = INGESTION_RUNS_TABLE) -> RunLogCapabilities:
    if not cur.has_table(table):
        return RunLogCapabilities(table_exists=False)
    return RunLogCapabilities(table_exists=True, columns=cur.table_columns(table))


def select_strategy(caps: RunLogCapabilities) -> RunLogStrategy:
    if not caps.table_exists:
        return DerivedStatus(reason="run log table missing")
    if not caps.selectable:
        return DerivedStatus(reason="run log has no recognised columns")
    order_column = caps.order_column
    if order_column is None:
        return DerivedStatus(reason="run log has no timestamp column")
    return ExplicitRunLog(columns=caps.selectable, order_column=order_column)


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def status_from_run_row(row: dict[str, Any]) -> IngestionStatus:
    last_run = row.get("updated_at") or row.get("finished_at") or row.get("started_at")
    last_success = row.get("last_success_at") or row.get("finished_at")
    counters = {c: _optional_int(row.get(c)) for c in _COUNTER_COLUMNS}
    return IngestionStatus(
        status=normalize_run_status(row.get("status")),
        source="fos_ingestion_runs",
        last_run_at=iso_date(last_run),
        last_success_at=iso_date(last_success),
        **counters,
    )


def read_run_log(
    cur: StoreCursor,
    strategy: ExplicitRunLog,
    table: str = INGESTION_RUNS_TABLE,
) -> IngestionStatus | None:
    """Latest run-log row as a status; ``None`` when the table is empty."""
    row = cur.fetch_one(
        f"""
        SELECT {', '.join(strategy.columns)}
        FROM {table}
        ORDER BY {strategy.order_column} DESC NULLS LAST
        LIMIT 1
        """
    )
    if row is None:
        return None
    return status_from_run_row(row)


def derive_status(cur: StoreCursor) -> IngestionStatus:
    """Status summarised from the decisions table itself."""
    row = cur.fetch_one(
        f"""
        SELECT
            COUNT(*) AS total,
            MIN(decision_date) AS earliest,
            MAX(decision_date) AS latest
        FROM {DECISIONS_TABLE}
        """
    ) or {}
    latest = iso_date(row.get("latest"))
    return IngestionStatus(
        status="idle",
        source="derived",
        last_run_at=latest,
        last_success_at=latest,
        records_ingested=int(row.get("total") or 0),
        earliest_decision_date=iso_date(row.get("earliest")),
        latest_decision_date=latest,
    )


def read_ingestion_status(
    cur: StoreCursor,
    table: str = INGESTION_RUNS_TABLE,
    *,
    capabilities: RunLogCapabilities | None = None,
) -> IngestionStatus:
    """Explicit run-log status when available, otherwise the derived one.

    Pass *capabilities* to skip introspection when the caller caches it.
    """
    if capabilities is None:
        capabilities = detect_run_log(cur, table)
    strategy = select_strategy(capabilities)
    if isinstance(strategy, ExplicitRunLog):
        try:
            status = read_run_log(cur, strategy, table)
        except DuckDBError as exc:
            log.warning("Ingestion run log unreadable, deriving status: %s", exc)
            status = None
        if status is not None:
            return status
        log.debug("Ingestion run log is empty; deriving status")
    else:
        log.debug("Deriving ingestion status: %s", strategy.reason)
    return derive_status(cur)
