"""Request-level analytics service.

One :class:`FosAnalyticsService` owns a :class:`DecisionStore`, the metadata
and response caches, and a thread pool on which the independent queries of a
request run concurrently, each on its own DuckDB cursor. Results are joined
when the snapshot is assembled. Nothing is retried: a failing query fails
the request.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar, cast

from fos_analytics import aggregates
from fos_analytics.aggregates import TAG_COLUMN_PRECEDENTS, TAG_COLUMN_ROOT_CAUSES, Population
from fos_analytics.cache import (
    FILTER_OPTIONS_TTL_SECONDS,
    RESPONSE_CACHE_TTL_SECONDS,
    TABLE_CHECK_TTL_SECONDS,
    TAG_PRESENCE_TTL_SECONDS,
    Clock,
    MetadataCache,
    TTLCache,
)
from fos_analytics.config import DEFAULT_QUERY_WORKERS, Settings
from fos_analytics.expressions import (
    DECISIONS_TABLE,
    INGESTION_RUNS_TABLE,
    firm_label_sql,
    product_label_sql,
)
from fos_analytics.filters import FilterSet
from fos_analytics.ingestion import RunLogCapabilities, detect_run_log, read_ingestion_status
from fos_analytics.models import (
    AnalysisSnapshot,
    ApiModel,
    CaseDetail,
    CasePage,
    DashboardSnapshot,
    FilterOptions,
    IngestionStatus,
    ProgressSummary,
    SnapshotMeta,
    TagCount,
)
from fos_analytics.snapshots import assemble_analysis, assemble_dashboard, case_detail_from_row
from fos_analytics.store import DecisionStore, SchemaUnavailableError, StoreCursor

log = logging.getLogger(__name__)

T = TypeVar("T")

RESPONSE_CACHE_MAX_ENTRIES = 256
_OPTIONS_KEY = "options"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class SnapshotResponse:
    """A snapshot plus the metadata describing how it was produced."""

    filters: FilterSet
    data: ApiModel
    meta: SnapshotMeta

    def to_payload(self, generated_at: str) -> dict[str, Any]:
        return {
            "success": True,
            "generatedAt": generated_at,
            "filters": self.filters.as_dict(),
            "data": self.data.to_payload(),
            "meta": self.meta.to_payload(),
        }


class FosAnalyticsService:
    """Analytics over one decisions store."""

    def __init__(
        self,
        store: DecisionStore,
        *,
        clock: Clock = time.monotonic,
        wall_clock: Callable[[], datetime] = _utc_now,
        workers: int = DEFAULT_QUERY_WORKERS,
        response_ttl: float = RESPONSE_CACHE_TTL_SECONDS,
        table_ttl: float = TABLE_CHECK_TTL_SECONDS,
        tag_ttl: float = TAG_PRESENCE_TTL_SECONDS,
        options_ttl: float = FILTER_OPTIONS_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._wall_clock = wall_clock
        self._metadata = MetadataCache(
            clock=clock,
            table_ttl=table_ttl,
            tag_ttl=tag_ttl,
            options_ttl=options_ttl,
        )
        self._responses: TTLCache[str, tuple[ApiModel, str]] = TTLCache(
            response_ttl,
            clock=clock,
            max_entries=RESPONSE_CACHE_MAX_ENTRIES,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, workers),
            thread_name_prefix="fos-query",
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> FosAnalyticsService:
        store = DecisionStore(settings.require_database_path(), read_only=settings.read_only)
        return cls(
            store,
            workers=settings.query_workers,
            response_ttl=settings.response_cache_ttl,
            table_ttl=settings.table_check_ttl,
            options_ttl=settings.filter_options_ttl,
            **kwargs,
        )

    @property
    def store(self) -> DecisionStore:
        return self._store

    @property
    def metadata(self) -> MetadataCache:
        return self._metadata

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._store.close()

    # -- plumbing --------------------------------------------------------

    def _with_cursor(self, fn: Callable[[StoreCursor], T]) -> T:
        with self._store.cursor() as cur:
            return fn(cur)

    def _run_parallel(self, tasks: dict[str, Callable[[StoreCursor], Any]]) -> dict[str, Any]:
        """Run each task on its own cursor; re-raise the first failure."""
        futures: dict[str, Future[Any]] = {
            name: self._executor.submit(self._with_cursor, fn) for name, fn in tasks.items()
        }
        return {name: future.result() for name, future in futures.items()}

    def _ensure_decisions_table(self) -> None:
        exists = self._metadata.tables.get(DECISIONS_TABLE)
        if exists is None:
            exists = self._with_cursor(lambda cur: cur.has_table(DECISIONS_TABLE))
            self._metadata.tables.set(DECISIONS_TABLE, exists)
            log.debug("Probed table %s: exists=%s", DECISIONS_TABLE, exists)
        if not exists:
            raise SchemaUnavailableError(DECISIONS_TABLE)

    def _has_tags(self, cur: StoreCursor, column: str) -> bool:
        return self._metadata.tag_presence.get_or_load(
            column, lambda: aggregates.has_tag_values(cur, column)
        )

    def _ingestion_status(self, cur: StoreCursor) -> IngestionStatus:
        caps = self._metadata.run_logs.get_or_load(
            INGESTION_RUNS_TABLE, lambda: detect_run_log(cur)
        )
        return read_ingestion_status(cur, capabilities=cast(RunLogCapabilities, caps))

    def _tag_frequency(self, column: str, pop: Population) -> Callable[[StoreCursor], list[TagCount]]:
        def run(cur: StoreCursor) -> list[TagCount]:
            if not self._has_tags(cur, column):
                return []
            return aggregates.query_tag_frequency(cur, pop, column)
        return run

    def _filter_options(self, cur: StoreCursor) -> FilterOptions:
        def load() -> FilterOptions:
            include = {
                column: self._has_tags(cur, column)
                for column in (TAG_COLUMN_PRECEDENTS, TAG_COLUMN_ROOT_CAUSES)
            }
            return aggregates.query_filter_options(cur, include_tags=include)

        return cast(FilterOptions, self._metadata.filter_options.get_or_load(_OPTIONS_KEY, load))

    def _cached_response(
        self,
        kind: str,
        filters: FilterSet,
        build: Callable[[FilterSet], ApiModel],
    ) -> SnapshotResponse:
        started = time.perf_counter()
        key = f"{kind}:{filters.cache_key()}"
        hit = self._responses.get(key)
        if hit is not None:
            data, snapshot_at = hit
            cached = True
        else:
            data = build(filters)
            snapshot_at = self._wall_clock().isoformat()
            self._responses.set(key, (data, snapshot_at))
            cached = False
        elapsed_ms = int(round((time.perf_counter() - started) * 1000))
        return SnapshotResponse(
            filters=filters,
            data=data,
            meta=SnapshotMeta(cached=cached, query_ms=elapsed_ms, snapshot_at=snapshot_at),
        )

    # -- operations ------------------------------------------------------

    def dashboard_snapshot(self, filters: FilterSet) -> DashboardSnapshot:
        self._ensure_decisions_table()
        pop = aggregates.population_for(filters)
        results = self._run_parallel({
            "overview": lambda cur: aggregates.query_overview(cur, pop),
            "trends": lambda cur: aggregates.query_trends(cur, pop),
            "outcomes": lambda cur: aggregates.query_outcome_distribution(cur, pop),
            "products": lambda cur: aggregates.query_products(cur, pop),
            "firms": lambda cur: aggregates.query_firms(cur, pop),
            "precedents": self._tag_frequency(TAG_COLUMN_PRECEDENTS, pop),
            "root_causes": self._tag_frequency(TAG_COLUMN_ROOT_CAUSES, pop),
            "top_products": lambda cur: aggregates.query_year_leaders(cur, pop, product_label_sql()),
            "top_firms": lambda cur: aggregates.query_year_leaders(cur, pop, firm_label_sql()),
            "case_page": lambda cur: aggregates.query_case_page(cur, pop, filters.page, filters.page_size),
            "options": self._filter_options,
            "ingestion": self._ingestion_status,
            "data_quality": lambda cur: aggregates.query_data_quality(cur, pop),
        })
        return assemble_dashboard(**results)

    def analysis_snapshot(self, filters: FilterSet) -> AnalysisSnapshot:
        self._ensure_decisions_table()
        pop = aggregates.population_for(filters)
        results = self._run_parallel({
            "overview": lambda cur: aggregates.query_overview(cur, pop),
            "cells": lambda cur: aggregates.query_year_product_outcome(cur, pop),
            "firm_benchmark": lambda cur: aggregates.query_firm_benchmark(cur, pop),
            "precedents": self._tag_frequency(TAG_COLUMN_PRECEDENTS, pop),
            "root_causes": self._tag_frequency(TAG_COLUMN_ROOT_CAUSES, pop),
            "matrix": self._matrix(pop),
            "product_tree": lambda cur: aggregates.query_product_tree(cur, pop),
            "top_firms": lambda cur: aggregates.query_year_leaders(cur, pop, firm_label_sql()),
            "options": self._filter_options,
        })
        return assemble_analysis(**results)

    def _matrix(self, pop: Population) -> Callable[[StoreCursor], Any]:
        def run(cur: StoreCursor) -> Any:
            if not (
                self._has_tags(cur, TAG_COLUMN_PRECEDENTS)
                and self._has_tags(cur, TAG_COLUMN_ROOT_CAUSES)
            ):
                return []
            return aggregates.query_precedent_root_cause_matrix(cur, pop)
        return run

    def dashboard_response(self, filters: FilterSet) -> SnapshotResponse:
        return self._cached_response("dashboard", filters, self.dashboard_snapshot)

    def analysis_response(self, filters: FilterSet) -> SnapshotResponse:
        return self._cached_response("analysis", filters, self.analysis_snapshot)

    def case_page(self, filters: FilterSet) -> CasePage:
        self._ensure_decisions_table()
        pop = aggregates.population_for(filters)
        return self._with_cursor(
            lambda cur: aggregates.query_case_page(cur, pop, filters.page, filters.page_size)
        )

    def case_detail(self, case_id: str) -> CaseDetail | None:
        self._ensure_decisions_table()
        key = case_id.strip()
        if not key:
            return None
        row = self._with_cursor(lambda cur: aggregates.query_case_row(cur, key))
        if row is None:
            return None
        return case_detail_from_row(row)

    def ingestion_status(self) -> IngestionStatus:
        self._ensure_decisions_table()
        return self._with_cursor(self._ingestion_status)

    def progress_summary(self, start_year: int | None = None) -> ProgressSummary:
        self._ensure_decisions_table()
        results = self._run_parallel({
            "years": lambda cur: aggregates.query_year_counts(cur, start_year),
            "total": lambda cur: aggregates.query_total(cur, Population.unfiltered()),
            "ingestion": self._ingestion_status,
        })
        return ProgressSummary(
            total_cases=results["total"],
            years=results["years"],
            ingestion=results["ingestion"],
        )

    def keepalive(self) -> dict[str, Any]:
        """Touch the store so connection and caches stay warm."""
        self._ensure_decisions_table()
        total = self._with_cursor(
            lambda cur: aggregates.query_total(cur, Population.unfiltered())
        )
        return {"totalCases": total, "checkedAt": self._wall_clock().isoformat()}
