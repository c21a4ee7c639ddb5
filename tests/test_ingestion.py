"""Tests for fos_analytics.ingestion."""
from __future__ import annotations

from datetime import datetime

from conftest import sample_rows

from fos_analytics.ingestion import (
    DerivedStatus,
    ExplicitRunLog,
    RunLogCapabilities,
    detect_run_log,
    read_ingestion_status,
    select_strategy,
)


class TestSelectStrategy:
    def test_missing_table(self) -> None:
        assert isinstance(select_strategy(RunLogCapabilities(table_exists=False)), DerivedStatus)

    def test_no_recognised_columns(self) -> None:
        caps = RunLogCapabilities(table_exists=True, columns=frozenset({"id", "note"}))
        assert select_strategy(caps) == DerivedStatus(reason="run log has no recognised columns")

    def test_no_timestamp(self) -> None:
        caps = RunLogCapabilities(table_exists=True, columns=frozenset({"status", "active_year"}))
        assert isinstance(select_strategy(caps), DerivedStatus)

    def test_prefers_updated_at(self) -> None:
        caps = RunLogCapabilities(
            table_exists=True,
            columns=frozenset({"status", "started_at", "finished_at", "updated_at"}),
        )
        strategy = select_strategy(caps)
        assert isinstance(strategy, ExplicitRunLog)
        assert strategy.order_column == "updated_at"
        assert strategy.columns == ("status", "started_at", "updated_at", "finished_at")


class TestReadIngestionStatus:
    def test_derived_when_table_missing(self, make_store) -> None:
        store = make_store(sample_rows())
        with store.cursor() as cur:
            assert not detect_run_log(cur).table_exists
            status = read_ingestion_status(cur)
        assert status.source == "derived"
        assert status.status == "idle"
        assert status.records_ingested == 3
        assert status.last_run_at == "2023-01-20"
        assert status.last_success_at == "2023-01-20"
        assert status.earliest_decision_date == "2022-03-14"
        assert status.latest_decision_date == "2023-01-20"

    def test_derived_when_run_log_empty(self, make_store) -> None:
        store = make_store(sample_rows(), with_ingestion_runs=True)
        with store.cursor() as cur:
            status = read_ingestion_status(cur)
        assert status.source == "derived"

    def test_latest_run_row(self, make_store) -> None:
        store = make_store(sample_rows(), with_ingestion_runs=True)
        store.execute_many(
            """
            INSERT INTO fos_ingestion_runs
                (status, active_year, windows_done, windows_total, failed_windows,
                 records_ingested, started_at, finished_at, last_success_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                ["completed", 2022, 12, 12, 0, 900,
                 datetime(2024, 1, 1, 8), datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 9),
                 datetime(2024, 1, 1, 9)],
                ["in_progress", 2023, 5, 12, 1, 350,
                 datetime(2024, 2, 1, 8), None, datetime(2024, 1, 1, 9),
                 datetime(2024, 2, 1, 8, 30)],
            ],
        )
        with store.cursor() as cur:
            status = read_ingestion_status(cur)
        assert status.source == "fos_ingestion_runs"
        assert status.status == "running"
        assert status.active_year == 2023
        assert (status.windows_done, status.windows_total, status.failed_windows) == (5, 12, 1)
        assert status.records_ingested == 350
        assert status.last_run_at == "2024-02-01T08:30:00"
        assert status.last_success_at == "2024-01-01T09:00:00"

    def test_partial_schema(self, make_store) -> None:
        store = make_store(sample_rows())
        store.execute_write("CREATE TABLE fos_ingestion_runs (status VARCHAR, started_at TIMESTAMP)")
        store.execute_write(
            "INSERT INTO fos_ingestion_runs VALUES ('failed', TIMESTAMP '2024-03-01 10:00:00')"
        )
        with store.cursor() as cur:
            status = read_ingestion_status(cur)
        assert status.source == "fos_ingestion_runs"
        assert status.status == "error"
        assert status.last_run_at == "2024-03-01T10:00:00"
        assert status.last_success_at is None
        assert status.windows_total is None

    def test_run_log_without_timestamp_is_derived(self, make_store) -> None:
        store = make_store(sample_rows())
        store.execute_write("CREATE TABLE fos_ingestion_runs (status VARCHAR)")
        store.execute_write("INSERT INTO fos_ingestion_runs VALUES ('running')")
        with store.cursor() as cur:
            status = read_ingestion_status(cur)
        assert status.source == "derived"
