"""Shared fixtures: throwaway DuckDB decision stores and a manual clock."""
from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import date
from pathlib import Path
from typing import Any

import orjson
import pytest

from fos_analytics.store import DECISION_COLUMNS, DecisionStore

_TAG_COLUMNS = ("precedents", "root_cause_tags", "vulnerability_flags")


def decision_row(reference: str, **fields: Any) -> dict[str, Any]:
    """A full ``fos_decisions`` row; tag lists may be given as Python lists."""
    row: dict[str, Any] = {column: None for column in DECISION_COLUMNS}
    row["decision_reference"] = reference
    for key, value in fields.items():
        if key not in row:
            raise KeyError(f"unknown decision column: {key}")
        if key in _TAG_COLUMNS and isinstance(value, list):
            value = orjson.dumps(value).decode()
        row[key] = value
    return row


def sample_rows() -> list[dict[str, Any]]:
    """Two 2022 decisions (one upheld) and one upheld 2023 decision."""
    return [
        decision_row(
            "DRN-0001",
            decision_date=date(2022, 3, 14),
            business_name="Acme Bank",
            product_sector="Current accounts",
            outcome="Upheld",
            decision_summary="The bank failed to explain its overdraft charges.",
            precedents=["DISP", "PRIN"],
            root_cause_tags=["Communication failure"],
        ),
        decision_row(
            "DRN-0002",
            decision_date=date(2022, 9, 2),
            business_name="Beta Insurance",
            product_sector="Travel insurance",
            outcome="Not upheld",
            decision_summary="The exclusion clause was clear.",
            precedents=["ICOBS"],
            root_cause_tags=["Policy wording ambiguity"],
        ),
        decision_row(
            "DRN-0003",
            decision_date=date(2023, 1, 20),
            business_name="Acme Bank",
            product_sector="Current accounts",
            outcome="upheld",
            decision_summary="A delay in handling the claim caused distress.",
            precedents=["DISP"],
            root_cause_tags=["Delay in claim handling"],
        ),
    ]


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_store(tmp_path: Path) -> Iterator[Callable[..., DecisionStore]]:
    """Factory for read-write stores populated with the given rows."""
    opened: list[DecisionStore] = []

    def factory(
        rows: list[dict[str, Any]] | None = None,
        *,
        name: str = "fos.duckdb",
        with_ingestion_runs: bool = False,
        schema: bool = True,
    ) -> DecisionStore:
        store = DecisionStore(tmp_path / name, read_only=False, create_if_missing=True)
        opened.append(store)
        if schema:
            store.create_schema(with_ingestion_runs=with_ingestion_runs)
        if rows:
            store.upsert_decisions(rows)
        return store

    yield factory
    for store in opened:
        store.close()
