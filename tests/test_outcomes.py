"""Tests for fos_analytics.outcomes."""
from __future__ import annotations

import duckdb
import pytest

from fos_analytics.outcomes import (
    SUPPORTED_OUTCOMES,
    normalize_outcome,
    normalize_run_status,
    outcome_bucket_sql,
)

RAW_OUTCOMES = [
    None,
    "",
    "   ",
    "Upheld",
    "UPHELD",
    "upheld in part",
    "Not upheld",
    "not_upheld",
    "We did not uphold this complaint",
    "Partially upheld",
    "partly   upheld",
    "partially_upheld",
    "Settled",
    "Not settled",
    "not_settled",
    "withdrawn",
    "Complaint upheld - redress due",
    "Not\u00a0upheld",
    "partly\u202fupheld",
    "not\t_settled",
]


class TestNormalizeOutcome:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Upheld", "upheld"),
            ("Not upheld", "not_upheld"),
            ("not_upheld", "not_upheld"),
            ("did not uphold", "not_upheld"),
            ("Partly upheld", "partially_upheld"),
            ("partially_upheld", "partially_upheld"),
            ("Not settled", "not_settled"),
            ("settled", "settled"),
            ("withdrawn", "unknown"),
        ],
    )
    def test_buckets(self, raw: str, expected: str) -> None:
        assert normalize_outcome(raw) == expected

    def test_total_over_empty_input(self) -> None:
        assert normalize_outcome(None) == "unknown"
        assert normalize_outcome("") == "unknown"
        assert normalize_outcome("  \t ") == "unknown"

    def test_result_always_supported(self) -> None:
        for raw in RAW_OUTCOMES:
            assert normalize_outcome(raw) in SUPPORTED_OUTCOMES

    def test_specific_phrasing_wins_over_substring(self) -> None:
        # "not upheld" contains "upheld"; "not settled" contains "settled"
        assert normalize_outcome("NOT UPHELD") == "not_upheld"
        assert normalize_outcome("not  settled") == "not_settled"


class TestOutcomeBucketSql:
    def test_sql_matches_python(self) -> None:
        con = duckdb.connect(":memory:")
        try:
            con.execute("CREATE TABLE t (i INTEGER, outcome VARCHAR)")
            con.executemany(
                "INSERT INTO t VALUES (?, ?)",
                [[i, raw] for i, raw in enumerate(RAW_OUTCOMES)],
            )
            rows = con.execute(
                f"SELECT i, {outcome_bucket_sql('outcome')} FROM t ORDER BY i"
            ).fetchall()
        finally:
            con.close()
        assert [bucket for _, bucket in rows] == [normalize_outcome(r) for r in RAW_OUTCOMES]


class TestNormalizeRunStatus:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("failed", "error"),
            ("ERROR", "error"),
            ("running", "running"),
            ("in_progress", "running"),
            ("active", "running"),
            ("completed_with_warnings", "warning"),
            ("completed", "idle"),
            (None, "idle"),
        ],
    )
    def test_buckets(self, raw: str | None, expected: str) -> None:
        assert normalize_run_status(raw) == expected


@pytest.mark.parametrize("raw", ["not upheld", "partially upheld", "not settled", "settled", "upheld"])
def test_casing_and_separators_do_not_matter(raw: str) -> None:
    expected = normalize_outcome(raw)
    for variant in (raw.upper(), raw.title(), raw.replace(" ", "_"), f"  {raw}  "):
        assert normalize_outcome(variant) == expected


def test_non_breaking_space_lands_in_same_bucket_in_sql() -> None:
    raw = "Not\u00a0upheld"
    con = duckdb.connect(":memory:")
    try:
        con.execute("CREATE TABLE t (outcome VARCHAR)")
        con.execute("INSERT INTO t VALUES (?)", [raw])
        got = con.execute(f"SELECT {outcome_bucket_sql('outcome')} FROM t").fetchone()
    finally:
        con.close()
    assert normalize_outcome(raw) == "not_upheld"
    assert got == ("not_upheld",)
