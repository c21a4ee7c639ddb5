"""Tests for fos_analytics.identity."""
from __future__ import annotations

import hashlib
from datetime import date

import duckdb

from fos_analytics.identity import case_id_sql, case_lookup_sql, resolve_case_id


class TestResolveCaseId:
    def test_reference_first(self) -> None:
        assert resolve_case_id(decision_reference="DRN-1", pdf_sha256="abc") == "DRN-1"

    def test_checksum_second(self) -> None:
        assert resolve_case_id(decision_reference="", pdf_sha256="abc") == "abc"

    def test_hash_of_locators(self) -> None:
        expected = hashlib.md5(b"http://pdf||Acme|2022-03-14").hexdigest()  # noqa: S324
        got = resolve_case_id(
            decision_reference=None,
            pdf_sha256=None,
            pdf_url="http://pdf",
            business_name="Acme",
            decision_date=date(2022, 3, 14),
        )
        assert got == expected


class TestCaseIdSql:
    def _con(self) -> duckdb.DuckDBPyConnection:
        con = duckdb.connect(":memory:")
        con.execute(
            """
            CREATE TABLE d (
                decision_reference VARCHAR,
                pdf_sha256 VARCHAR,
                pdf_url VARCHAR,
                source_url VARCHAR,
                business_name VARCHAR,
                decision_date DATE
            )
            """
        )
        con.executemany(
            "INSERT INTO d VALUES (?, ?, ?, ?, ?, ?)",
            [
                ["DRN-1", "abc", None, None, None, None],
                ["", "abc", None, None, None, None],
                [None, None, "http://pdf", None, "Acme", date(2022, 3, 14)],
                [None, None, None, None, None, None],
            ],
        )
        return con

    def test_sql_matches_python(self) -> None:
        con = self._con()
        try:
            rows = con.execute(
                f"SELECT {case_id_sql('d')}, * FROM d"
            ).fetchall()
        finally:
            con.close()
        for case_id, reference, sha, pdf_url, source_url, firm, decided in rows:
            assert case_id == resolve_case_id(
                decision_reference=reference,
                pdf_sha256=sha,
                pdf_url=pdf_url,
                source_url=source_url,
                business_name=firm,
                decision_date=decided,
            )

    def test_lookup_by_checksum(self) -> None:
        con = self._con()
        try:
            count = con.execute(
                f"SELECT COUNT(*) FROM d WHERE {case_lookup_sql('d')}",
                ["abc", "abc", "abc"],
            ).fetchone()[0]
        finally:
            con.close()
        assert count == 2


def test_deterministic() -> None:
    kwargs = {
        "decision_reference": None,
        "pdf_sha256": None,
        "source_url": "http://case",
        "decision_date": "2021-07-01",
    }
    assert resolve_case_id(**kwargs) == resolve_case_id(**kwargs)
