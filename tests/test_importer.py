"""Tests for fos_analytics.importer."""
from __future__ import annotations

from datetime import date
from pathlib import Path

import orjson

from fos_analytics.importer import (
    import_parsed_directory,
    parse_decision_date,
    row_from_parsed_record,
)


def _write(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(payload))


class TestParseDecisionDate:
    def test_formats(self) -> None:
        assert parse_decision_date("2023-04-05") == date(2023, 4, 5)
        assert parse_decision_date("2023-04-05T10:00:00Z") == date(2023, 4, 5)
        assert parse_decision_date("05/04/2023") == date(2023, 4, 5)
        assert parse_decision_date("5 April 2023") == date(2023, 4, 5)
        assert parse_decision_date("not a date") is None
        assert parse_decision_date(None) is None


class TestRowFromParsedRecord:
    def test_mapping(self) -> None:
        row = row_from_parsed_record(
            {
                "decision_date": "2023-04-05",
                "business_name": "  Acme Bank ",
                "outcome": "Partly upheld",
                "sections": {"complaint": "Complaint text.", "final_decision": ""},
                "snippet": "Short snippet.",
                "precedents": ["DISP", "disp", " "],
                "full_text": "Full text.",
            },
            "DRN-42.json",
        )
        assert row["decision_reference"] == "DRN-42"
        assert row["decision_date"] == date(2023, 4, 5)
        assert row["business_name"] == "Acme Bank"
        assert row["outcome"] == "partially_upheld"
        assert row["complaint_text"] == "Complaint text."
        assert row["final_decision_text"] is None
        assert row["decision_summary"] == "Short snippet."
        assert row["precedents"] == '["DISP"]'
        assert row["root_cause_tags"] == "[]"
        assert row["full_text"] is None

    def test_full_text_opt_in(self) -> None:
        row = row_from_parsed_record({"full_text": "Body\x00"}, "x.json", include_full_text=True)
        assert row["full_text"] == "Body"


class TestImportParsedDirectory:
    def test_batches_upsert_and_skip_bad_files(self, make_store, tmp_path: Path) -> None:
        source = tmp_path / "parsed"
        _write(source / "a.json", {"decision_reference": "DRN-1", "outcome": "Upheld"})
        _write(source / "b.json", {"decision_reference": "DRN-2", "outcome": "Not upheld"})
        _write(source / "c.json", ["not", "an", "object"])
        (source / "d.json").write_text("{broken")
        _write(source / "e.json", {"decision_reference": "DRN-1", "outcome": "Settled"})

        store = make_store()
        seen: list[int] = []
        stats = import_parsed_directory(
            store, source, batch_size=2, on_batch=lambda s: seen.append(s.next_index)
        )

        assert stats.files == 5
        assert stats.skipped == 2
        assert stats.next_index == 5
        assert seen == [2, 4, 5]
        with store.cursor() as cur:
            rows = cur.fetch_all(
                "SELECT decision_reference, outcome FROM fos_decisions ORDER BY 1"
            )
        # the later file wins for a repeated reference
        assert rows == [
            {"decision_reference": "DRN-1", "outcome": "settled"},
            {"decision_reference": "DRN-2", "outcome": "not_upheld"},
        ]

    def test_resume_from_index(self, make_store, tmp_path: Path) -> None:
        source = tmp_path / "parsed"
        for i in range(4):
            _write(source / f"{i}.json", {"decision_reference": f"DRN-{i}"})
        store = make_store()
        stats = import_parsed_directory(store, source, start_index=2, limit=1)
        assert stats.imported == 1
        assert stats.next_index == 3
        with store.cursor() as cur:
            assert cur.fetch_scalar("SELECT decision_reference FROM fos_decisions") == "DRN-2"

    def test_reimport_updates_existing_rows(self, make_store, tmp_path: Path) -> None:
        source = tmp_path / "parsed"
        _write(source / "a.json", {"decision_reference": "DRN-7", "outcome": "Upheld"})
        store = make_store()
        assert import_parsed_directory(store, source).imported == 1

        _write(source / "a.json", {"decision_reference": "DRN-7", "outcome": "Not upheld"})
        second = import_parsed_directory(store, source)
        assert second.imported == 1
        assert second.skipped == 0
        with store.cursor() as cur:
            row = cur.fetch_one(
                "SELECT COUNT(*) AS n, MAX(outcome) AS outcome, MAX(updated_at) AS touched "
                "FROM fos_decisions"
            )
        assert row is not None
        assert row["n"] == 1
        assert row["outcome"] == "not_upheld"
        assert row["touched"] is not None
