"""Tests for fos_analytics.enrichment."""
from __future__ import annotations

import orjson
import pytest
from conftest import decision_row

from fos_analytics import enrichment
from fos_analytics.enrichment import (
    MISSING_CONFIDENCE,
    STORED_CONFIDENCE,
    STRONG_INFERENCE_CONFIDENCE,
    WEAK_INFERENCE_CONFIDENCE,
    enrich_decision,
    enrichment_changes,
    run_backfill,
)

FILLER = "The ombudsman looked at all the evidence provided by both parties. " * 3

FULL_TEXT = (
    f"The complaint\nMrs C says the lender's affordability checks were inadequate. {FILLER}\n"
    f"What the lender says\nThe lender says its checks were proportionate. {FILLER}\n"
    f"My findings\nThe lending was irresponsible given her arrears under CONC. {FILLER}\n"
    "My final decision\nI uphold this complaint."
)


class TestEnrichDecision:
    def test_infers_sections_logic_and_tags(self) -> None:
        enriched = enrich_decision({"full_text": FULL_TEXT})
        assert enriched.complaint_text is not None
        assert enriched.complaint_text.startswith("The complaint")
        assert enriched.section_sources["complaint"] == "inferred"
        assert enriched.section_confidence["complaint"] == STRONG_INFERENCE_CONFIDENCE
        assert enriched.section_confidence["final_decision"] == WEAK_INFERENCE_CONFIDENCE
        assert enriched.decision_logic is not None
        assert enriched.decision_logic.startswith("My findings")
        assert "CONC" in enriched.precedents
        assert "Affordability assessment failure" in enriched.root_cause_tags
        assert "Financial hardship" in enriched.vulnerability_flags

    def test_stored_values_win(self) -> None:
        record = {
            "full_text": FULL_TEXT,
            "complaint_text": "Stored complaint.",
            "decision_summary": "Stored summary. Second. Third.",
            "precedents": '["DISP"]',
        }
        enriched = enrich_decision(record)
        assert enriched.complaint_text == "Stored complaint."
        assert enriched.section_sources["complaint"] == "stored"
        assert enriched.section_confidence["complaint"] == STORED_CONFIDENCE
        assert enriched.decision_logic == "Stored summary. Second."
        assert enriched.precedents == ("DISP",)

    def test_nothing_to_infer(self) -> None:
        enriched = enrich_decision({})
        assert set(enriched.section_sources.values()) == {"missing"}
        assert set(enriched.section_confidence.values()) == {MISSING_CONFIDENCE}
        assert enriched.decision_logic is None
        assert enriched.precedents == ()


class TestEnrichmentChanges:
    def test_only_empty_fields_change(self) -> None:
        record = {"full_text": FULL_TEXT, "precedents": '["DISP"]', "complaint_text": "Kept."}
        changes = enrichment_changes(record, enrich_decision(record))
        assert changes is not None
        assert "complaint_text" not in changes
        assert "precedents" not in changes
        assert "ombudsman_reasoning_text" in changes
        assert "root_cause_tags" in changes

    def test_none_when_nothing_changes(self) -> None:
        assert enrichment_changes({}, enrich_decision({})) is None


def _fetch(store, reference: str) -> dict:
    with store.cursor() as cur:
        row = cur.fetch_one(
            "SELECT * FROM fos_decisions WHERE decision_reference = ?", [reference]
        )
    assert row is not None
    return row


class TestRunBackfill:
    def test_fills_without_overwriting(self, make_store) -> None:
        store = make_store([
            decision_row("DRN-1", full_text=FULL_TEXT, complaint_text="Stored complaint."),
            decision_row("DRN-2", full_text="Nothing useful here."),
        ])
        batches: list[int] = []
        stats = run_backfill(store, batch_size=1, on_batch=lambda s: batches.append(s.scanned))

        assert stats.scanned == 2
        assert stats.updated == 1
        assert stats.unchanged == 1
        assert stats.failed == 0
        assert batches == [1, 2]

        row = _fetch(store, "DRN-1")
        assert row["complaint_text"] == "Stored complaint."
        assert row["ombudsman_reasoning_text"].startswith("My findings")
        assert "CONC" in orjson.loads(row["precedents"])

        # a second run finds nothing new to write
        again = run_backfill(store)
        assert again.updated == 0

    def test_dry_run_writes_nothing(self, make_store) -> None:
        store = make_store([decision_row("DRN-1", full_text=FULL_TEXT)])
        stats = run_backfill(store, dry_run=True)
        assert stats.updated == 1
        assert _fetch(store, "DRN-1")["complaint_text"] is None

    def test_limit(self, make_store) -> None:
        store = make_store([
            decision_row(f"DRN-{i}", full_text=FULL_TEXT) for i in range(5)
        ])
        stats = run_backfill(store, batch_size=2, limit=3)
        assert stats.scanned == 3
        assert stats.updated == 3

    def test_failures_are_counted_not_fatal(self, make_store, monkeypatch) -> None:
        store = make_store([
            decision_row("DRN-1", full_text=FULL_TEXT),
            decision_row("DRN-2", full_text="boom " + FULL_TEXT),
        ])
        real = enrichment.enrich_decision

        def flaky(record):
            if str(record.get("full_text", "")).startswith("boom"):
                raise ValueError("unparseable")
            return real(record)

        monkeypatch.setattr(enrichment, "enrich_decision", flaky)
        stats = run_backfill(store)
        assert stats.failed == 1
        assert stats.updated == 1
        assert len(stats.failure_samples) == 1
        assert "unparseable" in stats.failure_samples[0]


@pytest.mark.parametrize("batch_size", [1, 250])
def test_resume_after_id(make_store, batch_size: int) -> None:
    store = make_store([decision_row(f"DRN-{i}", full_text=FULL_TEXT) for i in range(3)])
    first = run_backfill(store, batch_size=batch_size, limit=1, dry_run=True)
    rest = run_backfill(store, batch_size=batch_size, after_id=first.last_id, dry_run=True)
    assert first.scanned + rest.scanned == 3


def test_enrichment_is_idempotent_and_does_not_mutate() -> None:
    record = {"full_text": FULL_TEXT, "precedents": None}
    snapshot = dict(record)
    first = enrich_decision(record)
    assert record == snapshot

    enriched_record = {
        "full_text": FULL_TEXT,
        "complaint_text": first.complaint_text,
        "firm_response_text": first.firm_response_text,
        "ombudsman_reasoning_text": first.ombudsman_reasoning_text,
        "final_decision_text": first.final_decision_text,
        "decision_logic": first.decision_logic,
        "precedents": list(first.precedents),
        "root_cause_tags": list(first.root_cause_tags),
        "vulnerability_flags": list(first.vulnerability_flags),
    }
    second = enrich_decision(enriched_record)
    assert second.precedents == first.precedents
    assert second.root_cause_tags == first.root_cause_tags
    assert second.decision_logic == first.decision_logic
    assert enrichment_changes(enriched_record, second) is None
