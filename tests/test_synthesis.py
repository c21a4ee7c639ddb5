"""Tests for fos_analytics.synthesis."""
from __future__ import annotations

from fos_analytics.synthesis import split_sentences, synthesize_decision_logic


def test_split_sentences_keeps_terminators() -> None:
    assert split_sentences("One. Two? Three") == ["One.", "Two?", "Three"]


def test_first_two_sentences_of_first_candidate() -> None:
    logic = synthesize_decision_logic(
        None,
        "   ",
        "The bank  erred.\nIt must refund. Interest applies.",
        "Ignored complaint text.",
    )
    assert logic == "The bank erred. It must refund."


def test_truncated_to_limit() -> None:
    logic = synthesize_decision_logic("word " * 200 + ".")
    assert logic is not None
    assert len(logic) == 420
    assert logic.endswith("...")


def test_none_when_all_blank() -> None:
    assert synthesize_decision_logic(None, "", "  ") is None
