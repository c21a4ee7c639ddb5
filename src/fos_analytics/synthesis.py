"""Short "decision logic" rationale synthesised from existing text fields."""
from __future__ import annotations

import re
from typing import Final

from fos_analytics.sections import trim_text

DECISION_LOGIC_MAX_CHARS: Final[int] = 420
DECISION_LOGIC_SENTENCES: Final[int] = 2

_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_RE = re.compile(r"[^.?!]+[.?!]?")


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, keeping the terminator."""
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def synthesize_decision_logic(*candidates: str | None) -> str | None:
    """First two sentences of the first non-blank candidate, truncated.

    Candidates are given in priority order (summary, reasoning, final
    decision, complaint).
    """
    for candidate in candidates:
        if not candidate:
            continue
        collapsed = _WHITESPACE_RE.sub(" ", candidate).strip()
        if not collapsed:
            continue
        sentences = split_sentences(collapsed)
        joined = " ".join(sentences[:DECISION_LOGIC_SENTENCES]) if sentences else collapsed
        return trim_text(joined, DECISION_LOGIC_MAX_CHARS)
    return None
