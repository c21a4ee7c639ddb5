"""Heading-based segmentation of ombudsman decision text.

Decisions follow a loose narrative convention: the complaint is described,
the firm's position follows, the ombudsman gives reasons, and a final
decision closes the document. Each section is located by the *earliest*
occurrence of any of its start markers and ends at the earliest occurrence of
any marker belonging to a later section.

Segmentation is best effort. A section whose heading never appears is
``None``; there is no semantic recovery.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final, Literal

SECTION_MAX_CHARS: Final[int] = 7000
FINAL_SENTENCE_MAX_CHARS: Final[int] = 500

COMPLAINT_MARKERS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bthe complaint\b", re.IGNORECASE),
    re.compile(r"\bbackground to the complaint\b", re.IGNORECASE),
    re.compile(r"\bwhat happened\b", re.IGNORECASE),
    re.compile(r"\bmy understanding\b", re.IGNORECASE),
)

FIRM_RESPONSE_MARKERS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bwhat (the )?(business|firm) says\b", re.IGNORECASE),
    re.compile(r"\bthe (business|firm) says\b", re.IGNORECASE),
    re.compile(r"\bthe insurer says\b", re.IGNORECASE),
    re.compile(r"\bthe lender says\b", re.IGNORECASE),
    re.compile(r"\bour investigator thought\b", re.IGNORECASE),
)

REASONING_MARKERS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bwhat i[' ]?ve decided\b", re.IGNORECASE),
    re.compile(r"\bwhat i have decided\b", re.IGNORECASE),
    re.compile(r"\bmy findings\b", re.IGNORECASE),
    re.compile(r"\bmy decision\b", re.IGNORECASE),
    re.compile(r"\breasons for decision\b", re.IGNORECASE),
    re.compile(r"\bwhat i think\b", re.IGNORECASE),
)

FINAL_DECISION_MARKERS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bmy final decision\b", re.IGNORECASE),
    re.compile(r"\bfinal decision\b", re.IGNORECASE),
)

_FINAL_SENTENCE_RE = re.compile(
    r"\b(i (do not|don't|partly|partially|fully)?\s*uphold[^.?!]{0,220}[.?!])",
    re.IGNORECASE,
)

# A heading hit shorter than this is usually a stray phrase rather than a
# section body.
STRONG_SECTION_MIN_CHARS: Final[int] = 120

SectionName = Literal["complaint", "firm_response", "ombudsman_reasoning", "final_decision"]
Extraction = Literal["heading", "sentence", "none"]

SECTION_NAMES: Final[tuple[SectionName, ...]] = (
    "complaint",
    "firm_response",
    "ombudsman_reasoning",
    "final_decision",
)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def clean_decision_text(value: object) -> str:
    """Strip NUL bytes, normalise line endings to LF and trim."""
    if value is None:
        return ""
    return str(value).replace("\x00", "").replace("\r\n", "\n").replace("\r", "\n").strip()


def trim_text(value: object, max_chars: int) -> str | None:
    """Trim *value*; truncate to *max_chars* with a trailing ``...``.

    Returns ``None`` for empty input.
    """
    text = clean_decision_text(value)
    if not text:
        return None
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)].rstrip() + "..."


def find_marker_index(
    text: str,
    markers: tuple[re.Pattern[str], ...],
    start_at: int = 0,
) -> int | None:
    """Earliest match position of any marker at or after *start_at*."""
    best: int | None = None
    for marker in markers:
        match = marker.search(text, start_at)
        if match is not None and (best is None or match.start() < best):
            best = match.start()
    return best


def extract_section(
    text: str,
    start_markers: tuple[re.Pattern[str], ...],
    end_marker_groups: tuple[tuple[re.Pattern[str], ...], ...] = (),
    *,
    max_chars: int = SECTION_MAX_CHARS,
) -> str | None:
    """Extract the span from the earliest start marker to the earliest end marker.

    End markers are searched from one character after the start so a section
    never terminates on its own heading. Without an end marker the section
    runs to the end of the text.
    """
    if not text:
        return None
    start = find_marker_index(text, start_markers)
    if start is None:
        return None
    end = len(text)
    for group in end_marker_groups:
        candidate = find_marker_index(text, group, start + 1)
        if candidate is not None and candidate < end:
            end = candidate
    return trim_text(text[start:end], max_chars)


def extract_final_decision_sentence(text: str) -> str | None:
    """Find a single "I (do not) uphold ..." sentence anywhere in *text*."""
    if not text:
        return None
    match = _FINAL_SENTENCE_RE.search(text)
    if match is None:
        return None
    return trim_text(match.group(1), FINAL_SENTENCE_MAX_CHARS)


# ---------------------------------------------------------------------------
# Whole-document segmentation
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class SegmentedSection:
    text: str | None
    extraction: Extraction

    @property
    def strong(self) -> bool:
        return (
            self.extraction == "heading"
            and self.text is not None
            and len(self.text) >= STRONG_SECTION_MIN_CHARS
        )


@dataclass(frozen=True, slots=True)
class SegmentedDecision:
    complaint: SegmentedSection
    firm_response: SegmentedSection
    ombudsman_reasoning: SegmentedSection
    final_decision: SegmentedSection

    def get(self, name: SectionName) -> SegmentedSection:
        return getattr(self, name)


def _section(text: str | None, extraction: Extraction) -> SegmentedSection:
    if text is None:
        return SegmentedSection(text=None, extraction="none")
    return SegmentedSection(text=text, extraction=extraction)


def segment_decision(full_text: object) -> SegmentedDecision:
    """Split a decision into its four canonical sections."""
    text = clean_decision_text(full_text)
    complaint = extract_section(
        text,
        COMPLAINT_MARKERS,
        (FIRM_RESPONSE_MARKERS, REASONING_MARKERS, FINAL_DECISION_MARKERS),
    )
    firm_response = extract_section(
        text,
        FIRM_RESPONSE_MARKERS,
        (REASONING_MARKERS, FINAL_DECISION_MARKERS),
    )
    reasoning = extract_section(text, REASONING_MARKERS, (FINAL_DECISION_MARKERS,))

    final = extract_section(text, FINAL_DECISION_MARKERS)
    if final is not None:
        final_section = _section(final, "heading")
    else:
        final_section = _section(extract_final_decision_sentence(text), "sentence")

    return SegmentedDecision(
        complaint=_section(complaint, "heading"),
        firm_response=_section(firm_response, "heading"),
        ombudsman_reasoning=_section(reasoning, "heading"),
        final_decision=final_section,
    )
