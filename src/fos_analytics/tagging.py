"""Rule-based tag detection for decisions.

Three fixed rule sets (regulatory precedents, complaint root causes and
consumer vulnerability indicators) are matched against a concatenation of a
decision's structured fields and the head of its full text. Tag lists are
order-independent and deduplicated case-insensitively.

Stored, non-empty tag lists are authoritative: detection only fills lists
that are empty.
"""
from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Final

TAG_SOURCE_FULL_TEXT_CHARS: Final[int] = 12000


@dataclass(frozen=True, slots=True)
class TagRule:
    """A label emitted when *pattern* matches anywhere in the tag source."""

    label: str
    pattern: re.Pattern[str]


def _rule(label: str, pattern: str) -> TagRule:
    return TagRule(label=label, pattern=re.compile(pattern, re.IGNORECASE))


PRECEDENT_RULES: Final[tuple[TagRule, ...]] = (
    _rule("DISP", r"\bDISP\b"),
    _rule("PRIN", r"\bPRIN\b"),
    _rule("ICOBS", r"\bICOBS\b"),
    _rule("COBS", r"\bCOBS\b"),
    _rule("MCOB", r"\bMCOB\b"),
    _rule("CONC", r"\bCONC\b"),
    _rule("SYSC", r"\bSYSC\b"),
    _rule("FCA Principles", r"\bFCA principles?\b"),
    _rule("FSMA", r"\bFSMA\b|\bFinancial Services and Markets Act\b"),
    _rule("Consumer Credit Act 1974", r"\bConsumer Credit Act\b|\bCCA\b"),
    _rule("Section 75 CCA", r"\bsection\s*75\b"),
    _rule("Section 140A CCA", r"\bsection\s*140a\b"),
    _rule("Insurance Act 2015", r"\bInsurance Act 2015\b"),
)

ROOT_CAUSE_RULES: Final[tuple[TagRule, ...]] = (
    _rule(
        "Communication failure",
        r"\b(poor|unclear|misleading)\s+communication\b|\bfailed to explain\b|\bnot (told|informed)\b",
    ),
    _rule(
        "Delay in claim handling",
        r"\b(delay|delayed|late|timescale|waiting time|took too long)\b",
    ),
    _rule(
        "Policy wording ambiguity",
        r"\b(policy wording|ambiguous|unclear term|small print|exclusion clause)\b",
    ),
    _rule(
        "Affordability assessment failure",
        r"\b(affordability|unaffordable|creditworthiness|irresponsible lending)\b",
    ),
    _rule(
        "Administrative error",
        r"\b(administrative|clerical|processing|data entry|system)\s+error\b",
    ),
    _rule("Fraud or scam concern", r"\b(fraud|scam|authorised push payment|app fraud)\b"),
    _rule(
        "Non-disclosure or misrepresentation",
        r"\b(non[- ]?disclosure|misrepresentation|failed to disclose)\b",
    ),
)

VULNERABILITY_RULES: Final[tuple[TagRule, ...]] = (
    _rule("Bereavement", r"\b(bereave|bereavement|late husband|late wife|widow|widower)\b"),
    _rule("Mental health", r"\b(mental health|depression|anxiety|stress)\b"),
    _rule("Physical health", r"\b(illness|disability|long[- ]term condition|hospital)\b"),
    _rule(
        "Financial hardship",
        r"\b(financial hardship|hardship|arrears|debt|struggling financially)\b",
    ),
    _rule("Domestic abuse", r"\b(domestic abuse|coercive control|financial abuse)\b"),
    _rule("Unemployment", r"\b(unemploy|redundan)"),
    _rule(
        "Language barrier",
        r"\b(language barrier|english is not (my|their) first language|interpreter)\b",
    ),
)

# Display casing for labels that come back lower-cased from aggregates.
_LABEL_DISPLAY: Final[dict[str, str]] = {
    rule.label.lower(): rule.label
    for rule in (*PRECEDENT_RULES, *ROOT_CAUSE_RULES, *VULNERABILITY_RULES)
}


# ---------------------------------------------------------------------------
# List decoding / normalisation
# ---------------------------------------------------------------------------

def normalize_string_list(values: Iterable[Any]) -> list[str]:
    """Trim, drop blanks and deduplicate case-insensitively (first casing wins)."""
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if not text:
            continue
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(text)
    return out


def parse_string_array(value: Any) -> list[str]:
    """Decode a stored tag list.

    Accepts a list/tuple, a JSON array string, a comma-separated string or a
    mapping (its values). Anything else, including malformed JSON that is not
    comma-separated text, decodes to ``[]``. Never raises.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return normalize_string_list(value)
    if isinstance(value, dict):
        return normalize_string_list(value.values())
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        return []
    raw = value.strip()
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        if raw.startswith(("[", "{")):
            return []
        return normalize_string_list(raw.split(","))
    if isinstance(decoded, list):
        return normalize_string_list(decoded)
    if isinstance(decoded, dict):
        return normalize_string_list(decoded.values())
    if isinstance(decoded, str):
        return normalize_string_list(decoded.split(","))
    return []


def normalize_tag_label(value: str) -> str:
    """Restore rule casing for a known tag; title-case unknown ones."""
    key = value.strip().lower()
    if key in _LABEL_DISPLAY:
        return _LABEL_DISPLAY[key]
    return " ".join(word[:1].upper() + word[1:] for word in key.split())


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------

def build_tag_source(
    *,
    decision_logic: str | None = None,
    decision_summary: str | None = None,
    complaint: str | None = None,
    firm_response: str | None = None,
    reasoning: str | None = None,
    final_decision: str | None = None,
    full_text: str | None = None,
) -> str:
    """Concatenate the fields tag rules are matched against."""
    head = (full_text or "")[:TAG_SOURCE_FULL_TEXT_CHARS]
    parts = (
        decision_logic,
        decision_summary,
        complaint,
        firm_response,
        reasoning,
        final_decision,
        head,
    )
    return "\n".join(part for part in parts if part and part.strip())


def detect_tags(source: str, rules: tuple[TagRule, ...]) -> list[str]:
    """Labels of every rule matching *source*, in rule order."""
    if not source:
        return []
    return normalize_string_list(rule.label for rule in rules if rule.pattern.search(source))


def resolve_tags(stored: Any, source: str, rules: tuple[TagRule, ...]) -> list[str]:
    """Keep a non-empty stored list; otherwise detect from *source*."""
    existing = parse_string_array(stored)
    if existing:
        return existing
    return detect_tags(source, rules)
