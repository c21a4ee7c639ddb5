"""Canonical outcome buckets for ombudsman decisions.

One ordered substring rule list drives both the Python normalizer and the
SQL ``CASE`` expression used by the query layer, so a stored outcome is
bucketed identically whether it is classified at import time or re-derived
inside an aggregate.

More specific phrasings must be tested before their substrings: "not upheld"
contains "upheld", "not settled" contains "settled".
"""
from __future__ import annotations

import re
from typing import Final, Literal

Outcome = Literal[
    "upheld",
    "not_upheld",
    "partially_upheld",
    "settled",
    "not_settled",
    "unknown",
]

SUPPORTED_OUTCOMES: Final[tuple[Outcome, ...]] = (
    "upheld",
    "not_upheld",
    "partially_upheld",
    "settled",
    "not_settled",
    "unknown",
)

# (needles, bucket) in evaluation order. Needles are lower-case with runs of
# whitespace/underscores folded to a single space.
OUTCOME_RULES: Final[tuple[tuple[tuple[str, ...], Outcome], ...]] = (
    (("not upheld", "did not uphold"), "not_upheld"),
    (("partially upheld", "partly upheld"), "partially_upheld"),
    (("not settled",), "not_settled"),
    (("settled",), "settled"),
    (("upheld",), "upheld"),
)

# Separators folded to one space. Listed explicitly so Python ``re`` and
# DuckDB (RE2, ASCII-only ``\s``) fold the same characters.
FOLD_CHARS: Final[str] = "\t\n\v\f\r \u00a0\u2007\u202f_"

_FOLD_RE = re.compile("[" + re.escape(FOLD_CHARS) + "]+")
_FOLD_SQL_CLASS = "[" + "".join(f"\\x{{{ord(c):04X}}}" for c in FOLD_CHARS) + "]+"


def _fold(value: str) -> str:
    return _FOLD_RE.sub(" ", value.strip().lower())


def normalize_outcome(value: object) -> Outcome:
    """Map free-text outcome wording onto the canonical bucket set.

    Total: ``None``, blanks and unrecognised text all land in ``unknown``.
    """
    if value is None:
        return "unknown"
    folded = _fold(str(value))
    if not folded:
        return "unknown"
    for needles, bucket in OUTCOME_RULES:
        if any(needle in folded for needle in needles):
            return bucket
    return "unknown"


def outcome_bucket_sql(column: str) -> str:
    """Render the outcome rules as a DuckDB ``CASE`` over *column*.

    *column* is a trusted SQL expression (e.g. ``"d.outcome"``); the needles
    are module constants, so no parameters are needed.
    """
    folded = f"regexp_replace(lower(trim({column})), '{_FOLD_SQL_CLASS}', ' ', 'g')"
    lines = [
        "CASE",
        f"  WHEN {column} IS NULL OR trim({column}) = '' THEN 'unknown'",
    ]
    for needles, bucket in OUTCOME_RULES:
        test = " OR ".join(f"{folded} LIKE '%{needle}%'" for needle in needles)
        lines.append(f"  WHEN {test} THEN '{bucket}'")
    lines.append("  ELSE 'unknown'")
    lines.append("END")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Ingestion run status
# ---------------------------------------------------------------------------

RunStatus = Literal["running", "idle", "warning", "error"]


def normalize_run_status(value: object) -> RunStatus:
    """Bucket a run-log status string; anything unrecognised is ``idle``."""
    text = str(value or "").strip().lower()
    if "fail" in text or "error" in text:
        return "error"
    if "run" in text or "progress" in text or "active" in text:
        return "running"
    if "warn" in text:
        return "warning"
    return "idle"
