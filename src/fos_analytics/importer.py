"""Import of parser output (one JSON file per decision) into the store.

The parser emits records with loosely named fields. Mapping is tolerant:
text is cleaned, dates accept a handful of layouts, the outcome is bucketed
at write time, and the file stem stands in for a missing decision reference.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Final

import orjson

from fos_analytics.io_utils import load_json
from fos_analytics.outcomes import normalize_outcome
from fos_analytics.store import DecisionStore
from fos_analytics.tagging import normalize_string_list

log = logging.getLogger(__name__)

DEFAULT_IMPORT_BATCH_SIZE: Final[int] = 200

_DATE_FORMATS: Final[tuple[str, ...]] = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
)


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).replace("\x00", "").strip()
    return text or None


def parse_decision_date(value: Any) -> date | None:
    """Best-effort date parsing; unparseable input is ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _tag_json(value: Any) -> str:
    values = normalize_string_list(value) if isinstance(value, list) else []
    return orjson.dumps(values).decode()


def row_from_parsed_record(
    record: Mapping[str, Any],
    file_name: str,
    *,
    include_full_text: bool = False,
) -> dict[str, Any]:
    """Map one parser record onto ``fos_decisions`` columns."""
    sections = record.get("sections") or {}
    if not isinstance(sections, Mapping):
        sections = {}
    summary = _clean(record.get("decision_logic")) or _clean(record.get("snippet"))
    return {
        "decision_reference": _clean(record.get("decision_reference")) or Path(file_name).stem,
        "decision_date": parse_decision_date(
            record.get("decision_date")
            or record.get("decisionDate")
            or record.get("decision_date_raw")
        ),
        "business_name": _clean(record.get("business_name")),
        "product_sector": _clean(record.get("product_sector")),
        "outcome": normalize_outcome(record.get("outcome") or record.get("outcome_raw")),
        "ombudsman_name": _clean(record.get("ombudsman_name")),
        "source_url": _clean(record.get("source_url")),
        "pdf_url": _clean(record.get("pdf_url")),
        "pdf_sha256": _clean(record.get("pdf_sha256")),
        "full_text": _clean(record.get("full_text")) if include_full_text else None,
        "complaint_text": _clean(sections.get("complaint")),
        "firm_response_text": _clean(sections.get("firm_response")),
        "ombudsman_reasoning_text": _clean(sections.get("ombudsman_reasoning")),
        "final_decision_text": _clean(sections.get("final_decision")),
        "decision_summary": summary,
        "decision_logic": summary,
        "precedents": _tag_json(record.get("precedents")),
        "root_cause_tags": _tag_json(record.get("root_cause_tags")),
        "vulnerability_flags": _tag_json(record.get("vulnerability_flags")),
    }


def iter_parsed_files(source_dir: Path) -> list[Path]:
    """Parser output files in a stable (name) order."""
    return sorted(p for p in source_dir.glob("*.json") if p.is_file())


@dataclass(slots=True)
class ImportStats:
    files: int = 0
    imported: int = 0
    skipped: int = 0
    next_index: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "files": self.files,
            "imported": self.imported,
            "skipped": self.skipped,
            "next_index": self.next_index,
        }


def _load_rows(
    paths: list[Path],
    stats: ImportStats,
    include_full_text: bool,
) -> Iterator[dict[str, Any]]:
    for path in paths:
        try:
            record = load_json(path)
        except (OSError, orjson.JSONDecodeError) as exc:
            stats.skipped += 1
            stats.errors.append(f"{path.name}: {exc}")
            log.warning("Skipping unreadable file %s: %s", path.name, exc)
            continue
        if not isinstance(record, Mapping):
            stats.skipped += 1
            stats.errors.append(f"{path.name}: not a JSON object")
            continue
        yield row_from_parsed_record(record, path.name, include_full_text=include_full_text)


def import_parsed_directory(
    store: DecisionStore,
    source_dir: Path,
    *,
    batch_size: int = DEFAULT_IMPORT_BATCH_SIZE,
    start_index: int = 0,
    limit: int | None = None,
    include_full_text: bool = False,
    on_batch: Callable[[ImportStats], None] | None = None,
) -> ImportStats:
    """Upsert parser output files in batches, resumable by file index."""
    files = iter_parsed_files(source_dir)
    end = len(files) if limit is None else min(len(files), start_index + limit)
    stats = ImportStats(files=len(files), next_index=start_index)
    size = max(1, batch_size)
    for batch_start in range(start_index, end, size):
        batch_paths = files[batch_start:min(end, batch_start + size)]
        by_reference: dict[str, dict[str, Any]] = {}
        for row in _load_rows(batch_paths, stats, include_full_text):
            by_reference[row["decision_reference"]] = row
        stats.imported += store.upsert_decisions(list(by_reference.values()))
        stats.next_index = batch_start + len(batch_paths)
        if on_batch is not None:
            on_batch(stats)
    return stats
