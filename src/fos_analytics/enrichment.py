"""Enrichment of decision records with inferred sections, logic and tags.

:func:`enrich_decision` is pure: it takes a stored record (a mapping of
column → value) and returns every structured field, keeping stored values
where they exist and inferring the rest. :func:`enrichment_changes` reduces
that to the columns that would actually change, and :func:`run_backfill`
applies changes to the store in keyset-paginated batches.

Writes only ever fill empty fields. The UPDATE statement itself re-checks
emptiness, so a value written concurrently by another process is never
overwritten.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final

import orjson

from fos_analytics.expressions import DECISIONS_TABLE, tag_list_sql
from fos_analytics.models import SectionSource
from fos_analytics.sections import (
    SECTION_NAMES,
    SectionName,
    SegmentedDecision,
    clean_decision_text,
    segment_decision,
)
from fos_analytics.store import DecisionStore, DuckDBError
from fos_analytics.synthesis import synthesize_decision_logic
from fos_analytics.tagging import (
    PRECEDENT_RULES,
    ROOT_CAUSE_RULES,
    VULNERABILITY_RULES,
    build_tag_source,
    parse_string_array,
    resolve_tags,
)

log = logging.getLogger(__name__)

STORED_CONFIDENCE: Final[float] = 0.98
STRONG_INFERENCE_CONFIDENCE: Final[float] = 0.78
WEAK_INFERENCE_CONFIDENCE: Final[float] = 0.62
MISSING_CONFIDENCE: Final[float] = 0.0

DEFAULT_BATCH_SIZE: Final[int] = 250
MAX_LOGGED_FAILURES: Final[int] = 5

SECTION_COLUMNS: Final[dict[SectionName, str]] = {
    "complaint": "complaint_text",
    "firm_response": "firm_response_text",
    "ombudsman_reasoning": "ombudsman_reasoning_text",
    "final_decision": "final_decision_text",
}

TEXT_COLUMNS: Final[tuple[str, ...]] = (*SECTION_COLUMNS.values(), "decision_logic")
TAG_LIST_COLUMNS: Final[tuple[str, ...]] = ("precedents", "root_cause_tags", "vulnerability_flags")


# ---------------------------------------------------------------------------
# Per-record enrichment
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class EnrichedDecision:
    complaint_text: str | None
    firm_response_text: str | None
    ombudsman_reasoning_text: str | None
    final_decision_text: str | None
    decision_logic: str | None
    precedents: tuple[str, ...]
    root_cause_tags: tuple[str, ...]
    vulnerability_flags: tuple[str, ...]
    section_sources: dict[str, SectionSource]
    section_confidence: dict[str, float]

    def column_value(self, column: str) -> Any:
        return getattr(self, column)


def _stored_text(record: Mapping[str, Any], column: str) -> str | None:
    return clean_decision_text(record.get(column)) or None


def enrich_decision(record: Mapping[str, Any]) -> EnrichedDecision:
    """All structured fields for *record*, stored values taking precedence."""
    segmented: SegmentedDecision | None = None
    texts: dict[str, str | None] = {}
    sources: dict[str, SectionSource] = {}
    confidence: dict[str, float] = {}

    for name in SECTION_NAMES:
        column = SECTION_COLUMNS[name]
        stored = _stored_text(record, column)
        if stored is not None:
            texts[column] = stored
            sources[name] = "stored"
            confidence[name] = STORED_CONFIDENCE
            continue
        if segmented is None:
            segmented = segment_decision(record.get("full_text"))
        section = segmented.get(name)
        texts[column] = section.text
        if section.text is None:
            sources[name] = "missing"
            confidence[name] = MISSING_CONFIDENCE
        else:
            sources[name] = "inferred"
            confidence[name] = (
                STRONG_INFERENCE_CONFIDENCE if section.strong else WEAK_INFERENCE_CONFIDENCE
            )

    summary = _stored_text(record, "decision_summary")
    decision_logic = _stored_text(record, "decision_logic") or synthesize_decision_logic(
        summary,
        texts["ombudsman_reasoning_text"],
        texts["final_decision_text"],
        texts["complaint_text"],
    )
    source = build_tag_source(
        decision_logic=decision_logic,
        decision_summary=summary,
        complaint=texts["complaint_text"],
        firm_response=texts["firm_response_text"],
        reasoning=texts["ombudsman_reasoning_text"],
        final_decision=texts["final_decision_text"],
        full_text=clean_decision_text(record.get("full_text")),
    )
    return EnrichedDecision(
        complaint_text=texts["complaint_text"],
        firm_response_text=texts["firm_response_text"],
        ombudsman_reasoning_text=texts["ombudsman_reasoning_text"],
        final_decision_text=texts["final_decision_text"],
        decision_logic=decision_logic,
        precedents=tuple(resolve_tags(record.get("precedents"), source, PRECEDENT_RULES)),
        root_cause_tags=tuple(resolve_tags(record.get("root_cause_tags"), source, ROOT_CAUSE_RULES)),
        vulnerability_flags=tuple(
            resolve_tags(record.get("vulnerability_flags"), source, VULNERABILITY_RULES)
        ),
        section_sources=sources,
        section_confidence=confidence,
    )


def enrichment_changes(record: Mapping[str, Any], enriched: EnrichedDecision) -> dict[str, Any] | None:
    """Columns that enrichment would fill, or ``None`` if nothing changes."""
    changes: dict[str, Any] = {}
    for column in TEXT_COLUMNS:
        value = enriched.column_value(column)
        if value and _stored_text(record, column) is None:
            changes[column] = value
    for column in TAG_LIST_COLUMNS:
        values = enriched.column_value(column)
        if values and not parse_string_array(record.get(column)):
            changes[column] = list(values)
    return changes or None


# ---------------------------------------------------------------------------
# Batch backfill
# ---------------------------------------------------------------------------

_EMPTY_TEXT = "NULLIF(trim({col}), '') IS NULL"

CANDIDATE_WHERE_SQL: Final[str] = " OR ".join(
    [_EMPTY_TEXT.format(col=f"d.{c}") for c in TEXT_COLUMNS]
    + [f"len({tag_list_sql(f'd.{c}')}) = 0" for c in TAG_LIST_COLUMNS]
)

_UPDATE_SQL: Final[str] = (
    f"UPDATE {DECISIONS_TABLE} SET "
    + ", ".join(f"{c} = COALESCE(NULLIF(trim({c}), ''), ?)" for c in TEXT_COLUMNS)
    + ", "
    + ", ".join(
        f"{c} = CASE WHEN len({tag_list_sql(c)}) > 0 THEN {c} ELSE CAST(? AS JSON) END"
        for c in TAG_LIST_COLUMNS
    )
    + ", updated_at = current_timestamp WHERE id = CAST(? AS UUID)"
)

_CANDIDATE_COLUMNS: Final[str] = ", ".join(
    f"d.{c}"
    for c in (
        "id",
        "decision_summary",
        "full_text",
        *TEXT_COLUMNS,
        *TAG_LIST_COLUMNS,
    )
)


@dataclass(slots=True)
class BackfillStats:
    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    batches: int = 0
    last_id: str | None = None
    failure_samples: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "batches": self.batches,
            "last_id": self.last_id,
        }


def _record_failure(stats: BackfillStats, record_id: str, exc: Exception) -> None:
    stats.failed += 1
    if len(stats.failure_samples) < MAX_LOGGED_FAILURES:
        message = f"{record_id}: {exc}"
        stats.failure_samples.append(message)
        log.warning("Enrichment failed for %s", message)


def _update_params(record_id: str, enriched: EnrichedDecision) -> list[Any]:
    params: list[Any] = [enriched.column_value(c) for c in TEXT_COLUMNS]
    for column in TAG_LIST_COLUMNS:
        params.append(orjson.dumps(list(enriched.column_value(column))).decode())
    params.append(record_id)
    return params


def fetch_candidates(
    store: DecisionStore,
    *,
    after_id: str | None,
    batch_size: int,
) -> list[dict[str, Any]]:
    """Next batch of records with at least one empty enrichable field."""
    where = f"({CANDIDATE_WHERE_SQL})"
    params: list[Any] = []
    if after_id is not None:
        where += " AND d.id > CAST(? AS UUID)"
        params.append(after_id)
    params.append(batch_size)
    with store.cursor() as cur:
        return cur.fetch_all(
            f"SELECT {_CANDIDATE_COLUMNS} FROM {DECISIONS_TABLE} d "
            f"WHERE {where} ORDER BY d.id LIMIT ?",
            params,
        )


def _write_updates(store: DecisionStore, updates: list[list[Any]], stats: BackfillStats) -> None:
    try:
        store.execute_many(_UPDATE_SQL, updates)
        stats.updated += len(updates)
        return
    except DuckDBError as exc:
        log.warning("Batch write failed (%s); retrying %d rows individually", exc, len(updates))
    for params in updates:
        try:
            store.execute_write(_UPDATE_SQL, params)
        except DuckDBError as exc:
            _record_failure(stats, str(params[-1]), exc)
        else:
            stats.updated += 1


def run_backfill(
    store: DecisionStore,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    limit: int | None = None,
    after_id: str | None = None,
    dry_run: bool = False,
    on_batch: Callable[[BackfillStats], None] | None = None,
) -> BackfillStats:
    """Enrich every candidate record, one keyset-paginated batch at a time.

    A record that fails to enrich is counted and skipped; the batch goes on.
    ``on_batch`` is called after each batch (e.g. to persist a resume point).
    """
    stats = BackfillStats(last_id=after_id)
    size = max(1, batch_size)
    while limit is None or stats.scanned < limit:
        take = size if limit is None else min(size, limit - stats.scanned)
        rows = fetch_candidates(store, after_id=stats.last_id, batch_size=take)
        if not rows:
            break
        updates: list[list[Any]] = []
        for row in rows:
            record_id = str(row["id"])
            stats.scanned += 1
            stats.last_id = record_id
            try:
                enriched = enrich_decision(row)
                changes = enrichment_changes(row, enriched)
            except Exception as exc:  # noqa: BLE001
                _record_failure(stats, record_id, exc)
                continue
            if changes is None:
                stats.unchanged += 1
                continue
            updates.append(_update_params(record_id, enriched))
        if updates:
            if dry_run:
                stats.updated += len(updates)
            else:
                _write_updates(store, updates, stats)
        stats.batches += 1
        if stats.batches % 10 == 0:
            log.info(
                "Backfill progress: scanned=%d updated=%d unchanged=%d failed=%d",
                stats.scanned, stats.updated, stats.unchanged, stats.failed,
            )
        if on_batch is not None:
            on_batch(stats)
        if len(rows) < take:
            break

    if stats.failed > len(stats.failure_samples):
        log.warning(
            "%d further enrichment failures not shown",
            stats.failed - len(stats.failure_samples),
        )
    return stats
