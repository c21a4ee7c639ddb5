"""Stable case identifiers.

A decision is identified by its natural reference when it has one, then by
the checksum of its source PDF, and otherwise by an MD5 over its locators.
The SQL rendering must produce byte-identical ids to :func:`resolve_case_id`
so that ids handed out by listings resolve in detail lookups.
"""
from __future__ import annotations

import hashlib
from datetime import date, datetime


def _date_text(value: date | datetime | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def resolve_case_id(
    *,
    decision_reference: str | None,
    pdf_sha256: str | None,
    pdf_url: str | None = None,
    source_url: str | None = None,
    business_name: str | None = None,
    decision_date: date | datetime | str | None = None,
) -> str:
    """Deterministic case id for a decision record."""
    if decision_reference:
        return decision_reference
    if pdf_sha256:
        return pdf_sha256
    basis = "|".join((
        pdf_url or "",
        source_url or "",
        business_name or "",
        _date_text(decision_date),
    ))
    return hashlib.md5(basis.encode("utf-8")).hexdigest()  # noqa: S324


def case_id_sql(alias: str = "d") -> str:
    """DuckDB expression equivalent to :func:`resolve_case_id`."""
    return (
        f"COALESCE("
        f"NULLIF({alias}.decision_reference, ''), "
        f"NULLIF({alias}.pdf_sha256, ''), "
        f"md5(concat_ws('|', "
        f"COALESCE({alias}.pdf_url, ''), "
        f"COALESCE({alias}.source_url, ''), "
        f"COALESCE({alias}.business_name, ''), "
        f"COALESCE(CAST({alias}.decision_date AS VARCHAR), ''))))"
    )


def case_lookup_sql(alias: str = "d") -> str:
    """Predicate matching a case by id, natural reference or checksum.

    Binds the same value three times.
    """
    return (
        f"({case_id_sql(alias)} = ? "
        f"OR {alias}.decision_reference = ? "
        f"OR COALESCE({alias}.pdf_sha256, '') = ?)"
    )
