"""DuckDB-backed decision store.

Holds one database file with:

    fos_decisions       one row per published decision (required)
    fos_ingestion_runs  ingestion run log (optional; schema varies)

The query service opens the store read-only and gives every concurrent task
its own cursor. Writers (import and enrichment backfill) open it read-write.
"""
from __future__ import annotations

import contextlib
import importlib
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fos_analytics.expressions import DECISIONS_TABLE, INGESTION_RUNS_TABLE

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")

log = logging.getLogger(__name__)

DuckDBError: type[Exception] = _duckdb_mod.Error


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class FosError(RuntimeError):
    """Base class for errors surfaced to API callers as a single message."""


class ConfigurationError(FosError):
    """The store is not configured or cannot be opened. Not retryable."""


class SchemaUnavailableError(FosError):
    """The decisions table is missing from the configured store."""

    def __init__(self, table: str = DECISIONS_TABLE) -> None:
        super().__init__(f"FOS dataset table `{table}` is unavailable.")
        self.table = table


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

DECISIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS {DECISIONS_TABLE} (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    decision_reference VARCHAR UNIQUE,
    decision_date DATE,
    business_name VARCHAR,
    product_sector VARCHAR,
    outcome VARCHAR,
    ombudsman_name VARCHAR,
    source_url VARCHAR,
    pdf_url VARCHAR,
    pdf_sha256 VARCHAR,
    full_text VARCHAR,
    complaint_text VARCHAR,
    firm_response_text VARCHAR,
    ombudsman_reasoning_text VARCHAR,
    final_decision_text VARCHAR,
    decision_summary VARCHAR,
    decision_logic VARCHAR,
    precedents JSON,
    root_cause_tags JSON,
    vulnerability_flags JSON,
    created_at TIMESTAMP DEFAULT current_timestamp,
    updated_at TIMESTAMP DEFAULT current_timestamp
)
"""

INGESTION_RUNS_DDL = f"""
CREATE TABLE IF NOT EXISTS {INGESTION_RUNS_TABLE} (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    status VARCHAR,
    active_year INTEGER,
    windows_done INTEGER,
    windows_total INTEGER,
    failed_windows INTEGER,
    records_ingested INTEGER,
    started_at TIMESTAMP,
    finished_at TIMESTAMP,
    last_success_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT current_timestamp,
    updated_at TIMESTAMP DEFAULT current_timestamp
)
"""

DECISION_COLUMNS: tuple[str, ...] = (
    "decision_reference",
    "decision_date",
    "business_name",
    "product_sector",
    "outcome",
    "ombudsman_name",
    "source_url",
    "pdf_url",
    "pdf_sha256",
    "full_text",
    "complaint_text",
    "firm_response_text",
    "ombudsman_reasoning_text",
    "final_decision_text",
    "decision_summary",
    "decision_logic",
    "precedents",
    "root_cause_tags",
    "vulnerability_flags",
)


# ---------------------------------------------------------------------------
# Cursor wrapper
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class StoreCursor:
    """A single-thread DuckDB connection with dict-row helpers."""

    conn: Any

    def fetch_all(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        result = self.conn.execute(sql, list(params) if params else [])
        cols = [str(desc[0]) for desc in result.description]
        return [dict(zip(cols, row, strict=True)) for row in result.fetchall()]

    def fetch_one(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        row = self.conn.execute(sql, list(params) if params else []).fetchone()
        return row[0] if row else None

    def has_table(self, table_name: str) -> bool:
        row = self.conn.execute(
            """
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = 'main' AND table_name = ?
            """,
            [table_name],
        ).fetchone()
        return bool(row and row[0])

    def table_columns(self, table_name: str) -> frozenset[str]:
        rows = self.conn.execute(
            """
            SELECT column_name
            FROM information_schema.columns
            WHERE table_schema = 'main' AND table_name = ?
            """,
            [table_name],
        ).fetchall()
        return frozenset(str(r[0]) for r in rows)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DecisionStore:
    """Connection owner for the decisions database."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        read_only: bool = True,
        create_if_missing: bool = False,
    ) -> None:
        self._db_path = Path(db_path) if str(db_path) != ":memory:" else None
        if self._db_path is None:
            read_only = False
        elif not self._db_path.exists():
            if not create_if_missing:
                raise ConfigurationError(f"FOS database not found: {self._db_path}")
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            read_only = False
        try:
            self._conn: Any = _duckdb_mod.connect(
                str(self._db_path) if self._db_path is not None else ":memory:",
                read_only=read_only,
            )
        except DuckDBError as exc:
            raise ConfigurationError(f"Could not open FOS database: {exc}") from exc

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> DecisionStore:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    @contextlib.contextmanager
    def cursor(self) -> Iterator[StoreCursor]:
        """A private connection to the same database, for one thread."""
        cur = self._conn.cursor()
        try:
            yield StoreCursor(cur)
        finally:
            cur.close()

    # -- schema ----------------------------------------------------------

    def create_schema(self, *, with_ingestion_runs: bool = True) -> None:
        """Create the decisions table (and the run log) if absent."""
        self._conn.execute(DECISIONS_DDL)
        if with_ingestion_runs:
            self._conn.execute(INGESTION_RUNS_DDL)

    # -- writes ----------------------------------------------------------

    def upsert_decisions(self, rows: Sequence[dict[str, Any]]) -> int:
        """Insert or replace decisions keyed by ``decision_reference``.

        Every row must carry a non-empty ``decision_reference``. Returns the
        number of rows written.
        """
        if not rows:
            return 0
        cols = ", ".join(DECISION_COLUMNS)
        placeholders = ", ".join("?" for _ in DECISION_COLUMNS)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in DECISION_COLUMNS if c != "decision_reference"
        )
        sql = (
            f"INSERT INTO {DECISIONS_TABLE} ({cols}) VALUES ({placeholders}) "
            f"ON CONFLICT (decision_reference) DO UPDATE SET {updates}, "
            f"updated_at = now()"
        )
        params = [[row.get(c) for c in DECISION_COLUMNS] for row in rows]
        self._conn.execute("BEGIN TRANSACTION")
        try:
            self._conn.executemany(sql, params)
            self._conn.execute("COMMIT")
        except Exception:
            with contextlib.suppress(Exception):
                self._conn.execute("ROLLBACK")
            raise
        return len(rows)

    def execute_write(self, sql: str, params: Sequence[Any] | None = None) -> None:
        self._conn.execute(sql, list(params) if params else [])

    def execute_many(self, sql: str, params: Sequence[Sequence[Any]]) -> None:
        """Run *sql* for each parameter row inside one transaction."""
        self._conn.execute("BEGIN TRANSACTION")
        try:
            self._conn.executemany(sql, [list(p) for p in params])
            self._conn.execute("COMMIT")
        except Exception:
            with contextlib.suppress(Exception):
                self._conn.execute("ROLLBACK")
            raise
