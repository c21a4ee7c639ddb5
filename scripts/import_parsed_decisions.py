#!/usr/bin/env python3
"""Import parser output (one JSON file per decision) into the decisions store.

Creates the schema when the database does not exist yet, upserts records by
decision reference, and checkpoints the next file index after every batch.

Usage:
    python3 scripts/import_parsed_decisions.py \
        --source-dir parsed/ \
        --db data/fos.duckdb

    # Include full decision text (needed for enrichment backfill):
    python3 scripts/import_parsed_decisions.py \
        --source-dir parsed/ --db data/fos.duckdb --include-full-text

Outputs a JSON summary to stdout; progress logs go to stderr.
"""
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import orjson

from fos_analytics.importer import DEFAULT_IMPORT_BATCH_SIZE, ImportStats, import_parsed_directory
from fos_analytics.io_utils import load_state, save_json
from fos_analytics.store import DecisionStore, FosError

log = logging.getLogger("import_parsed_decisions")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Upsert parsed FOS decisions into DuckDB.")
    parser.add_argument("--source-dir", type=Path, required=True, help="Parser output directory")
    parser.add_argument("--db", type=Path, required=True, help="DuckDB decisions database")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_IMPORT_BATCH_SIZE,
        help=f"Files per batch (default: {DEFAULT_IMPORT_BATCH_SIZE})",
    )
    parser.add_argument("--limit", type=int, default=None, help="Import at most N files")
    parser.add_argument(
        "--include-full-text",
        action="store_true",
        help="Store each decision's full text",
    )
    parser.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="Checkpoint file (default: <db>.import-state.json)",
    )
    parser.add_argument("--reset", action="store_true", help="Ignore any existing checkpoint")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    source_dir: Path = args.source_dir.resolve()
    if not source_dir.is_dir():
        log.error("Source directory not found: %s", source_dir)
        return 2

    db_path: Path = args.db.resolve()
    state_path: Path = args.state_file or Path(f"{db_path}.import-state.json")
    state = {} if args.reset else load_state(state_path)
    start_index = int(state.get("next_index") or 0)
    if start_index:
        log.info("Resuming at file index %d", start_index)

    def checkpoint(stats: ImportStats) -> None:
        save_json({"next_index": stats.next_index, "stats": stats.as_dict()}, state_path)
        log.info("Imported %d/%d files", stats.next_index, stats.files)

    started = time.time()
    try:
        with DecisionStore(db_path, read_only=False, create_if_missing=True) as store:
            store.create_schema()
            stats = import_parsed_directory(
                store,
                source_dir,
                batch_size=args.batch_size,
                start_index=start_index,
                limit=args.limit,
                include_full_text=args.include_full_text,
                on_batch=checkpoint,
            )
    except FosError as exc:
        log.error("%s", exc)
        return 2

    elapsed = time.time() - started
    dump_json({
        "db": str(db_path),
        "source_dir": str(source_dir),
        "elapsed_s": round(elapsed, 2),
        **stats.as_dict(),
        "errors": stats.errors[:20],
    })
    return 0


if __name__ == "__main__":
    sys.exit(main())
