#!/usr/bin/env python3
"""Backfill inferred sections, decision logic and tags into the decisions store.

Scans ``fos_decisions`` for records with at least one empty enrichable field,
infers the missing values from the record's full text, and writes them back
without ever overwriting a stored value. Progress is checkpointed after every
batch so an interrupted run resumes where it stopped.

Usage:
    python3 scripts/backfill_enrichment.py \
        --db data/fos.duckdb \
        --batch-size 250

    # Preview without writing:
    python3 scripts/backfill_enrichment.py --db data/fos.duckdb --dry-run --limit 500

    # Start over, ignoring the checkpoint:
    python3 scripts/backfill_enrichment.py --db data/fos.duckdb --reset

Outputs a JSON summary to stdout; progress logs go to stderr.
"""
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import orjson

from fos_analytics.enrichment import DEFAULT_BATCH_SIZE, BackfillStats, run_backfill
from fos_analytics.io_utils import load_state, save_json
from fos_analytics.store import DecisionStore, FosError

log = logging.getLogger("backfill_enrichment")


def dump_json(obj: object) -> None:
    sys.stdout.buffer.write(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    sys.stdout.buffer.write(b"\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fill empty section, logic and tag fields of stored decisions.",
    )
    parser.add_argument("--db", type=Path, required=True, help="DuckDB decisions database")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Records per batch (default: {DEFAULT_BATCH_SIZE})",
    )
    parser.add_argument("--limit", type=int, default=None, help="Stop after scanning N records")
    parser.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="Checkpoint file (default: <db>.backfill-state.json)",
    )
    parser.add_argument("--reset", action="store_true", help="Ignore any existing checkpoint")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing")
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

    db_path: Path = args.db.resolve()
    state_path: Path = args.state_file or Path(f"{db_path}.backfill-state.json")
    state = {} if args.reset else load_state(state_path)
    after_id = state.get("last_id")
    if after_id:
        log.info("Resuming after id %s", after_id)

    def checkpoint(stats: BackfillStats) -> None:
        if args.dry_run:
            return
        save_json({"last_id": stats.last_id, "stats": stats.as_dict()}, state_path)

    started = time.time()
    try:
        with DecisionStore(db_path, read_only=False) as store:
            stats = run_backfill(
                store,
                batch_size=args.batch_size,
                limit=args.limit,
                after_id=after_id,
                dry_run=args.dry_run,
                on_batch=checkpoint,
            )
    except FosError as exc:
        log.error("%s", exc)
        return 2

    elapsed = time.time() - started
    log.info(
        "Done in %.1fs: scanned=%d updated=%d unchanged=%d failed=%d",
        elapsed, stats.scanned, stats.updated, stats.unchanged, stats.failed,
    )
    dump_json({
        "db": str(db_path),
        "dry_run": args.dry_run,
        "elapsed_s": round(elapsed, 2),
        **stats.as_dict(),
        "failure_samples": stats.failure_samples,
    })
    return 1 if stats.failed else 0


if __name__ == "__main__":
    sys.exit(main())
