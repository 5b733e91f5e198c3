#!/usr/bin/env python3
"""
Viewfinder: Embedding Manager, queue statistics and batch-run CLI

Management script for the embedding pipeline.  Suitable for cron.

  stats            Report job counts per status and recent failures.
  process          Drain pending jobs (optionally at most --max-jobs).
  retry-failed     Move every failed job back to pending.
  recover-stale    Return jobs stuck in processing to pending.
  enqueue-missing  Queue every active unit that lacks an embedding.

Usage examples
--------------
  # Show queue stats
  python scripts/embedding_manager.py stats

  # Process up to 200 jobs, printing each progress event
  python scripts/embedding_manager.py process --max-jobs 200 --verbose

  # Nightly: retry failures, then drain
  python scripts/embedding_manager.py retry-failed
  python scripts/embedding_manager.py process
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

# Ensure the project root is importable
sys.path.insert(0, ".")

from app.database import engine, session_scope
from app.services.content_service import ContentService
from app.services.embedding_generator import EmbeddingGenerator
from app.services.embedding_queue import EmbeddingJobQueue

_RECENT_FAILURES = 10


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: stats
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_stats(args: argparse.Namespace) -> None:
    """Report job counts per status and the most recent failures."""
    queue = EmbeddingJobQueue()

    async with session_scope() as session:
        counts = await queue.count_by_status(session)
        failures = await queue.list_jobs(session, status="failed", limit=_RECENT_FAILURES)

    print(f"\n{'=' * 60}")
    print(f"  Embedding Queue")
    print(f"{'=' * 60}")
    print(f"  Total jobs:   {counts['total']}")
    print(f"  Pending:      {counts['pending']}")
    print(f"  Processing:   {counts['processing']}")
    print(f"  Completed:    {counts['completed']}")
    print(f"  Failed:       {counts['failed']}")

    if failures:
        print(f"\n  Recent failures:")
        for job in failures:
            target = f"{job.job_type}:{job.target_id}"
            if job.dimension:
                target += f":{job.dimension}"
            print(f"    {target}")
            print(f"      attempts={job.attempts} error={job.error_message}")

    print(f"{'=' * 60}\n")

    if args.json:
        print(json.dumps(counts, indent=2))


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: process
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_process(args: argparse.Namespace) -> int:
    """Drain the queue; exit status is non-zero if any job failed."""
    generator = EmbeddingGenerator(batch_size=args.batch_size)

    last = None
    async for event in generator.run(max_jobs=args.max_jobs):
        last = event
        if args.verbose or event.type in ("start", "complete", "error"):
            print(
                f"  [{event.type:<8}] processed={event.processed}/{event.total} "
                f"ok={event.succeeded} failed={event.failed}"
                + (f" recovered={event.recovered}" if event.type == "start" else "")
                + (f" error={event.message}" if event.message else "")
            )

    if last is None or last.type == "error":
        return 2
    return 1 if last.failed else 0


# ──────────────────────────────────────────────────────────────────────────────
# Subcommands: recovery and enqueueing
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_retry_failed(args: argparse.Namespace) -> None:
    async with session_scope() as session:
        count = await EmbeddingJobQueue().reset_failed(session)
    print(f"  Reset {count} failed job(s) to pending.")


async def cmd_recover_stale(args: argparse.Namespace) -> None:
    async with session_scope() as session:
        count = await EmbeddingJobQueue().recover_stale(
            session, older_than_seconds=args.older_than
        )
    print(f"  Recovered {count} stale job(s).")


async def cmd_enqueue_missing(args: argparse.Namespace) -> None:
    async with session_scope() as session:
        counts = await ContentService().enqueue_missing(session)
    already_queued = counts.pop("already_queued", 0)
    for job_type, count in counts.items():
        print(f"  {job_type:<30} {count}")
    print(f"  {'created':<30} {sum(counts.values())}")
    print(f"  {'already queued':<30} {already_queued}")


# ──────────────────────────────────────────────────────────────────────────────
# CLI entry point
# ──────────────────────────────────────────────────────────────────────────────

async def _run(coro) -> int:
    try:
        result = await coro
    finally:
        await engine.dispose()
    return result or 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Viewfinder Embedding Manager: queue stats and batch processing.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available subcommands",
    )

    # ── stats ─────────────────────────────────────────────────────────
    stats_parser = subparsers.add_parser(
        "stats",
        help="Report job counts per status and recent failures.",
    )
    stats_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Also output raw JSON counts.",
    )

    # ── process ───────────────────────────────────────────────────────
    process_parser = subparsers.add_parser(
        "process",
        help="Drain pending embedding jobs.",
    )
    process_parser.add_argument(
        "--max-jobs", "-n",
        type=int,
        default=None,
        help="Stop after this many jobs (default: drain the queue).",
    )
    process_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Jobs per batch (default: EMBEDDING_BATCH_SIZE).",
    )
    process_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        default=False,
        help="Print every progress event.",
    )

    # ── retry-failed ──────────────────────────────────────────────────
    subparsers.add_parser(
        "retry-failed",
        help="Move every failed job back to pending.",
    )

    # ── recover-stale ─────────────────────────────────────────────────
    stale_parser = subparsers.add_parser(
        "recover-stale",
        help="Return jobs stuck in processing to pending.",
    )
    stale_parser.add_argument(
        "--older-than",
        type=int,
        default=None,
        help="Seconds since claim (default: EMBEDDING_STALE_AFTER_SECONDS).",
    )

    # ── enqueue-missing ───────────────────────────────────────────────
    subparsers.add_parser(
        "enqueue-missing",
        help="Queue every active unit that lacks an embedding.",
    )

    args = parser.parse_args()

    commands = {
        "stats": cmd_stats,
        "process": cmd_process,
        "retry-failed": cmd_retry_failed,
        "recover-stale": cmd_recover_stale,
        "enqueue-missing": cmd_enqueue_missing,
    }

    if args.command not in commands:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(commands[args.command](args))))


if __name__ == "__main__":
    main()
