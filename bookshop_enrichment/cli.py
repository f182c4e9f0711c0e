"""Command line entry point for one-off refresh runs and store-wide audits."""

from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta
import logging
from pathlib import Path
import sys
from typing import Any

from bookshop_enrichment.core.config import ConfigurationError, Settings, get_settings, require_pipeline_credentials
from bookshop_enrichment.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from bookshop_enrichment.jobs.refresh import run_refresh_job
from bookshop_enrichment.jobs.reports import (
    NO_REFERENCE_REASON,
    estimate_api_costs,
    failure_rows_from_outcomes,
    failure_rows_from_store,
    format_cost_report,
    write_failures_csv,
)
from bookshop_enrichment.services.repository import PostgresBookshopRepository, RepositoryError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIGURATION = 2
EXIT_STORE_UNAVAILABLE = 3


def build_repository(settings: Settings) -> Any:
    return PostgresBookshopRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        page_size=settings.store_page_size,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bookshop-enrichment",
        description="Refresh bookshop listings from Google Places and audit enrichment state.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    refresh = subparsers.add_parser("refresh", help="Refresh one batch of stale bookshops")
    refresh.add_argument("--batch-size", type=int, default=None, help="Maximum bookshops to process")
    refresh.add_argument("--staleness-days", type=int, default=None, help="Age after which data is refetched")
    refresh.add_argument("--delay", type=float, default=None, help="Seconds to wait after every provider call")
    refresh.add_argument(
        "--resolve-missing",
        action="store_true",
        default=None,
        help="Look up a Place ID for bookshops that have none",
    )
    refresh.add_argument("--failures-csv", type=Path, default=None, help="Write this run's failures to a CSV file")

    failures = subparsers.add_parser("failures", help="Export live bookshops that were never enriched")
    failures.add_argument("--output", type=Path, default=None, help="CSV path; stdout when omitted")

    subparsers.add_parser("costs", help="Estimate Google Places API spend from store counts")
    return parser


async def _run_refresh(args: argparse.Namespace, settings: Settings) -> int:
    require_pipeline_credentials(settings)
    store = build_repository(settings)
    try:
        tracker = await run_refresh_job(
            settings,
            store=store,
            batch_size=args.batch_size,
            staleness_window=None if args.staleness_days is None else timedelta(days=args.staleness_days),
            pacing_seconds=args.delay,
            resolve_missing=args.resolve_missing,
        )
    finally:
        await store.close()

    summary = tracker.summary()
    print(f"total={summary.total} refreshed={summary.refreshed} failed={summary.failed} skipped={summary.skipped}")
    for status_name, count in summary.counts.items():
        print(f"  {status_name}: {count}")
    if summary.interrupted:
        print(f"interrupted: {summary.interrupted}")

    if args.failures_csv is not None:
        rows = failure_rows_from_outcomes(tracker.outcomes)
        with args.failures_csv.open("w", encoding="utf-8", newline="") as handle:
            written = write_failures_csv(rows, handle)
        print(f"failures_csv={args.failures_csv} rows={written}")
    return EXIT_OK


async def _run_failures(args: argparse.Namespace, settings: Settings) -> int:
    store = build_repository(settings)
    try:
        await store.ensure_ready()
        records = await store.list_unenriched_bookshops()
    finally:
        await store.close()

    rows = failure_rows_from_store(records)
    if args.output is None:
        write_failures_csv(rows, sys.stdout)
    else:
        with args.output.open("w", encoding="utf-8", newline="") as handle:
            write_failures_csv(rows, handle)
        print(f"failures_csv={args.output} rows={len(rows)}")

    without_reference = sum(1 for row in rows if row.reason == NO_REFERENCE_REASON)
    print(
        f"unenriched={len(rows)} without_place_id={without_reference} "
        f"details_failed={len(rows) - without_reference}",
        file=sys.stderr,
    )
    return EXIT_OK


async def _run_costs(_: argparse.Namespace, settings: Settings) -> int:
    store = build_repository(settings)
    try:
        await store.ensure_ready()
        totals = await store.count_enrichment_totals()
    finally:
        await store.close()

    for line in format_cost_report(totals, estimate_api_costs(totals)):
        print(line)
    return EXIT_OK


COMMANDS = {
    "refresh": _run_refresh,
    "failures": _run_failures,
    "costs": _run_costs,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except ConfigurationError as exc:
        logger.error("configuration error: %s", exc)
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except RepositoryError as exc:
        logger.error("store unavailable: %s", exc)
        print(f"store unavailable: {exc}", file=sys.stderr)
        return EXIT_STORE_UNAVAILABLE
    finally:
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    raise SystemExit(main())
