"""
housing_prices.pipeline — Fetch, decode and store one PxWeb price table.

Usage:
    python -m housing_prices.pipeline
    python -m housing_prices.pipeline --latest 2
    python -m housing_prices.pipeline --dry-run
    python -m housing_prices.pipeline --dry-run --json

Steps:
    1. Fetch table metadata.
    2. Extract the dataset (all periods, or the latest N with --latest).
    3. Decode json-stat2 into price records.
    4. Upsert into Postgres (skipped with --dry-run, which prints a
       preview instead).

Exit codes:
    0: Success.
    1: Upstream fetch failed.
    2: Dataset failed schema validation.
    3: Database error.

Environment variables:
    STATFIN_DATASET_URL — table URL (default: statfin_ashi_pxt_13mu)
    DATABASE_URL        — Postgres connection string (not needed for --dry-run)
    LOG_LEVEL           — Logging level (default: INFO)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Callable, Sequence

import psycopg
import requests

from housing_prices.building_types import STATFIN_BUILDING_TYPE_MAPPINGS
from housing_prices.constants import STATFIN_DATASET_URL
from housing_prices.database import DatabaseClient, StoreSummary
from housing_prices.extractor import DatasetExtractor, build_latest_query
from housing_prices.jsonstat import SchemaError
from housing_prices.models import STATFIN_ROLES, BuildingTypeMapping, DimensionRoles, TransformResult
from housing_prices.pxweb_source import PxWebDatasetSource, UpstreamFetchError
from housing_prices.transformer import transform_dataset

logger = logging.getLogger("hsp.pipeline")

EXIT_OK = 0
EXIT_UPSTREAM = 1
EXIT_SCHEMA = 2
EXIT_DATABASE = 3


def run_pipeline(
    source: PxWebDatasetSource,
    extractor: DatasetExtractor,
    mappings: Sequence[BuildingTypeMapping] = STATFIN_BUILDING_TYPE_MAPPINGS,
    latest: int | None = None,
    roles: DimensionRoles = STATFIN_ROLES,
) -> TransformResult:
    """Fetch metadata, extract and decode. No database access."""
    metadata = source.fetch_metadata()
    query = build_latest_query(metadata, latest) if latest else None
    raw = extractor.extract(metadata, source.api_url, query=query)
    return transform_dataset(raw, source.dataset_name, mappings, roles)


def format_preview(result: TransformResult) -> str:
    """Fixed-width table of the decoded records."""
    rule = "═" * 80
    lines = [
        rule,
        f"  SOURCE: {result.source_name}",
        f"  Records: {len(result.records)} | Skipped: {result.skipped}",
        rule,
    ]
    if not result.records:
        lines.append("  (no records)")
        return "\n".join(lines)

    lines.append(
        f"  {'Postal':<7} {'Building Type':<18} {'Date':<12} {'€/m²':>8} {'Sales':>7}"
    )
    lines.append("  " + "─" * 76)
    for r in result.records:
        price = f"{r.price_per_sqm:8.0f}" if r.price_per_sqm is not None else f"{'N/A':>8}"
        count = f"{r.transaction_count:7d}" if r.transaction_count is not None else f"{'N/A':>7}"
        day = r.period_start.date().isoformat()
        lines.append(f"  {r.postal_code:<7} {r.building_type:<18} {day:<12} {price} {count}")
    lines.append(rule)
    return "\n".join(lines)


def _positive_int(text: str) -> int:
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="housing_prices.pipeline",
        description="Fetch a PxWeb housing price table, decode it and store it.",
    )
    parser.add_argument(
        "--url",
        default=os.getenv("STATFIN_DATASET_URL", STATFIN_DATASET_URL),
        help="PxWeb table URL (UI or API form).",
    )
    parser.add_argument(
        "--latest",
        type=_positive_int,
        default=None,
        help="Only fetch the latest N periods.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Decode and print a preview; do not touch the database.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="With --dry-run, print records as JSON.",
    )
    return parser


def main(
    argv: list[str] | None = None,
    session: requests.Session | None = None,
    connect: Callable[[], DatabaseClient] = DatabaseClient.connect,
) -> int:
    """Run the pipeline. Returns exit code."""
    args = _build_parser().parse_args(argv)

    try:
        source = PxWebDatasetSource(args.url, session=session)
        result = run_pipeline(source, DatasetExtractor(session=session), latest=args.latest)
    except SchemaError as exc:
        logger.error(json.dumps({
            "event": "schema_error",
            "expectation": exc.expectation,
            "dimension": exc.dimension,
            "error": str(exc),
        }))
        return EXIT_SCHEMA
    except (UpstreamFetchError, requests.RequestException, ValueError) as exc:
        # ValueError: malformed table URL or non-JSON metadata body
        logger.error(json.dumps({
            "event": "fetch_failed",
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        return EXIT_UPSTREAM

    if args.dry_run:
        if args.json_output:
            print(json.dumps({
                "source": result.source_name,
                "skipped": result.skipped,
                "records": [r.to_dict() for r in result.records],
            }, indent=2, ensure_ascii=False))
        else:
            print(format_preview(result))
        return EXIT_OK

    try:
        db = connect()
    except (psycopg.Error, RuntimeError) as exc:
        logger.error(json.dumps({"event": "db_connect_failed", "error": str(exc)}))
        return EXIT_DATABASE

    try:
        summary: StoreSummary = db.store_transform_result(result, url=source.api_url)
    except psycopg.Error as exc:
        logger.error(json.dumps({
            "event": "store_failed",
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        return EXIT_DATABASE
    finally:
        db.close()

    logger.info(json.dumps({
        "event": "pipeline_complete",
        "source": result.source_name,
        "records": len(result.records),
        "skipped": result.skipped,
        "stored": summary.records_stored,
    }))
    return EXIT_OK


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(message)s",
        stream=sys.stdout,
    )
    sys.exit(main())
