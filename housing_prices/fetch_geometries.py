"""
housing_prices.fetch_geometries — Load postal code areas into Postgres.

Usage:
    python -m housing_prices.fetch_geometries

Fetches every postal code area from the WFS layer and upserts name,
municipality and GeoJSON geometry into the postal_code table. Safe to
re-run.

Exit codes:
    0: Success.
    1: Fetch or store failed.

Environment variables:
    DATABASE_URL — Postgres connection string
    LOG_LEVEL    — Logging level (default: INFO)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Callable

import psycopg
import requests

from housing_prices.database import DatabaseClient
from housing_prices.geometry_source import PostalCodeGeometrySource
from housing_prices.pxweb_source import UpstreamFetchError

logger = logging.getLogger("hsp.geometry")


def main(
    session: requests.Session | None = None,
    connect: Callable[[], DatabaseClient] = DatabaseClient.connect,
) -> int:
    """Fetch and store all postal code geometries. Returns exit code."""
    try:
        features = PostalCodeGeometrySource(session=session).fetch_all()
    except (UpstreamFetchError, requests.RequestException, ValueError) as exc:
        logger.error(json.dumps({
            "event": "geometry_fetch_failed",
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        return 1

    try:
        db = connect()
    except (psycopg.Error, RuntimeError) as exc:
        logger.error(json.dumps({"event": "db_connect_failed", "error": str(exc)}))
        return 1

    try:
        stored = db.store_postal_code_geometries(features)
    except psycopg.Error as exc:
        logger.error(json.dumps({
            "event": "geometry_store_failed",
            "error_type": type(exc).__name__,
            "error": str(exc),
        }))
        return 1
    finally:
        db.close()

    print(f"Stored {stored} postal code areas.")
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(message)s",
        stream=sys.stdout,
    )
    sys.exit(main())
