"""
housing_prices.database — Postgres persistence for decoded price data.

Write side (DatabaseClient):
    Idempotent upserts. Re-running the same decode-and-store updates
    metric values in place; it never creates duplicate rows. Price rows
    are keyed by (postal_code, building_type, date, source_id).

Read side (PriceRepository):
    The handful of queries the read API serves, run on one connection
    checked out of a pool (open_read_pool) per request.

Schema: db/schema.sql, db/002-geometry.sql.

Requires: psycopg (v3), psycopg-pool
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from housing_prices.constants import GEOMETRY_BATCH_SIZE, PRICE_BATCH_SIZE
from housing_prices.models import BuildingTypeMapping, PostalCodeFeature, PriceRecord, TransformResult

logger = logging.getLogger("hsp.db")


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

UPSERT_DATA_SOURCE = """
    INSERT INTO data_source (name, description, url, last_fetched)
    VALUES (%s, %s, %s, NOW())
    ON CONFLICT (name) DO UPDATE SET last_fetched = NOW()
    RETURNING id
"""

UPSERT_BUILDING_TYPE_MAPPING = """
    INSERT INTO building_type_mapping (source_id, source_code, source_label, building_type)
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (source_id, source_code) DO UPDATE SET
        source_label = EXCLUDED.source_label,
        building_type = EXCLUDED.building_type
"""

INSERT_POSTAL_CODE = """
    INSERT INTO postal_code (code)
    VALUES (%s)
    ON CONFLICT (code) DO NOTHING
"""

UPSERT_PRICE = """
    INSERT INTO price_data (postal_code, building_type, date, price_per_sqm, transaction_count, source_id)
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (postal_code, building_type, date, source_id) DO UPDATE SET
        price_per_sqm = EXCLUDED.price_per_sqm,
        transaction_count = EXCLUDED.transaction_count
"""

UPSERT_POSTAL_CODE_GEOMETRY = """
    INSERT INTO postal_code (code, name, municipality, geometry)
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (code) DO UPDATE SET
        name = EXCLUDED.name,
        municipality = EXCLUDED.municipality,
        geometry = EXCLUDED.geometry
"""

SELECT_YEARS = """
    SELECT DISTINCT EXTRACT(YEAR FROM date)::int AS year
    FROM price_data
    ORDER BY year
"""

SELECT_PRICES = """
    SELECT pd.postal_code, pc.name, pc.municipality, pd.price_per_sqm
    FROM price_data pd
    LEFT JOIN postal_code pc ON pc.code = pd.postal_code
    WHERE pd.date = %s AND pd.building_type = %s
    ORDER BY pd.postal_code
"""

SELECT_BUILDING_TYPES = """
    SELECT code, description, description_fi
    FROM building_type
"""

SELECT_GEOMETRIES = """
    SELECT code, name, municipality, geometry
    FROM postal_code
    WHERE geometry IS NOT NULL
    ORDER BY code
"""


def _batches(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _price_params(record: PriceRecord, source_id: int) -> tuple[Any, ...]:
    return (
        record.postal_code,
        record.building_type,
        record.period_start.date(),
        record.price_per_sqm,
        record.transaction_count,
        source_id,
    )


def _database_url(url: str | None) -> str:
    resolved = url or os.getenv("DATABASE_URL", "").strip()
    if not resolved:
        raise RuntimeError("DATABASE_URL not set. Provide it as env var or argument.")
    return resolved


# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class StoreSummary:
    source_id: int
    records_stored: int


class DatabaseClient:
    """Writes decoder output. Owns one connection; not thread-safe."""

    def __init__(self, connection: Any) -> None:
        self._conn = connection

    @classmethod
    def connect(cls, url: str | None = None) -> DatabaseClient:
        return cls(psycopg.connect(_database_url(url)))

    def ensure_data_source(
        self,
        name: str,
        description: str | None = None,
        url: str | None = None,
    ) -> int:
        """Register the source (or refresh its last_fetched). Returns its id."""
        with self._conn.cursor() as cur:
            cur.execute(UPSERT_DATA_SOURCE, (name, description, url))
            row = cur.fetchone()
        source_id = int(row[0])
        logger.info(json.dumps({"event": "data_source", "name": name, "id": source_id}))
        return source_id

    def store_building_type_mappings(
        self,
        source_id: int,
        mappings: Sequence[BuildingTypeMapping],
    ) -> None:
        if not mappings:
            return
        with self._conn.cursor() as cur:
            cur.executemany(
                UPSERT_BUILDING_TYPE_MAPPING,
                [(source_id, m.source_code, m.source_label, m.canonical_code) for m in mappings],
            )
        logger.info(json.dumps({
            "event": "mappings_stored",
            "source_id": source_id,
            "count": len(mappings),
        }))

    def ensure_postal_codes(self, codes: Iterable[str]) -> None:
        """Insert postal codes not yet known. Names are filled in later."""
        unique = list(dict.fromkeys(codes))
        if not unique:
            return
        with self._conn.cursor() as cur:
            cur.executemany(INSERT_POSTAL_CODE, [(code,) for code in unique])
        logger.info(json.dumps({"event": "postal_codes_ensured", "count": len(unique)}))

    def insert_price_records(self, records: Sequence[PriceRecord], source_id: int) -> int:
        """Upsert price rows in batches. Returns the number of rows written."""
        if not records:
            return 0

        count = 0
        with self._conn.cursor() as cur:
            for batch_no, batch in enumerate(_batches(records, PRICE_BATCH_SIZE), start=1):
                cur.executemany(UPSERT_PRICE, [_price_params(r, source_id) for r in batch])
                count += len(batch)
                logger.info(json.dumps({
                    "event": "price_batch_stored",
                    "batch": batch_no,
                    "stored": count,
                    "total": len(records),
                }))
        return count

    def store_transform_result(
        self,
        result: TransformResult,
        description: str | None = None,
        url: str | None = None,
    ) -> StoreSummary:
        """Store one decode run in a single transaction."""
        try:
            source_id = self.ensure_data_source(result.source_name, description, url)
            self.ensure_postal_codes(r.postal_code for r in result.records)
            self.store_building_type_mappings(source_id, result.building_type_mappings)
            stored = self.insert_price_records(result.records, source_id)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

        logger.info(json.dumps({
            "event": "store_complete",
            "source": result.source_name,
            "source_id": source_id,
            "records_stored": stored,
        }))
        return StoreSummary(source_id=source_id, records_stored=stored)

    def store_postal_code_geometries(self, features: Sequence[PostalCodeFeature]) -> int:
        """Upsert postal code names, municipalities and geometries."""
        if not features:
            return 0

        count = 0
        try:
            with self._conn.cursor() as cur:
                for batch in _batches(features, GEOMETRY_BATCH_SIZE):
                    cur.executemany(UPSERT_POSTAL_CODE_GEOMETRY, [
                        (
                            f.postal_code,
                            f.name,
                            f.municipality,
                            Jsonb(f.geometry) if f.geometry is not None else None,
                        )
                        for f in batch
                    ])
                    count += len(batch)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

        logger.info(json.dumps({"event": "geometries_stored", "count": count}))
        return count

    def close(self) -> None:
        self._conn.close()
        logger.info(json.dumps({"event": "db_closed"}))


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

class PriceRepository:
    """Read-only queries behind the read API.

    Bound to one connection for the length of a request; the pool
    that lent it owns it.
    """

    def __init__(self, connection: Any) -> None:
        self._conn = connection

    def _fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def years(self) -> list[int]:
        return [int(row["year"]) for row in self._fetch_all(SELECT_YEARS)]

    def prices(self, period: date, building_type: str) -> list[dict[str, Any]]:
        return self._fetch_all(SELECT_PRICES, (period, building_type))

    def building_types(self) -> list[dict[str, Any]]:
        return self._fetch_all(SELECT_BUILDING_TYPES)

    def geometries(self) -> list[dict[str, Any]]:
        return self._fetch_all(SELECT_GEOMETRIES)


def open_read_pool(url: str | None = None, min_size: int = 1, max_size: int = 10) -> ConnectionPool:
    """Autocommit, dict-row connection pool for PriceRepository.

    Connections are checked before being handed out, so a dropped
    server connection is replaced instead of failing the request.
    """
    pool = ConnectionPool(
        _database_url(url),
        min_size=min_size,
        max_size=max_size,
        kwargs={"autocommit": True, "row_factory": dict_row},
        check=ConnectionPool.check_connection,
        name="hsp-read",
        open=True,
    )
    logger.info(json.dumps({"event": "read_pool_opened", "min_size": min_size, "max_size": max_size}))
    return pool
