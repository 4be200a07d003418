"""
tests/test_database.py — DatabaseClient and PriceRepository against a fake connection.

The fake records every statement and parameter set, so these tests
check batching, transaction boundaries and parameter shapes without
a running Postgres.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import pytest
from psycopg.types.json import Jsonb

from housing_prices.building_types import STATFIN_BUILDING_TYPE_MAPPINGS
from housing_prices.database import (
    INSERT_POSTAL_CODE,
    SELECT_PRICES,
    UPSERT_BUILDING_TYPE_MAPPING,
    UPSERT_DATA_SOURCE,
    UPSERT_POSTAL_CODE_GEOMETRY,
    UPSERT_PRICE,
    DatabaseClient,
    PriceRepository,
    StoreSummary,
    open_read_pool,
)
from housing_prices.models import PostalCodeFeature, PriceRecord, TransformResult

SOURCE = "statfin_ashi_pxt_13mu"


class FakeCursor:

    def __init__(self, conn: "FakeConnection") -> None:
        self._conn = conn

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def execute(self, sql: str, params: tuple = ()) -> None:
        self._conn.executed.append((sql, params))

    def executemany(self, sql: str, params_seq: list) -> None:
        if self._conn.fail_on == sql:
            raise RuntimeError("write failed")
        self._conn.executed_many.append((sql, list(params_seq)))

    def fetchone(self) -> tuple:
        return (self._conn.source_id,)

    def fetchall(self) -> list:
        return list(self._conn.rows)


class FakeConnection:

    def __init__(self, rows: list | None = None, fail_on: str | None = None) -> None:
        self.rows = rows or []
        self.fail_on = fail_on
        self.source_id = 7
        self.executed: list[tuple[str, tuple]] = []
        self.executed_many: list[tuple[str, list]] = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True

    def batches(self, sql: str) -> list[list]:
        return [params for stmt, params in self.executed_many if stmt == sql]


def _records(n: int, postal_codes: int = 10) -> list[PriceRecord]:
    return [
        PriceRecord(
            postal_code=f"{i % postal_codes:05d}",
            building_type="apartment_1r",
            period_start=datetime(2000 + i // postal_codes, 1, 1, tzinfo=timezone.utc),
            price_per_sqm=1000.0 + i,
            transaction_count=i,
            source_name=SOURCE,
        )
        for i in range(n)
    ]


def _result(n: int) -> TransformResult:
    return TransformResult(
        records=_records(n),
        skipped=0,
        source_name=SOURCE,
        building_type_mappings=list(STATFIN_BUILDING_TYPE_MAPPINGS),
    )


# ===========================================================================
# Write side
# ===========================================================================


class TestDatabaseClient:

    def test_ensure_data_source_returns_id(self):
        conn = FakeConnection()
        source_id = DatabaseClient(conn).ensure_data_source(SOURCE, "desc", "https://x")
        assert source_id == 7
        assert conn.executed == [(UPSERT_DATA_SOURCE, (SOURCE, "desc", "https://x"))]

    def test_store_transform_result(self):
        conn = FakeConnection()
        summary = DatabaseClient(conn).store_transform_result(_result(3), url="https://x")

        assert summary == StoreSummary(source_id=7, records_stored=3)
        assert conn.commits == 1
        assert conn.rollbacks == 0

        assert conn.batches(INSERT_POSTAL_CODE) == [[("00000",), ("00001",), ("00002",)]]
        mappings = conn.batches(UPSERT_BUILDING_TYPE_MAPPING)[0]
        assert (7, "1", "Blocks of flats, one-room flat", "apartment_1r") in mappings
        prices = conn.batches(UPSERT_PRICE)[0]
        assert prices[0] == ("00000", "apartment_1r", date(2000, 1, 1), 1000.0, 0, 7)

    def test_postal_codes_deduplicated(self):
        conn = FakeConnection()
        DatabaseClient(conn).ensure_postal_codes(["00100", "00200", "00100"])
        assert conn.batches(INSERT_POSTAL_CODE) == [[("00100",), ("00200",)]]

    def test_price_rows_batched(self):
        conn = FakeConnection()
        stored = DatabaseClient(conn).insert_price_records(_records(1201), source_id=7)
        assert stored == 1201
        assert [len(b) for b in conn.batches(UPSERT_PRICE)] == [500, 500, 201]

    def test_nulls_pass_through(self):
        conn = FakeConnection()
        record = PriceRecord("00100", "terraced", datetime(2024, 1, 1, tzinfo=timezone.utc), None, None, SOURCE)
        DatabaseClient(conn).insert_price_records([record], source_id=1)
        assert conn.batches(UPSERT_PRICE)[0] == [("00100", "terraced", date(2024, 1, 1), None, None, 1)]

    def test_empty_result_still_registers_source(self):
        conn = FakeConnection()
        summary = DatabaseClient(conn).store_transform_result(
            TransformResult(records=[], skipped=4, source_name=SOURCE),
        )
        assert summary.records_stored == 0
        assert conn.batches(UPSERT_PRICE) == []
        assert conn.commits == 1

    def test_failure_rolls_back(self):
        conn = FakeConnection(fail_on=UPSERT_PRICE)
        with pytest.raises(RuntimeError, match="write failed"):
            DatabaseClient(conn).store_transform_result(_result(3))
        assert conn.rollbacks == 1
        assert conn.commits == 0

    def test_upsert_statements_are_idempotent(self):
        assert "ON CONFLICT (postal_code, building_type, date, source_id) DO UPDATE" in UPSERT_PRICE
        assert "ON CONFLICT (code) DO NOTHING" in INSERT_POSTAL_CODE

    def test_store_geometries(self):
        conn = FakeConnection()
        features = [
            PostalCodeFeature("00100", "Keskusta", "091", {"type": "Point", "coordinates": [24.9, 60.1]}),
            PostalCodeFeature("00200", "Lauttasaari", "091", None),
        ]
        assert DatabaseClient(conn).store_postal_code_geometries(features) == 2
        rows = conn.batches(UPSERT_POSTAL_CODE_GEOMETRY)[0]
        assert isinstance(rows[0][3], Jsonb)
        assert rows[1] == ("00200", "Lauttasaari", "091", None)
        assert conn.commits == 1

    def test_geometries_batched(self):
        conn = FakeConnection()
        features = [PostalCodeFeature(f"{i:05d}", None, None, None) for i in range(450)]
        DatabaseClient(conn).store_postal_code_geometries(features)
        assert [len(b) for b in conn.batches(UPSERT_POSTAL_CODE_GEOMETRY)] == [200, 200, 50]

    def test_geometry_failure_rolls_back(self):
        conn = FakeConnection(fail_on=UPSERT_POSTAL_CODE_GEOMETRY)
        with pytest.raises(RuntimeError):
            DatabaseClient(conn).store_postal_code_geometries([PostalCodeFeature("00100", None, None, None)])
        assert conn.rollbacks == 1

    def test_close(self):
        conn = FakeConnection()
        DatabaseClient(conn).close()
        assert conn.closed

    def test_connect_requires_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            DatabaseClient.connect()


# ===========================================================================
# Read side
# ===========================================================================


class TestPriceRepository:

    def test_years(self):
        conn = FakeConnection(rows=[{"year": 2023}, {"year": 2024}])
        assert PriceRepository(conn).years() == [2023, 2024]

    def test_prices_parameters(self):
        conn = FakeConnection(rows=[{"postal_code": "00100", "price_per_sqm": 5000}])
        rows = PriceRepository(conn).prices(date(2024, 1, 1), "terraced")
        assert rows == [{"postal_code": "00100", "price_per_sqm": 5000}]
        assert conn.executed == [(SELECT_PRICES, (date(2024, 1, 1), "terraced"))]

    def test_read_pool_requires_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            open_read_pool()
