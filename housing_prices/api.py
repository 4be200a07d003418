#!/usr/bin/env python3
"""
api.py — Housing Prices read API

Serves the price data written by housing_prices.pipeline. Read-only:
every endpoint is a query against Postgres, nothing is computed
beyond the year-over-year change.

Endpoints:
    GET /api/years           → Years that have price data
    GET /api/prices          → Prices by year & building type (with YoY change)
    GET /api/building-types  → Canonical building types
    GET /api/geometries      → Postal code areas as GeoJSON
    GET /health              → Liveness check

Environment variables:
    ENV               — "dev" or "prod" (default: "prod")
    DATABASE_URL      — Postgres connection string
    ALLOWED_ORIGINS   — Comma-separated CORS origins (default: "*")
    API_PORT          — Port for the development server (default: 3000)
    RATE_LIMIT        — "0" disables rate limiting
    DB_POOL_MAX_SIZE  — Max pooled Postgres connections (default: 10)
    LOG_LEVEL         — Logging level (default: INFO, DEBUG when ENV=dev)

Requires: fastapi, uvicorn, slowapi, psycopg, psycopg-pool
"""

import json
import logging
import os
import sys
import threading
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg_pool import ConnectionPool
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.gzip import GZipMiddleware

from housing_prices.building_types import building_type_order
from housing_prices.constants import BUILDING_TYPE_ALL, VALID_BUILDING_TYPES
from housing_prices.database import PriceRepository, open_read_pool
from housing_prices.security import RequestIdMiddleware, SecurityHeadersMiddleware


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

ENV = os.getenv("ENV", "prod").lower().strip()
ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS", "").strip()
API_PORT = int(os.getenv("API_PORT", "3000"))
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT", "1").strip() != "0"
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if ENV == "dev" else "INFO").upper()


# ---------------------------------------------------------------------------
# Logging configuration — structured JSON to stdout
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("hsp.api")


# ---------------------------------------------------------------------------
# Repository dependency
# ---------------------------------------------------------------------------

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def get_pool() -> ConnectionPool:
    """Process-wide read pool, opened on first use."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                _pool = open_read_pool(max_size=DB_POOL_MAX_SIZE)
    return _pool


def get_repository() -> Iterator[PriceRepository]:
    """Repository on a pooled connection, returned to the pool after the request."""
    with get_pool().connection() as conn:
        yield PriceRepository(conn)


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
    storage_uri="memory://",
    strategy="fixed-window",
    enabled=RATE_LIMIT_ENABLED,
)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(json.dumps({
        "event": "startup",
        "env": ENV,
        "cors_origins": _CORS_ORIGINS,
        "rate_limit": RATE_LIMIT_ENABLED,
        "database_configured": bool(os.getenv("DATABASE_URL")),
    }))
    if not os.getenv("DATABASE_URL"):
        logger.warning(json.dumps({
            "event": "startup_degraded",
            "reason": "DATABASE_URL not set; data endpoints will fail",
        }))

    yield

    if _pool is not None:
        _pool.close()
    logger.info(json.dumps({"event": "shutdown"}))


app = FastAPI(
    title="Housing Prices API",
    description="Housing prices by postal code and building type",
    version="0.1.0",
    lifespan=_lifespan,
    docs_url="/docs" if ENV == "dev" else None,
    redoc_url=None,
)

app.state.limiter = limiter


# ---------------------------------------------------------------------------
# CORS — GET only, frontend reads from any configured origin
# ---------------------------------------------------------------------------

_CORS_ORIGINS: list[str] = [
    o.strip() for o in ALLOWED_ORIGINS_RAW.split(",") if o.strip()
] or ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)

# Starlette runs middleware in reverse registration order:
# GZip → SecurityHeaders → RequestId → CORS
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SecurityHeadersMiddleware, enable_hsts=(ENV == "prod"))
app.add_middleware(GZipMiddleware, minimum_size=500)


# ---------------------------------------------------------------------------
# Error handlers — never leak internals
# ---------------------------------------------------------------------------

@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
        headers={"Retry-After": "60"},
    )


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(json.dumps({
        "event": "unhandled_exception",
        "exception_type": type(exc).__name__,
        "request_id": request_id,
        "path": request.url.path,
    }))
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": message})


# ---------------------------------------------------------------------------
# Response shaping
# ---------------------------------------------------------------------------

def _as_float(value: Any) -> Optional[float]:
    # NUMERIC columns arrive as Decimal
    return float(value) if value is not None else None


def price_changes(
    current: list[dict[str, Any]],
    previous: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Join this year's rows with last year's prices.

    changePercent is the rounded percentage change, or None when either
    price is missing or last year's price is not positive.
    """
    prev_by_code = {row["postal_code"]: _as_float(row["price_per_sqm"]) for row in previous}

    result = []
    for row in current:
        price = _as_float(row["price_per_sqm"])
        prev_price = prev_by_code.get(row["postal_code"])
        change = None
        if price is not None and prev_price is not None and prev_price > 0:
            change = round((price - prev_price) / prev_price * 100, 2)
        result.append({
            "postalCode": row["postal_code"],
            "name": row.get("name"),
            "municipality": row.get("municipality"),
            "pricePerSqm": price,
            "prevPricePerSqm": prev_price,
            "changePercent": change,
        })
    return result


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health", include_in_schema=False)
async def health(request: Request) -> JSONResponse:
    """Liveness check. No database access."""
    return JSONResponse(status_code=200, content={"status": "ok"})


@app.get("/api/years")
@limiter.limit("60/minute")
def list_years(request: Request, repo: PriceRepository = Depends(get_repository)) -> Any:
    """Distinct years that have price data, ascending."""
    return repo.years()


@app.get("/api/prices")
@limiter.limit("60/minute")
def list_prices(
    request: Request,
    year: Optional[str] = None,
    building_type: str = BUILDING_TYPE_ALL,
    repo: PriceRepository = Depends(get_repository),
) -> Any:
    """Per-postal-code prices for one year and building type, with YoY change."""
    if year is None or not year.strip():
        return _bad_request("year parameter is required")
    try:
        year_num = int(year)
    except ValueError:
        return _bad_request("year must be a number")
    if not 1 <= year_num <= 9999:
        return _bad_request("year must be a number")
    if building_type not in VALID_BUILDING_TYPES:
        return _bad_request(
            f"building_type must be one of: {', '.join(sorted(VALID_BUILDING_TYPES))}"
        )

    current = repo.prices(date(year_num, 1, 1), building_type)
    previous = repo.prices(date(year_num - 1, 1, 1), building_type) if year_num > 1 else []
    return price_changes(current, previous)


@app.get("/api/building-types")
@limiter.limit("60/minute")
def list_building_types(request: Request, repo: PriceRepository = Depends(get_repository)) -> Any:
    """Canonical building types in display order."""
    rows = repo.building_types()
    return sorted(rows, key=lambda row: building_type_order(row["code"]))


@app.get("/api/geometries")
@limiter.limit("30/minute")
def list_geometries(request: Request, repo: PriceRepository = Depends(get_repository)) -> Any:
    """Postal code areas with geometry, as a GeoJSON FeatureCollection."""
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {
                    "postalCode": row["code"],
                    "name": row.get("name"),
                    "municipality": row.get("municipality"),
                },
                "geometry": row["geometry"],
            }
            for row in repo.geometries()
        ],
    }


# ---------------------------------------------------------------------------
# Entry point (development only)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=API_PORT)  # noqa: S104
