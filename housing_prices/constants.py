"""
housing_prices.constants — Single source of truth for pipeline constants.

Every module that needs these values imports them from here.
Per-run configuration (URLs, credentials) lives in environment
variables, not in this module.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Statistics Finland — statfin_ashi_pxt_13mu
# ---------------------------------------------------------------------------

STATFIN_DATASET_URL: str = (
    "https://pxdata.stat.fi/PXWeb/api/v1/en/StatFin/statfin_ashi_pxt_13mu.px"
)

STATFIN_PERIOD_DIMENSION: str = "Vuosi"
STATFIN_AREA_DIMENSION: str = "Postinumero"
STATFIN_CATEGORY_DIMENSION: str = "Talotyyppi"
STATFIN_METRIC_DIMENSION: str = "Tiedot"

METRIC_PRICE: str = "keskihinta_aritm_nw"
"""Mean price per square metre (EUR/m2). Primary metric."""

METRIC_COUNT: str = "lkm_julk20"
"""Number of sales. Secondary metric."""

# ---------------------------------------------------------------------------
# Wire formats
# ---------------------------------------------------------------------------

JSON_STAT2_FORMAT: str = "json-stat2"
JSON_STAT_DATASET_CLASS: str = "dataset"

# ---------------------------------------------------------------------------
# Canonical building types — order is the display order of the read API
# ---------------------------------------------------------------------------

BUILDING_TYPE_ALL: str = "all"

CANONICAL_BUILDING_TYPES: tuple[str, ...] = (
    "all",
    "apartment_1r",
    "apartment_2r",
    "apartment_3r_plus",
    "terraced",
)

VALID_BUILDING_TYPES: frozenset[str] = frozenset(CANONICAL_BUILDING_TYPES)

# ---------------------------------------------------------------------------
# Postal code geometries — Statistics Finland WFS
# ---------------------------------------------------------------------------

WFS_BASE_URL: str = "https://geo.stat.fi/geoserver/postialue/wfs"
WFS_POSTAL_CODE_LAYER: str = "postialue:pno_tilasto_2024"
WFS_SRS_NAME: str = "EPSG:4326"

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

PRICE_BATCH_SIZE: int = 500
GEOMETRY_BATCH_SIZE: int = 200
