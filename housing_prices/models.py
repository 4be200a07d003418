"""
housing_prices.models — Data models shared across the pipeline.

Two families:
    - Pydantic wire models for what PxWeb sends and receives
      (metadata, queries, raw dataset payloads).
    - Frozen dataclasses for domain values produced by the decoder
      (mappings, price records, transform results).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from housing_prices.constants import (
    JSON_STAT2_FORMAT,
    METRIC_COUNT,
    METRIC_PRICE,
    STATFIN_AREA_DIMENSION,
    STATFIN_CATEGORY_DIMENSION,
    STATFIN_METRIC_DIMENSION,
    STATFIN_PERIOD_DIMENSION,
    VALID_BUILDING_TYPES,
)


# ---------------------------------------------------------------------------
# PxWeb metadata
# ---------------------------------------------------------------------------

class Variable(BaseModel):
    """A dimension of a PxWeb table as described by its metadata."""

    model_config = {"populate_by_name": True, "frozen": True}

    code: str = ""
    text: str = ""
    values: list[str] = Field(default_factory=list)
    value_texts: list[str] = Field(default_factory=list, alias="valueTexts")
    elimination: bool = False
    time: bool = False


class DatasetMetadata(BaseModel):
    model_config = {"frozen": True}

    title: str = "Unknown"
    variables: list[Variable] = Field(default_factory=list)
    source: str | None = None
    updated: str | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# PxWeb query
# ---------------------------------------------------------------------------

class Selection(BaseModel):
    filter: str
    values: list[str]


class VariableSelection(BaseModel):
    code: str
    selection: Selection


class ResponseFormat(BaseModel):
    format: str = JSON_STAT2_FORMAT


class PxWebQuery(BaseModel):
    query: list[VariableSelection]
    response: ResponseFormat = Field(default_factory=ResponseFormat)


# ---------------------------------------------------------------------------
# Raw dataset — decoder input
# ---------------------------------------------------------------------------

class RawDataset(BaseModel):
    """Serialized dataset as returned by the extractor.

    ``data`` is the untouched response body. Parsing it is the
    decoder's job, not the extractor's.
    """

    model_config = {"frozen": True}

    format: str
    data: str
    metadata: DatasetMetadata = Field(default_factory=DatasetMetadata)


# ---------------------------------------------------------------------------
# Decoder configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class DimensionRoles:
    """Names of the four role dimensions and the two tracked metrics.

    Each source carries its own roles; nothing here is process-wide.
    """

    period: str = STATFIN_PERIOD_DIMENSION
    area: str = STATFIN_AREA_DIMENSION
    category: str = STATFIN_CATEGORY_DIMENSION
    metric: str = STATFIN_METRIC_DIMENSION
    primary_metric: str = METRIC_PRICE
    secondary_metric: str = METRIC_COUNT

    def required(self) -> tuple[str, str, str, str]:
        return (self.period, self.area, self.category, self.metric)


STATFIN_ROLES = DimensionRoles()


# ---------------------------------------------------------------------------
# Building types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class BuildingTypeInfo:
    """Canonical building type reference row."""

    code: str
    description: str
    description_fi: str | None = None


@dataclass(frozen=True, slots=True)
class BuildingTypeMapping:
    """Maps one source-specific category code to a canonical building type."""

    source_code: str
    source_label: str
    canonical_code: str

    def __post_init__(self) -> None:
        if self.canonical_code not in VALID_BUILDING_TYPES:
            raise ValueError(
                f"Unknown canonical building type '{self.canonical_code}' "
                f"for source code '{self.source_code}'."
            )


# ---------------------------------------------------------------------------
# Decoder output
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PriceRecord:
    """One decoded (period, postal code, building type) observation."""

    postal_code: str
    building_type: str
    period_start: datetime
    price_per_sqm: float | None
    transaction_count: int | None
    source_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "postal_code": self.postal_code,
            "building_type": self.building_type,
            "period_start": self.period_start.isoformat(),
            "price_per_sqm": self.price_per_sqm,
            "transaction_count": self.transaction_count,
            "source_name": self.source_name,
        }


@dataclass(frozen=True, slots=True)
class TransformResult:
    records: list[PriceRecord]
    skipped: int
    source_name: str
    building_type_mappings: list[BuildingTypeMapping] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Postal code geometries
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class PostalCodeFeature:
    postal_code: str
    name: str | None
    municipality: str | None
    geometry: dict[str, Any] | None
