"""
housing_prices.transformer — json-stat2 dataset → PriceRecord[].

Pure computation. No I/O, no state kept between calls: the same
payload and mapping table always produce the same records in the
same order.

Traversal order is period → postal code → building type, each in
category-index position order. The metric dimension is never
iterated; each tracked metric is read at

    base_offset + metric_position * metric_stride

Per-cell outcomes:
    - building type code not in the mapping table → skipped
    - both metrics unavailable (null or status-masked) → skipped
    - otherwise → one PriceRecord
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Sequence

from housing_prices.jsonstat import JsonStatDataset, SchemaError, dataset_summary, offset_for, parse_dataset
from housing_prices.models import (
    STATFIN_ROLES,
    BuildingTypeMapping,
    DimensionRoles,
    PriceRecord,
    RawDataset,
    TransformResult,
)

logger = logging.getLogger("hsp.transformer")

_YEAR_RE = re.compile(r"^\d{4}$")


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------

def period_start(code: str, dimension: str | None = None) -> datetime:
    """First instant (UTC) of the year named by a period code."""
    if not _YEAR_RE.match(code):
        raise SchemaError(
            "invalid_period",
            f"Period code '{code}' is not a four-digit year.",
            dimension,
        )
    return datetime(int(code), 1, 1, tzinfo=timezone.utc)


def round_count(value: float) -> int:
    """Nearest integer, halves rounded up."""
    return int(math.floor(value + 0.5))


def _metric_value(
    dataset: JsonStatDataset,
    base_offset: int,
    metric_position: int | None,
    metric_stride: int,
) -> float | None:
    if metric_position is None:
        return None
    return dataset.value_at(base_offset + metric_position * metric_stride)


# ---------------------------------------------------------------------------
# Transformation
# ---------------------------------------------------------------------------

def transform_dataset(
    raw: RawDataset,
    source_name: str,
    mappings: Sequence[BuildingTypeMapping],
    roles: DimensionRoles = STATFIN_ROLES,
) -> TransformResult:
    """Decode a json-stat2 payload into price records.

    Args:
        raw: Dataset payload from the extractor.
        source_name: Source identifier stamped on every record
            (e.g. "statfin_ashi_pxt_13mu").
        mappings: Source code → canonical building type table.
            Codes absent from it are skipped, not rejected.
        roles: Dimension and metric names for this source.

    Raises:
        SchemaError: if the payload fails any structural check.
    """
    dataset = parse_dataset(raw, roles)
    canonical_by_code = {m.source_code: m.canonical_code for m in mappings}

    dims = (
        dataset.axis(roles.period),
        dataset.axis(roles.area),
        dataset.axis(roles.category),
        dataset.axis(roles.metric),
    )
    metric_stride = dataset.strides[dims[3]]

    postal_codes = dataset.categories[roles.area]
    category_codes = dataset.categories[roles.category]
    # periods are only converted when they have cells to decode
    period_codes = dataset.categories[roles.period] if postal_codes and category_codes else []

    records: list[PriceRecord] = []
    skipped = 0
    unmapped: dict[str, int] = {}

    for pi, code in enumerate(period_codes):
        start = period_start(code, roles.period)
        for ai, postal_code in enumerate(postal_codes):
            for ci, category_code in enumerate(category_codes):
                building_type = canonical_by_code.get(category_code)
                if building_type is None:
                    unmapped[category_code] = unmapped.get(category_code, 0) + 1
                    skipped += 1
                    continue

                base = offset_for((pi, ai, ci, 0), dims, dataset.strides)
                price = _metric_value(dataset, base, dataset.primary_position, metric_stride)
                count = _metric_value(dataset, base, dataset.secondary_position, metric_stride)

                if price is None and count is None:
                    skipped += 1
                    continue

                records.append(PriceRecord(
                    postal_code=postal_code,
                    building_type=building_type,
                    period_start=start,
                    price_per_sqm=float(price) if price is not None else None,
                    transaction_count=round_count(count) if count is not None else None,
                    source_name=source_name,
                ))

    for code, cells in unmapped.items():
        logger.warning(json.dumps({
            "event": "unmapped_building_type",
            "source": source_name,
            "source_code": code,
            "cells_skipped": cells,
        }))

    logger.info(json.dumps({
        "event": "transform_complete",
        "source": source_name,
        "records": len(records),
        "skipped": skipped,
        **dataset_summary(dataset),
    }))

    return TransformResult(
        records=records,
        skipped=skipped,
        source_name=source_name,
        building_type_mappings=list(mappings),
    )


class DatasetTransformer:
    """Binds one raw dataset to its source name, mappings and roles."""

    def __init__(
        self,
        raw_dataset: RawDataset,
        source_name: str,
        mappings: Sequence[BuildingTypeMapping],
        roles: DimensionRoles = STATFIN_ROLES,
    ) -> None:
        self.raw_dataset = raw_dataset
        self.source_name = source_name
        self.mappings = list(mappings)
        self.roles = roles

    def transform(self) -> TransformResult:
        return transform_dataset(self.raw_dataset, self.source_name, self.mappings, self.roles)
