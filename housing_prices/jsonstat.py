"""
housing_prices.jsonstat — json-stat2 envelope parsing and flat-array indexing.

A json-stat2 dataset stores every observation in one flat ``value``
array laid out row-major over the dimensions listed in ``id``:

    offset = i_0 * stride_0 + i_1 * stride_1 + ... + i_n * stride_n
    stride_n = 1,  stride_k = stride_{k+1} * size_{k+1}

This module owns the schema check and the index arithmetic. It knows
nothing about building types or price records; see
housing_prices.transformer for the traversal that produces them.

Structural problems raise SchemaError before any value is read.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError

from housing_prices.constants import JSON_STAT2_FORMAT, JSON_STAT_DATASET_CLASS
from housing_prices.models import DimensionRoles, RawDataset


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class SchemaError(ValueError):
    """Raised when a payload cannot be decoded as a json-stat2 dataset.

    ``expectation`` names the check that failed (e.g. "missing_dimensions");
    ``dimension`` is set when the failure concerns a single dimension.
    """

    def __init__(
        self,
        expectation: str,
        detail: str,
        dimension: str | None = None,
    ) -> None:
        self.expectation = expectation
        self.detail = detail
        self.dimension = dimension
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Envelope schema
# ---------------------------------------------------------------------------

class JsonStatCategory(BaseModel):
    model_config = {"extra": "ignore"}

    index: dict[str, int] | list[str] | None = None
    label: dict[str, str] = Field(default_factory=dict)


class JsonStatDimension(BaseModel):
    model_config = {"extra": "ignore"}

    label: str | None = None
    category: JsonStatCategory | None = None


class JsonStatEnvelope(BaseModel):
    """The subset of a json-stat2 dataset document the decoder reads."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    class_: str = Field(alias="class")
    id: list[str]
    size: list[int]
    dimension: dict[str, JsonStatDimension]
    value: list[float | None] | dict[str, float | None] = Field(
        default_factory=list,
    )
    # any entry masks its offset, whatever the status code is
    status: dict[str, Any] | list[Any] | None = None


# ---------------------------------------------------------------------------
# Stride table
# ---------------------------------------------------------------------------

def compute_strides(sizes: Sequence[int]) -> list[int]:
    """Row-major strides for the given dimension sizes.

    >>> compute_strides([2, 3, 4])
    [12, 4, 1]
    """
    if not sizes:
        return []
    strides = [0] * len(sizes)
    strides[-1] = 1
    for i in range(len(sizes) - 2, -1, -1):
        strides[i] = strides[i + 1] * sizes[i + 1]
    return strides


def offset_for(
    indices: Sequence[int],
    dims: Sequence[int],
    strides: Sequence[int],
) -> int:
    """Flat offset of a cell.

    ``indices[k]`` is the category position along dimension ``dims[k]``
    (a position in the envelope's ``id`` list). Dimensions not named in
    ``dims`` contribute position 0.
    """
    if len(indices) != len(dims):
        raise ValueError(
            f"indices and dims differ in length ({len(indices)} != {len(dims)})"
        )
    return sum(index * strides[dim] for index, dim in zip(indices, dims))


# ---------------------------------------------------------------------------
# Decoded dataset
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class JsonStatDataset:
    """A schema-checked json-stat2 dataset with its lookups precomputed.

    ``categories[name]`` lists the dimension's category codes in position
    order. ``primary_position`` / ``secondary_position`` are positions in
    the metric dimension, or None when the dataset lacks that metric.
    """

    dimension_ids: tuple[str, ...]
    sizes: tuple[int, ...]
    strides: tuple[int, ...]
    categories: dict[str, list[str]]
    labels: dict[str, dict[str, str]]
    values: list[float | None] | dict[str, float | None]
    status: dict[str, Any]
    roles: DimensionRoles
    primary_position: int | None
    secondary_position: int | None

    def axis(self, name: str) -> int:
        """Position of dimension ``name`` in the envelope's ``id`` list."""
        return self.dimension_ids.index(name)

    def value_at(self, offset: int) -> float | None:
        """Value at a flat offset, or None if unavailable.

        Any status entry for the offset masks the value, whatever the
        array holds there.
        """
        if str(offset) in self.status:
            return None
        if isinstance(self.values, dict):
            value = self.values.get(str(offset))
        elif 0 <= offset < len(self.values):
            value = self.values[offset]
        else:
            value = None
        if value is None or math.isnan(value):
            return None
        return value


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_dataset(raw: RawDataset, roles: DimensionRoles) -> JsonStatDataset:
    """Validate ``raw`` and build dimension lookups and the stride table.

    Raises:
        SchemaError: on any structural problem. Nothing is decoded
            from a payload that fails here.
    """
    if raw.format != JSON_STAT2_FORMAT:
        raise SchemaError(
            "unsupported_format",
            f"Unsupported dataset format '{raw.format}', expected '{JSON_STAT2_FORMAT}'.",
        )

    try:
        payload = json.loads(raw.data)
    except json.JSONDecodeError as exc:
        raise SchemaError("invalid_json", f"Dataset body is not valid JSON: {exc.msg}.") from exc

    if not isinstance(payload, dict):
        raise SchemaError("invalid_envelope", "Dataset body is not a JSON object.")

    declared_class = payload.get("class")
    if declared_class != JSON_STAT_DATASET_CLASS:
        raise SchemaError(
            "unexpected_class",
            f"Unexpected json-stat2 class: {declared_class!r}.",
        )

    try:
        envelope = JsonStatEnvelope.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", []))
        raise SchemaError(
            "invalid_envelope",
            f"Malformed json-stat2 dataset at '{location}': {first.get('msg', 'invalid')}.",
        ) from exc

    dimension_ids = tuple(envelope.id)
    sizes = tuple(envelope.size)

    missing = [name for name in roles.required() if name not in dimension_ids]
    if missing:
        raise SchemaError(
            "missing_dimensions",
            f"Missing expected dimension(s): {', '.join(missing)}. "
            f"Found: {', '.join(dimension_ids)}.",
        )

    if len(sizes) != len(dimension_ids):
        raise SchemaError(
            "size_mismatch",
            f"'size' has {len(sizes)} entries but 'id' declares {len(dimension_ids)} dimensions.",
        )
    for name, size in zip(dimension_ids, sizes):
        if size < 0:
            raise SchemaError("size_mismatch", f"Dimension '{name}' has negative size {size}.", name)

    categories: dict[str, list[str]] = {}
    labels: dict[str, dict[str, str]] = {}
    for name, size in zip(dimension_ids, sizes):
        codes = _ordered_codes(name, envelope.dimension.get(name))
        if len(codes) != size:
            raise SchemaError(
                "size_mismatch",
                f"Dimension '{name}' lists {len(codes)} categories but declares size {size}.",
                name,
            )
        categories[name] = codes
        category = envelope.dimension[name].category
        labels[name] = dict(category.label) if category is not None else {}

    total = math.prod(sizes)
    if isinstance(envelope.value, list) and len(envelope.value) != total:
        raise SchemaError(
            "value_length_mismatch",
            f"Value array has {len(envelope.value)} entries, dimension sizes imply {total}.",
        )

    metric_codes = categories[roles.metric]
    primary = _position_of(metric_codes, roles.primary_metric)
    secondary = _position_of(metric_codes, roles.secondary_metric)
    if primary is None and secondary is None:
        raise SchemaError(
            "missing_metrics",
            f"Neither '{roles.primary_metric}' nor '{roles.secondary_metric}' found "
            f"in dimension '{roles.metric}'. Available: {', '.join(metric_codes)}.",
            roles.metric,
        )

    return JsonStatDataset(
        dimension_ids=dimension_ids,
        sizes=sizes,
        strides=tuple(compute_strides(sizes)),
        categories=categories,
        labels=labels,
        values=envelope.value,
        status=_normalize_status(envelope.status),
        roles=roles,
        primary_position=primary,
        secondary_position=secondary,
    )


def _ordered_codes(name: str, dimension: JsonStatDimension | None) -> list[str]:
    """Category codes of one dimension, ordered by position."""
    if dimension is None or dimension.category is None or dimension.category.index is None:
        raise SchemaError(
            "missing_category_index",
            f"Dimension '{name}' missing category index.",
            name,
        )

    index = dimension.category.index
    if isinstance(index, list):
        if len(set(index)) != len(index):
            raise SchemaError(
                "inconsistent_category_index",
                f"Dimension '{name}' repeats a category code.",
                name,
            )
        return list(index)

    ordered = sorted(index.items(), key=lambda item: item[1])
    positions = [position for _, position in ordered]
    if positions != list(range(len(ordered))):
        raise SchemaError(
            "inconsistent_category_index",
            f"Dimension '{name}' category positions are not unique and contiguous from 0.",
            name,
        )
    return [code for code, _ in ordered]


def _position_of(codes: list[str], code: str) -> int | None:
    try:
        return codes.index(code)
    except ValueError:
        return None


def _normalize_status(
    status: dict[str, Any] | list[Any] | None,
) -> dict[str, Any]:
    """Sparse offset → status mapping, whatever form the envelope used.

    Dict form: every key is masked, even one whose status is null.
    List form: null entries mean "no status".
    """
    if status is None:
        return {}
    if isinstance(status, dict):
        return dict(status)
    return {str(offset): code for offset, code in enumerate(status) if code is not None}


def dataset_summary(dataset: JsonStatDataset) -> dict[str, Any]:
    """Compact description for logs."""
    return {
        "dimensions": list(dataset.dimension_ids),
        "sizes": list(dataset.sizes),
        "masked_cells": len(dataset.status),
    }
