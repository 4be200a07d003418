"""
Shared builders for json-stat2 payloads and fake HTTP objects.

Payloads are plain dicts so tests can break them in arbitrary ways
before serializing.
"""

from __future__ import annotations

import json
import math
from typing import Any, Optional, Sequence

import pytest

from housing_prices.constants import (
    METRIC_COUNT,
    METRIC_PRICE,
    STATFIN_AREA_DIMENSION,
    STATFIN_CATEGORY_DIMENSION,
    STATFIN_METRIC_DIMENSION,
    STATFIN_PERIOD_DIMENSION,
)
from housing_prices.models import RawDataset

PERIOD = STATFIN_PERIOD_DIMENSION
AREA = STATFIN_AREA_DIMENSION
CATEGORY = STATFIN_CATEGORY_DIMENSION
METRIC = STATFIN_METRIC_DIMENSION

DEFAULT_ORDER = (PERIOD, AREA, CATEGORY, METRIC)


def build_payload(
    periods: Sequence[str],
    areas: Sequence[str],
    categories: Sequence[str],
    metrics: Sequence[str] = (METRIC_PRICE, METRIC_COUNT),
    values: Optional[Any] = None,
    status: Optional[Any] = None,
    order: Sequence[str] = DEFAULT_ORDER,
) -> dict[str, Any]:
    """A json-stat2 dataset dict. ``values`` defaults to all nulls."""
    axes = {
        PERIOD: list(periods),
        AREA: list(areas),
        CATEGORY: list(categories),
        METRIC: list(metrics),
    }
    size = [len(axes[name]) for name in order]
    payload: dict[str, Any] = {
        "version": "2.0",
        "class": "dataset",
        "label": "Test table",
        "id": list(order),
        "size": size,
        "dimension": {
            name: {
                "label": name,
                "category": {
                    "index": {code: i for i, code in enumerate(axes[name])},
                    "label": {code: f"Label {code}" for code in axes[name]},
                },
            }
            for name in order
        },
        "value": values if values is not None else [None] * math.prod(size),
    }
    if status is not None:
        payload["status"] = status
    return payload


def cell_offset(payload: dict[str, Any], coords: dict[str, str]) -> int:
    """Flat offset of the cell named by ``coords`` (dimension -> code).

    Written independently of housing_prices.jsonstat so tests check
    the decoder's arithmetic rather than reuse it.
    """
    offset = 0
    multiplier = 1
    for name, size in reversed(list(zip(payload["id"], payload["size"]))):
        position = payload["dimension"][name]["category"]["index"][coords[name]]
        offset += position * multiplier
        multiplier *= size
    return offset


def set_cell(payload: dict[str, Any], coords: dict[str, str], value: Optional[float]) -> None:
    payload["value"][cell_offset(payload, coords)] = value


def to_raw(payload: Any, format: str = "json-stat2") -> RawDataset:
    return RawDataset(format=format, data=json.dumps(payload))


# ---------------------------------------------------------------------------
# Fake HTTP
# ---------------------------------------------------------------------------

class FakeResponse:
    """Just enough of requests.Response for the sources."""

    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        text: Optional[str] = None,
        url: str = "https://example.test/",
    ) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)
        self.url = url

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class FakeSession:
    """Records requests and answers GET/POST from queued responses."""

    def __init__(self, get: Sequence[FakeResponse] = (), post: Sequence[FakeResponse] = ()) -> None:
        self._get = list(get)
        self._post = list(post)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(("GET", url, kwargs))
        return self._get.pop(0)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(("POST", url, kwargs))
        return self._post.pop(0)


@pytest.fixture()
def scenario_a_payload() -> dict[str, Any]:
    """One period, one area, four mapped building types, both metrics."""
    return build_payload(
        periods=["2024"],
        areas=["00400"],
        categories=["1", "2", "3", "5"],
        values=[4668.0, 29, 5120.5, 41, 3900.0, 12, 3350.0, 8],
    )
