"""
tests/test_building_types.py — Canonical building types and mapping tables.
"""

from __future__ import annotations

import pytest

from housing_prices.building_types import (
    BUILDING_TYPES,
    STATFIN_BUILDING_TYPE_MAPPINGS,
    build_mappings_from_dimension,
    building_type_order,
)
from housing_prices.constants import CANONICAL_BUILDING_TYPES, VALID_BUILDING_TYPES
from housing_prices.jsonstat import JsonStatCategory
from housing_prices.models import BuildingTypeMapping


class TestCanonicalTypes:

    def test_reference_set_matches_constants(self):
        assert tuple(t.code for t in BUILDING_TYPES) == CANONICAL_BUILDING_TYPES

    def test_every_type_has_finnish_description(self):
        assert all(t.description_fi for t in BUILDING_TYPES)

    def test_display_order(self):
        assert sorted(["terraced", "all", "apartment_2r"], key=building_type_order) == [
            "all", "apartment_2r", "terraced",
        ]

    def test_unknown_code_sorts_last(self):
        assert building_type_order("villa") == len(CANONICAL_BUILDING_TYPES)


class TestMappings:

    def test_statfin_table(self):
        assert {m.source_code: m.canonical_code for m in STATFIN_BUILDING_TYPE_MAPPINGS} == {
            "1": "apartment_1r",
            "2": "apartment_2r",
            "3": "apartment_3r_plus",
            "5": "terraced",
        }

    def test_statfin_targets_are_canonical(self):
        assert all(m.canonical_code in VALID_BUILDING_TYPES for m in STATFIN_BUILDING_TYPE_MAPPINGS)

    def test_unknown_canonical_code_rejected(self):
        with pytest.raises(ValueError, match="villa"):
            BuildingTypeMapping("7", "Detached houses", "villa")

    def test_mapping_is_immutable(self):
        mapping = STATFIN_BUILDING_TYPE_MAPPINGS[0]
        with pytest.raises(AttributeError):
            mapping.canonical_code = "terraced"  # type: ignore[misc]


class TestBuildFromDimension:

    def test_position_order_and_labels(self):
        category = {
            "index": {"5": 1, "1": 0, "9": 2},
            "label": {"1": "Blocks of flats, one-room flat", "5": "Terraced houses total"},
        }
        mappings = build_mappings_from_dimension(category, {"1": "apartment_1r", "5": "terraced"})
        assert [(m.source_code, m.source_label, m.canonical_code) for m in mappings] == [
            ("1", "Blocks of flats, one-room flat", "apartment_1r"),
            ("5", "Terraced houses total", "terraced"),
            ("9", "9", "all"),
        ]

    def test_list_index(self):
        category = JsonStatCategory(index=["2", "3"], label={"2": "Two", "3": "Three"})
        mappings = build_mappings_from_dimension(category, {"2": "apartment_2r"})
        assert [m.canonical_code for m in mappings] == ["apartment_2r", "all"]

    def test_missing_index(self):
        assert build_mappings_from_dimension({"label": {"1": "One"}}, {"1": "apartment_1r"}) == []
