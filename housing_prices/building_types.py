"""
housing_prices.building_types — Canonical building types and source mappings.

BUILDING_TYPES is the reference set every source maps onto.
Each source ships its own mapping table; to onboard a new source, add
a table next to STATFIN_BUILDING_TYPE_MAPPINGS that points its codes
at the same canonical codes.
"""

from __future__ import annotations

from typing import Mapping

from housing_prices.constants import BUILDING_TYPE_ALL, CANONICAL_BUILDING_TYPES
from housing_prices.jsonstat import JsonStatCategory
from housing_prices.models import BuildingTypeInfo, BuildingTypeMapping

BUILDING_TYPES: tuple[BuildingTypeInfo, ...] = (
    BuildingTypeInfo("all", "All building types", "Kaikki talotyypit"),
    BuildingTypeInfo("apartment_1r", "Block of flats, one-room flat", "Kerrostalo, yksiö"),
    BuildingTypeInfo("apartment_2r", "Block of flats, two-room flat", "Kerrostalo, kaksio"),
    BuildingTypeInfo("apartment_3r_plus", "Block of flats, three rooms or more", "Kerrostalo, kolmio+"),
    BuildingTypeInfo("terraced", "Terraced houses", "Rivitalo"),
)

# Statistics Finland (statfin_ashi_pxt_13mu), dimension "Talotyyppi".
STATFIN_BUILDING_TYPE_MAPPINGS: tuple[BuildingTypeMapping, ...] = (
    BuildingTypeMapping("1", "Blocks of flats, one-room flat", "apartment_1r"),
    BuildingTypeMapping("2", "Blocks of flats, two-room flat", "apartment_2r"),
    BuildingTypeMapping("3", "Blocks of flats, three-room flat+", "apartment_3r_plus"),
    BuildingTypeMapping("5", "Terraced houses total", "terraced"),
)


def building_type_order(code: str) -> int:
    """Display rank of a canonical code; unknown codes sort last."""
    try:
        return CANONICAL_BUILDING_TYPES.index(code)
    except ValueError:
        return len(CANONICAL_BUILDING_TYPES)


def build_mappings_from_dimension(
    category: JsonStatCategory | Mapping[str, object],
    code_to_canonical: Mapping[str, str],
) -> list[BuildingTypeMapping]:
    """Derive a mapping table from a json-stat2 dimension's category block.

    Labels come from the dimension itself; codes missing from
    ``code_to_canonical`` map to the "all" building type. Output is in
    category position order.
    """
    if not isinstance(category, JsonStatCategory):
        category = JsonStatCategory.model_validate(category)
    if category.index is None:
        return []

    if isinstance(category.index, list):
        codes = list(category.index)
    else:
        codes = [code for code, _ in sorted(category.index.items(), key=lambda item: item[1])]

    return [
        BuildingTypeMapping(
            source_code=code,
            source_label=category.label.get(code, code),
            canonical_code=code_to_canonical.get(code, BUILDING_TYPE_ALL),
        )
        for code in codes
    ]
