"""
housing_prices.geometry_source — Postal code area geometries.

Fetches postal code polygons from Statistics Finland's WFS service as
GeoJSON in WGS84 (EPSG:4326), ready for web maps.

Requires: requests
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

import requests

from housing_prices.constants import WFS_BASE_URL, WFS_POSTAL_CODE_LAYER, WFS_SRS_NAME
from housing_prices.models import PostalCodeFeature
from housing_prices.pxweb_source import HTTP_TIMEOUT, check_response

logger = logging.getLogger("hsp.geometry")

_POSTAL_CODE_RE = re.compile(r"^\d{5}$")


def _base_params() -> dict[str, str]:
    return {
        "service": "WFS",
        "version": "2.0.0",
        "request": "GetFeature",
        "typeName": WFS_POSTAL_CODE_LAYER,
        "outputFormat": "application/json",
        "srsName": WFS_SRS_NAME,
    }


def parse_features(payload: dict[str, Any]) -> list[PostalCodeFeature]:
    features = []
    for feature in payload.get("features") or []:
        props = feature.get("properties") or {}
        features.append(PostalCodeFeature(
            postal_code=str(props.get("postinumeroalue", "")),
            name=props.get("nimi"),
            municipality=props.get("kunta"),
            geometry=feature.get("geometry"),
        ))
    return features


class PostalCodeGeometrySource:
    """WFS client for the postal code area layer."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def fetch_all(self) -> list[PostalCodeFeature]:
        """All postal code areas (about 3000) in one request."""
        payload = self._get(_base_params())
        features = parse_features(payload)
        logger.info(json.dumps({
            "event": "geometries_fetched",
            "received": len(features),
            "total": payload.get("totalFeatures"),
        }))
        return features

    def fetch_for_codes(self, codes: Sequence[str]) -> list[PostalCodeFeature]:
        """Areas for the given postal codes, filtered server-side.

        Raises:
            ValueError: if a code is not five digits.
        """
        if not codes:
            return []
        invalid = [code for code in codes if not _POSTAL_CODE_RE.match(code)]
        if invalid:
            raise ValueError(f"Not a postal code: {', '.join(map(repr, invalid))}.")
        quoted = ",".join(f"'{code}'" for code in codes)
        params = _base_params()
        params["CQL_FILTER"] = f"postinumeroalue IN ({quoted})"
        features = parse_features(self._get(params))
        logger.info(json.dumps({
            "event": "geometries_fetched",
            "requested": len(codes),
            "received": len(features),
        }))
        return features

    def _get(self, params: dict[str, str]) -> dict[str, Any]:
        response = self._session.get(WFS_BASE_URL, params=params, timeout=HTTP_TIMEOUT)
        check_response(response, "geometries")
        return response.json()
