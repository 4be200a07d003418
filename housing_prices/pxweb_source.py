"""
housing_prices.pxweb_source — PxWeb table metadata fetch.

Talks to Statistics Finland's PxWeb API (v1). A table is addressed
either by its UI URL (.../PXWeb/pxweb/...) or its API URL
(.../PXWeb/api/v1/...); both resolve to the same API endpoint.

Requires: requests
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import requests

from housing_prices.models import DatasetMetadata, Variable

logger = logging.getLogger("hsp.source")

HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "120"))


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class UpstreamFetchError(RuntimeError):
    """Raised when an upstream API answers with a non-success status."""

    def __init__(self, url: str, status_code: int, body: str = "", what: str = "request") -> None:
        self.url = url
        self.status_code = status_code
        self.body = body
        detail = f"Failed to fetch {what}. Status code: {status_code}"
        if body:
            detail += f", Body: {body[:500]}"
        super().__init__(detail)


def check_response(response: requests.Response, what: str) -> None:
    """Raise UpstreamFetchError unless ``response`` is a 2xx."""
    if response.ok:
        return
    body = response.text or ""
    logger.error(json.dumps({
        "event": "upstream_fetch_failed",
        "what": what,
        "url": response.url,
        "status": response.status_code,
    }))
    raise UpstreamFetchError(response.url, response.status_code, body, what)


# ---------------------------------------------------------------------------
# URL handling
# ---------------------------------------------------------------------------

def convert_to_api_url(url: str) -> str:
    """Map a PxWeb UI URL to its API URL. API URLs pass through."""
    clean = url.rstrip("/")
    if "/api/v1/" in clean:
        return clean
    return clean.replace("/PXWeb/pxweb/", "/PXWeb/api/v1/")


def extract_table_name(url: str) -> str:
    """Table identifier between the last '/' and '.px'.

    >>> extract_table_name("https://host/PXWeb/api/v1/en/StatFin/statfin_ashi_pxt_13mu.px")
    'statfin_ashi_pxt_13mu'
    """
    px_pos = url.rfind(".px")
    slash_pos = url.rfind("/", 0, px_pos) if px_pos != -1 else -1
    if px_pos == -1 or slash_pos == -1:
        raise ValueError(
            "Failed to find slash OR .px in the given URL, only valid URLs "
            f"ending with .px are accepted. URL that was used: {url}"
        )
    return url[slash_pos + 1:px_pos]


# ---------------------------------------------------------------------------
# Metadata source
# ---------------------------------------------------------------------------

def parse_metadata(payload: dict[str, Any]) -> DatasetMetadata:
    """Build DatasetMetadata from a PxWeb metadata response body."""
    variables = [
        Variable(
            code=str(v.get("code") or ""),
            text=str(v.get("text") or ""),
            values=[str(x) for x in v.get("values") or []],
            value_texts=[str(x) for x in v.get("valueTexts") or []],
            elimination=bool(v.get("elimination", False)),
            time=bool(v.get("time", False)),
        )
        for v in payload.get("variables") or []
    ]
    return DatasetMetadata(
        title=payload.get("title") or "Unknown",
        variables=variables,
        source=payload.get("source"),
        updated=payload.get("updated"),
        description=payload.get("description"),
    )


class PxWebDatasetSource:
    """One PxWeb table: its name, API URL and metadata."""

    def __init__(self, dataset_url: str, session: requests.Session | None = None) -> None:
        self.dataset_url = dataset_url
        self.dataset_name = extract_table_name(dataset_url)
        self.api_url = convert_to_api_url(dataset_url)
        self._session = session or requests.Session()

    def fetch_metadata(self) -> DatasetMetadata:
        logger.info(json.dumps({"event": "metadata_fetch", "url": self.api_url}))
        response = self._session.get(
            self.api_url,
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT,
        )
        check_response(response, "metadata")

        metadata = parse_metadata(response.json())
        logger.info(json.dumps({
            "event": "metadata_fetched",
            "title": metadata.title,
            "variables": len(metadata.variables),
        }))
        return metadata
