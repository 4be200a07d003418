"""
housing_prices.extractor — PxWeb dataset query and download.

Builds PxWeb selection queries from table metadata and POSTs them to
the table's API URL. The response body is returned untouched inside a
RawDataset; decoding is housing_prices.transformer's job.

Requires: requests
"""

from __future__ import annotations

import json
import logging

import requests

from housing_prices.constants import JSON_STAT2_FORMAT
from housing_prices.models import (
    DatasetMetadata,
    PxWebQuery,
    RawDataset,
    ResponseFormat,
    Selection,
    VariableSelection,
)
from housing_prices.pxweb_source import HTTP_TIMEOUT, check_response

logger = logging.getLogger("hsp.extractor")


# ---------------------------------------------------------------------------
# Query builders
# ---------------------------------------------------------------------------

def build_default_query(metadata: DatasetMetadata, format: str = JSON_STAT2_FORMAT) -> PxWebQuery:
    """Select every value of every variable."""
    return PxWebQuery(
        query=[
            VariableSelection(
                code=variable.code,
                selection=Selection(filter="item", values=list(variable.values)),
            )
            for variable in metadata.variables
        ],
        response=ResponseFormat(format=format),
    )


def build_latest_query(
    metadata: DatasetMetadata,
    top_n: int = 1,
    format: str = JSON_STAT2_FORMAT,
) -> PxWebQuery:
    """Select the latest ``top_n`` periods and every value of the rest."""
    if top_n < 1:
        raise ValueError(f"top_n must be at least 1, got {top_n}.")

    selections = []
    for variable in metadata.variables:
        if variable.time:
            selection = Selection(filter="top", values=[str(top_n)])
        else:
            selection = Selection(filter="item", values=list(variable.values))
        selections.append(VariableSelection(code=variable.code, selection=selection))

    return PxWebQuery(query=selections, response=ResponseFormat(format=format))


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class DatasetExtractor:
    """Downloads datasets from a PxWeb API."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def extract(
        self,
        metadata: DatasetMetadata,
        api_url: str,
        query: PxWebQuery | None = None,
        format: str = JSON_STAT2_FORMAT,
    ) -> RawDataset:
        """POST ``query`` (default: everything) and wrap the response.

        Raises:
            UpstreamFetchError: on a non-2xx response.
        """
        if query is None:
            query = build_default_query(metadata, format)

        logger.info(json.dumps({
            "event": "extract_start",
            "url": api_url,
            "variables": len(query.query),
            "format": query.response.format,
        }))

        response = self._session.post(
            api_url,
            data=query.model_dump_json(),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=HTTP_TIMEOUT,
        )
        check_response(response, "dataset")

        raw = RawDataset(format=query.response.format, data=response.text, metadata=metadata)
        logger.info(json.dumps({
            "event": "extract_complete",
            "format": raw.format,
            "bytes": len(raw.data),
        }))
        return raw
