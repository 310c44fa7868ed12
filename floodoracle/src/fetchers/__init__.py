"""
Gauge data fetchers.

    from floodoracle.src.fetchers import get_fetcher

    fetcher = get_fetcher("usgs", site_id="01646500", timeout=10.0)
    measurement = await fetcher.fetch_latest()
"""

from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherError,
    MalformedResponse,
    SourceHTTPError,
    SourceUnreachable,
    UnparsableValue,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Registers "usgs"
from .usgs import UsgsFetcher

__all__ = [
    "FETCHER_REGISTRY",
    "BaseFetcher",
    "FetcherError",
    "MalformedResponse",
    "SourceHTTPError",
    "SourceUnreachable",
    "UnparsableValue",
    "UsgsFetcher",
    "get_available_fetchers",
    "get_fetcher",
    "register_fetcher",
]
