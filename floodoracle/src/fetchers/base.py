"""Fetcher interface for gauge time-series providers.

A fetcher turns one provider request into a Measurement. Every failure is
reported as a FetcherError subclass so the scheduler can keep the
last-known-good reading:

    - SourceUnreachable: network error, timeout or non-2xx answer
    - MalformedResponse: body is not JSON or lacks the expected fields
    - UnparsableValue: the reading itself is not a usable number

All fetchers share one httpx.AsyncClient for the lifetime of the process.
New providers subclass BaseFetcher, set ``name`` and are added to the
registry with ``@register_fetcher``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from ..Measurement import Measurement

logger = logging.getLogger(__name__)

USER_AGENT = "flood-oracle-bridge/0.1"


class FetcherError(Exception):
    """Base exception for data source errors."""

    pass


class SourceUnreachable(FetcherError):
    """Raised when the provider cannot be reached in time."""

    pass


class SourceHTTPError(SourceUnreachable):
    """Raised when the provider answers with a non-2xx status.

    :ivar status_code: HTTP status returned by the provider.
    """

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        super().__init__(f"Provider returned HTTP {status_code}: {body}")


class MalformedResponse(FetcherError):
    """Raised when the response lacks the expected structure."""

    pass


class UnparsableValue(FetcherError):
    """Raised when the reading in the response is not numeric."""

    pass


class BaseFetcher(ABC):
    """Abstract base class for measurement fetchers.

    :cvar name: Registry key of the provider.
    :cvar DEFAULT_TIMEOUT: Per-request timeout in seconds.
    :ivar timeout: Per-request timeout in seconds.
    """

    _client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    def __init__(self, timeout: float | None = None, **kwargs: Any):
        """Initialize the fetcher.

        :param timeout: Per-request timeout in seconds (default: 10).
        """
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Return the process-wide client, creating it on first use."""
        if BaseFetcher._client is None or BaseFetcher._client.is_closed:
            BaseFetcher._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                limits=httpx.Limits(max_connections=4, max_keepalive_connections=2),
                follow_redirects=True,
            )
        return BaseFetcher._client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the process-wide client if it is open."""
        client, BaseFetcher._client = BaseFetcher._client, None
        if client is not None and not client.is_closed:
            await client.aclose()

    @property
    def description(self) -> str:
        return self.name

    @abstractmethod
    async def fetch_latest(self) -> Measurement:
        """Fetch the most recent measurement.

        :returns: Latest Measurement.
        :raises SourceUnreachable: On network errors, timeouts or non-2xx.
        :raises MalformedResponse: If the response structure is unexpected.
        :raises UnparsableValue: If the reading is not numeric.
        """

    async def _get(self, url: str, *, params: dict | None = None) -> httpx.Response:
        """GET ``url`` with the shared client and the fetcher timeout.

        :raises SourceHTTPError: On a non-2xx answer.
        :raises SourceUnreachable: On transport errors and timeouts.
        """
        try:
            response = await self.get_shared_client().get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise SourceUnreachable(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise SourceUnreachable(f"Request failed: {e}") from e

        logger.debug(f"[{self.name}] GET {response.request.url} -> {response.status_code}")
        if response.is_error:
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response

    async def _get_json(self, url: str, *, params: dict | None = None) -> Any:
        """GET ``url`` and decode the body as JSON.

        :raises MalformedResponse: If the body is not JSON.
        """
        response = await self._get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"Response is not JSON: {e}") from e


FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Class decorator adding a fetcher to FETCHER_REGISTRY under its name.

    :raises ValueError: If the class defines no name.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(name: str, **kwargs: Any) -> BaseFetcher:
    """Instantiate a registered fetcher.

    :param name: Registry key (e.g., "usgs").
    :param kwargs: Options forwarded to the fetcher constructor.
    :returns: Fetcher instance.
    :raises ValueError: If the name is not registered.
    """
    try:
        fetcher_cls = FETCHER_REGISTRY[name]
    except KeyError:
        available = ", ".join(get_available_fetchers())
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}") from None
    return fetcher_cls(**kwargs)


def get_available_fetchers() -> list[str]:
    return sorted(FETCHER_REGISTRY)
