"""USGS Water Services fetcher.

Endpoint: https://waterservices.usgs.gov/nwis/iv/
Parameter: 00065 (gage height, feet)
Rate Limit: Generous (no key required)

The instantaneous values service wraps readings in a nested envelope::

    {"value": {"timeSeries": [{
        "sourceInfo": {"siteName": ..., "siteCode": [{"value": ...}]},
        "variable": {"noDataValue": -999999.0},
        "values": [{"value": [{"value": "3.81", "dateTime": "..."}]}]
    }]}}
"""

import logging
import math
from datetime import datetime
from typing import Any

from ..Measurement import Measurement
from .base import BaseFetcher, MalformedResponse, UnparsableValue, register_fetcher

logger = logging.getLogger(__name__)

# Potomac River near Wash, DC Little Falls Pump Station
DEFAULT_SITE_ID = "01646500"
# Gage height, feet
DEFAULT_PARAMETER_CD = "00065"

PROVIDER_NAME = "USGS Water Data"


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO 8601 timestamp as published by USGS.

    :param value: Timestamp string, e.g. "2024-01-01T00:00:00.000-05:00".
    :returns: Timezone-aware datetime when an offset is present.
    :raises MalformedResponse: If the timestamp cannot be parsed.
    """
    if not isinstance(value, str) or not value:
        raise MalformedResponse(f"Missing or invalid dateTime: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise MalformedResponse(f"Invalid dateTime {value!r}: {e}") from e


def _object_field(parent: dict, key: str) -> dict:
    value = parent.get(key) or {}
    if not isinstance(value, dict):
        raise MalformedResponse(f"{key} is not an object: {value!r}")
    return value


def parse_time_series(data: Any, site_id: str = DEFAULT_SITE_ID) -> Measurement:
    """Extract the latest reading from a USGS IV JSON document.

    :param data: Decoded JSON body.
    :param site_id: Site id to report when the body does not carry one.
    :returns: Latest Measurement.
    :raises MalformedResponse: If timeSeries[0].values[0].value[0] is absent.
    :raises UnparsableValue: If the reading is not numeric or is the
        provider's no-data sentinel.
    """
    try:
        series = data["value"]["timeSeries"][0]
        latest = series["values"][0]["value"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedResponse(f"Unexpected time series structure: {e!r}") from e

    if not isinstance(latest, dict) or "value" not in latest:
        raise MalformedResponse(f"Reading has no value field: {latest!r}")

    raw_value = latest["value"]
    try:
        value_feet = float(raw_value)
    except (TypeError, ValueError) as e:
        raise UnparsableValue(f"Reading is not numeric: {raw_value!r}") from e

    variable = _object_field(series, "variable")
    no_data = variable.get("noDataValue")
    if no_data is not None:
        try:
            no_data = float(no_data)
        except (TypeError, ValueError) as e:
            raise MalformedResponse(f"Invalid noDataValue: {no_data!r}") from e
        if not math.isnan(value_feet) and value_feet == no_data:
            raise UnparsableValue(f"Provider reported no data ({raw_value!r})")

    observed_at = parse_datetime(latest.get("dateTime"))

    source_info = _object_field(series, "sourceInfo")
    site_codes = source_info.get("siteCode") or []
    if not isinstance(site_codes, list):
        raise MalformedResponse(f"sourceInfo.siteCode is not a list: {site_codes!r}")
    reported_id = site_codes[0].get("value") if site_codes and isinstance(site_codes[0], dict) else None

    return Measurement(
        value_feet=value_feet,
        observed_at=observed_at,
        source_name=source_info.get("siteName") or "",
        source_id=reported_id or site_id,
        provider=PROVIDER_NAME,
    )


@register_fetcher
class UsgsFetcher(BaseFetcher):
    """Fetcher for the USGS Instantaneous Values service.

    :ivar site_id: USGS site number.
    :ivar parameter_cd: USGS parameter code.
    :ivar endpoint: Full request URL; overrides site_id/parameter_cd.
    """

    name = "usgs"
    BASE_URL = "https://waterservices.usgs.gov/nwis/iv/"

    def __init__(
        self,
        timeout: float | None = None,
        site_id: str = DEFAULT_SITE_ID,
        parameter_cd: str = DEFAULT_PARAMETER_CD,
        endpoint: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(timeout=timeout, **kwargs)
        self.site_id = site_id
        self.parameter_cd = parameter_cd
        self.endpoint = endpoint

    @property
    def description(self) -> str:
        if self.endpoint:
            return f"usgs ({self.endpoint})"
        return f"usgs (site {self.site_id}, parameter {self.parameter_cd})"

    def _request(self) -> tuple[str, dict | None]:
        if self.endpoint:
            return self.endpoint, None
        params = {
            "format": "json",
            "sites": self.site_id,
            "parameterCd": self.parameter_cd,
            "siteStatus": "all",
        }
        return self.BASE_URL, params

    async def fetch_latest(self) -> Measurement:
        """Fetch the latest gauge height from USGS.

        :returns: Latest Measurement.
        """
        url, params = self._request()
        data = await self._get_json(url, params=params)
        measurement = parse_time_series(data, self.site_id)
        logger.debug(f"[usgs] Latest reading: {measurement}")
        return measurement
