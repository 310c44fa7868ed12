"""Measurement: A single gauge reading produced by a fetcher."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Measurement:
    """Latest reading reported by a time-series provider.

    :ivar value_feet: Gauge height in feet.
    :ivar observed_at: Time the provider recorded the reading.
    :ivar source_name: Name of the monitoring site.
    :ivar source_id: Provider identifier of the monitoring site.
    :ivar provider: Human readable name of the data provider.
    """

    value_feet: float
    observed_at: datetime
    source_name: str
    source_id: str
    provider: str = ""

    def __str__(self) -> str:
        return (
            f"{self.value_feet} ft at {self.observed_at.isoformat()} "
            f"({self.source_name} [{self.source_id}])"
        )
