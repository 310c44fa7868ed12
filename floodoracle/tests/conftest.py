"""Shared fixtures: in-memory fetcher and ledger doubles."""

import asyncio
from datetime import datetime, timezone

import pytest

from floodoracle.src.fetchers import BaseFetcher
from floodoracle.src.LedgerClient import LedgerClient, WriteReceipt
from floodoracle.src.Measurement import Measurement
from floodoracle.src.OracleState import OracleState
from floodoracle.src.Scheduler import Scheduler

NOW = datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc)


def make_measurement(value_feet: float = 3.81) -> Measurement:
    return Measurement(
        value_feet=value_feet,
        observed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source_name="POTOMAC RIVER NEAR WASH, DC LITTLE FALLS PUMP STA",
        source_id="01646500",
        provider="USGS Water Data",
    )


class FakeFetcher(BaseFetcher):
    """Returns queued results; the last one repeats. Exceptions are raised."""

    name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self.results: list = [make_measurement()]
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def fetch_latest(self) -> Measurement:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeLedger(LedgerClient):
    """Ledger kept in memory with injectable failures."""

    name = "fake"

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.value: int | None = None
        self.threshold = 1200000000000
        self.connect_error: Exception | None = None
        self.write_error: Exception | None = None
        self.threshold_error: Exception | None = None
        self.connects = 0
        self.writes: list[int] = []

    def _connect(self) -> object:
        self.connects += 1
        if self.connect_error is not None:
            raise self.connect_error
        return object()

    def _call_write_value(self, conn: object, scaled: int) -> WriteReceipt:
        if self.write_error is not None:
            raise self.write_error
        self.value = scaled
        self.writes.append(scaled)
        return WriteReceipt(backend=self.name, scaled=scaled, reference="0xabc", block_number=7)

    def _call_read_value(self, conn: object) -> int:
        return self.value if self.value is not None else 0

    def _call_read_threshold(self, conn: object) -> int:
        if self.threshold_error is not None:
            raise self.threshold_error
        return self.threshold

    def _call_write_threshold(self, conn: object, scaled: int) -> WriteReceipt:
        self.threshold = scaled
        return WriteReceipt(backend=self.name, scaled=scaled)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(confirmation_timeout=5.0)


@pytest.fixture
def state() -> OracleState:
    return OracleState(ledger_backend="fake")


@pytest.fixture
def scheduler(fetcher: FakeFetcher, ledger: FakeLedger, state: OracleState) -> Scheduler:
    return Scheduler(fetcher, ledger, state, interval=300, clock=lambda: NOW)
