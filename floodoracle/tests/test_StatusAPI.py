"""Tests for the StatusAPI routes."""

from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeFetcher, FakeLedger
from fastapi.testclient import TestClient

from floodoracle.src.fetchers import SourceUnreachable, UsgsFetcher
from floodoracle.src.LedgerClient import ConnectionUnavailable
from floodoracle.src.OracleState import OracleState
from floodoracle.src.Scheduler import RunAlreadyInProgress, Scheduler
from floodoracle.src.StatusAPI import create_app


@pytest.fixture
def client(state: OracleState, scheduler: Scheduler) -> TestClient:
    return TestClient(create_app(state, scheduler))


class TestHealth:
    """Test the liveness endpoint."""

    @pytest.mark.parametrize("path", ["/health", "/api/health"])
    def test_health(self, client: TestClient, path: str) -> None:
        """Liveness answers at both paths."""
        response = client.get(path)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert "timestamp" in body


class TestStatus:
    """Test the cached status view."""

    def test_initializing(self, client: TestClient) -> None:
        """Status before the first run is initializing."""
        response = client.get("/status")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "initializing"
        assert body["value"] is None
        assert body["ledgerBackend"] == "fake"

    def test_flood_data_alias(self, client: TestClient) -> None:
        """The legacy path renders the same body."""
        client.post("/manual-update")
        assert client.get("/api/flood-data").json() == client.get("/status").json()

    def test_status_does_not_touch_ledger(
        self, client: TestClient, ledger: FakeLedger
    ) -> None:
        """Status is served from cache without ledger calls."""
        client.get("/status")
        client.get("/api/status")
        assert ledger.connects == 0


class TestManualUpdate:
    """Test the on-demand pipeline run."""

    def test_success(self, client: TestClient, ledger: FakeLedger) -> None:
        """A manual run returns the new reading."""
        response = client.post("/api/manual-update")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["value"] == 3.81
        assert body["scaledValue"] == 381000000000
        assert body["status"] == "active"
        assert body["ledgerWriteStatus"] == "Ok"
        assert body["siteInfo"]["siteId"] == "01646500"
        assert ledger.writes == [381000000000]

    def test_ledger_failure_still_serves_reading(
        self, client: TestClient, ledger: FakeLedger
    ) -> None:
        """A ledger failure still returns the reading."""
        ledger.connect_error = ConnectionUnavailable("connection refused")
        response = client.post("/manual-update")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["value"] == 3.81
        assert body["status"] == "partial"
        assert body["ledgerWriteStatus"] == "Failed"
        assert "connection refused" in body["error"]

    def test_fetch_failure(self, client: TestClient, fetcher: FakeFetcher) -> None:
        """A fetch failure is reported in the body."""
        fetcher.results = [SourceUnreachable("Request timeout")]
        response = client.post("/manual-update")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["status"] == "error"
        assert body["error"] == "Request timeout"

    def test_malformed_source_envelope(self, state: OracleState, ledger: FakeLedger) -> None:
        """A malformed upstream body is a failed run, not a server error."""
        fetcher = UsgsFetcher()
        payload = {
            "value": {
                "timeSeries": [
                    {
                        "sourceInfo": ["x"],
                        "variable": {"noDataValue": -999999.0},
                        "values": [{"value": [{"value": "3.81", "dateTime": "2024-01-01T00:00:00Z"}]}],
                    }
                ]
            }
        }
        client = TestClient(create_app(state, Scheduler(fetcher, ledger, state)))

        with patch.object(fetcher, "_get_json", AsyncMock(return_value=payload)):
            response = client.post("/manual-update")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["status"] == "error"
        assert "sourceInfo" in body["error"]

    def test_run_in_progress(self, state: OracleState) -> None:
        """A run in flight answers 409."""
        class BusyScheduler:
            async def run_now(self):
                raise RunAlreadyInProgress("A run is already in progress")

        client = TestClient(create_app(state, BusyScheduler()))
        response = client.post("/manual-update")

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "RunAlreadyInProgress"
