"""OracleState: Last-known-good snapshot shared by the scheduler and the API.

The scheduler is the only writer. Readers receive an immutable
OracleSnapshot copied under a short-lived lock, so no lock is ever held
across a network call or an HTTP response.

.. code-block:: python

    >>> state = OracleState()
    >>> state.snapshot().status
    'initializing'
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

from .Measurement import Measurement
from .UnitConverter import SCALE, to_feet


class LedgerWriteStatus(str, Enum):
    """Outcome of the most recent ledger write."""

    OK = "Ok"
    DEGRADED = "Degraded"
    FAILED = "Failed"


class RunOutcome(str, Enum):
    """Terminal state of a pipeline run."""

    COMPLETED = "completed"
    COMPLETED_DEGRADED = "completed-degraded"
    FAILED = "failed"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class OracleSnapshot:
    """Immutable copy of the oracle state.

    :ivar latest: Latest successfully fetched measurement.
    :ivar scaled: Scaled encoding of ``latest``.
    :ivar ledger_write_status: Outcome of the last ledger write.
    :ivar last_error: Error of the last run, if any.
    :ivar last_update_at: When ``latest`` was last refreshed.
    :ivar last_successful_write_at: When the ledger last accepted a write.
    :ivar next_scheduled_run_at: When the next timer tick is due.
    :ivar last_outcome: Terminal state of the last run.
    :ivar threshold_scaled: Cached ledger threshold.
    :ivar threshold_read_at: When the threshold cache was refreshed.
    :ivar ledger_value_scaled: Value read back from the ledger after the
        last successful write.
    :ivar ledger_backend: Name of the configured ledger backend.
    :ivar scale: Fixed-point factor of the configured ledger.
    """

    latest: Measurement | None = None
    scaled: int | None = None
    ledger_write_status: LedgerWriteStatus = LedgerWriteStatus.DEGRADED
    last_error: str | None = None
    last_update_at: datetime | None = None
    last_successful_write_at: datetime | None = None
    next_scheduled_run_at: datetime | None = None
    last_outcome: RunOutcome | None = None
    threshold_scaled: int | None = None
    threshold_read_at: datetime | None = None
    ledger_value_scaled: int | None = None
    ledger_backend: str = "none"
    scale: int = SCALE

    @property
    def status(self) -> str:
        """Coarse status: initializing, active, partial or error."""
        if self.last_outcome == RunOutcome.FAILED:
            return "error"
        if self.latest is None:
            return "initializing"
        if self.ledger_write_status == LedgerWriteStatus.OK:
            return "active"
        return "partial"

    @property
    def threshold_feet(self) -> float | None:
        if self.threshold_scaled is None:
            return None
        return to_feet(self.threshold_scaled, self.scale)

    @property
    def is_flood_condition(self) -> bool | None:
        """Whether the latest reading reaches the ledger threshold."""
        if self.scaled is None or self.threshold_scaled is None:
            return None
        return self.scaled >= self.threshold_scaled

    def to_dict(self) -> dict[str, Any]:
        """Render the snapshot in the status API JSON shape."""
        latest = self.latest
        return {
            "value": latest.value_feet if latest else None,
            "timestamp": _iso(latest.observed_at) if latest else None,
            "lastUpdate": _iso(self.last_update_at),
            "status": self.status,
            "error": self.last_error,
            "source": latest.provider if latest else None,
            "siteInfo": {
                "name": latest.source_name if latest else None,
                "siteId": latest.source_id if latest else None,
            },
            "threshold": {
                "thresholdFeet": self.threshold_feet,
                "thresholdUnits": self.threshold_scaled,
            },
            "scaledValue": self.scaled,
            "isFloodCondition": self.is_flood_condition,
            "ledgerBackend": self.ledger_backend,
            "ledgerWriteStatus": self.ledger_write_status.value,
            "lastSuccessfulWriteAt": _iso(self.last_successful_write_at),
            "nextScheduledRunAt": _iso(self.next_scheduled_run_at),
            "oracleValueFeet": (
                to_feet(self.ledger_value_scaled, self.scale)
                if self.ledger_value_scaled is not None
                else None
            ),
        }


class OracleState:
    """Lock-guarded holder of the current OracleSnapshot."""

    def __init__(self, ledger_backend: str = "none", scale: int = SCALE) -> None:
        self._lock = threading.Lock()
        self._snapshot = OracleSnapshot(ledger_backend=ledger_backend, scale=scale)

    def snapshot(self) -> OracleSnapshot:
        """Return the current state; the returned object never changes."""
        with self._lock:
            return self._snapshot

    def _update(self, **changes: Any) -> OracleSnapshot:
        with self._lock:
            self._snapshot = replace(self._snapshot, **changes)
            return self._snapshot

    def record_failure(self, error: str) -> OracleSnapshot:
        """Record a fetch or conversion failure, keeping the last reading."""
        return self._update(last_outcome=RunOutcome.FAILED, last_error=error)

    def record_measurement(
        self,
        measurement: Measurement,
        scaled: int,
        write_status: LedgerWriteStatus,
        error: str | None,
        now: datetime,
    ) -> OracleSnapshot:
        """Record a fresh reading together with the outcome of its write.

        :param measurement: Fetched measurement.
        :param scaled: Its scaled encoding.
        :param write_status: Outcome of the ledger write.
        :param error: Ledger error, if the write did not succeed.
        :param now: Time of the update.
        """
        changes: dict[str, Any] = {
            "latest": measurement,
            "scaled": scaled,
            "ledger_write_status": write_status,
            "last_error": error,
            "last_update_at": now,
            "last_outcome": (
                RunOutcome.COMPLETED
                if write_status == LedgerWriteStatus.OK
                else RunOutcome.COMPLETED_DEGRADED
            ),
        }
        if write_status == LedgerWriteStatus.OK:
            changes["last_successful_write_at"] = now
        return self._update(**changes)

    def record_threshold(self, threshold_scaled: int, now: datetime) -> OracleSnapshot:
        return self._update(threshold_scaled=threshold_scaled, threshold_read_at=now)

    def record_ledger_value(self, value_scaled: int) -> OracleSnapshot:
        return self._update(ledger_value_scaled=value_scaled)

    def schedule_next_run(self, when: datetime) -> OracleSnapshot:
        return self._update(next_scheduled_run_at=when)
