"""Scheduler: Periodic fetch -> convert -> write pipeline.

Each run walks Fetching -> Converting -> Writing and ends in one of:
    - completed: reading stored and written to the ledger
    - completed-degraded: reading stored, ledger write failed or no ledger
    - failed: fetch or conversion failed, last-known-good reading kept

There is no retry loop inside a run. The next tick retries with a fresh
reading, which also re-synchronizes a ledger that drifted.

Only one run executes at a time. Timer ticks that find a run in flight are
skipped; manual triggers are rejected with RunAlreadyInProgress. Ledger
calls go through a single worker thread; while a timed-out call is still
running there, later ledger calls are refused with LedgerBusy and the
write stage reports degraded.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, TypeVar

from .fetchers import BaseFetcher, FetcherError
from .LedgerClient import LedgerClient, LedgerError, WriteTimeout
from .OracleState import LedgerWriteStatus, OracleSnapshot, OracleState
from .UnitConverter import SCALE, InvalidMeasurement, to_feet, to_scaled

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default polling interval (seconds).
DEFAULT_INTERVAL = 300.0


class RunAlreadyInProgress(Exception):
    """Raised when a run is requested while another one is executing."""

    pass


class LedgerBusy(LedgerError):
    """Raised when an abandoned ledger call is still running in its thread."""

    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    """Drives the oracle pipeline on a fixed interval.

    :ivar fetcher: Source of measurements.
    :ivar ledger: Ledger backend, or None for off-chain only operation.
    :ivar state: Shared oracle state (written only by this scheduler).
    :ivar interval: Seconds between scheduled runs.
    :ivar write_timeout: Upper bound in seconds for a single ledger call.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        ledger: LedgerClient | None,
        state: OracleState,
        interval: float = DEFAULT_INTERVAL,
        write_timeout: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the scheduler.

        :param fetcher: Measurement fetcher.
        :param ledger: Ledger backend, None to skip ledger writes.
        :param state: Shared oracle state.
        :param interval: Seconds between runs (default: 300).
        :param write_timeout: Seconds before a ledger call is abandoned
            (default: the ledger's confirmation timeout plus a margin).
        :param clock: Returns the current time (for tests).
        :raises ValueError: If interval is not positive.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetcher = fetcher
        self.ledger = ledger
        self.state = state
        self.interval = interval
        if write_timeout is None:
            write_timeout = ledger.confirmation_timeout + 10.0 if ledger else 60.0
        self.write_timeout = write_timeout
        self._clock = clock
        self._running = False
        self._stop = asyncio.Event()
        # One worker: ledger calls never overlap, even after a timeout
        self._ledger_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger")
        self._ledger_pending: Future | None = None

    @property
    def scale(self) -> int:
        return self.ledger.scale if self.ledger is not None else SCALE

    @property
    def in_progress(self) -> bool:
        """Whether a pipeline run is executing."""
        return self._running

    async def _ledger_call(self, fn: Callable[..., T], *args: object) -> T:
        """Run a blocking ledger call on the ledger worker, bounded in time.

        On timeout the wait is abandoned; the call itself is left to finish
        in its thread, and later calls are refused with LedgerBusy until it
        has.
        """
        pending = self._ledger_pending
        if pending is not None and not pending.done():
            raise LedgerBusy("Previous ledger call is still in flight")

        future = self._ledger_executor.submit(fn, *args)
        self._ledger_pending = future
        try:
            return await asyncio.wait_for(
                asyncio.shield(asyncio.wrap_future(future)), self.write_timeout
            )
        except asyncio.TimeoutError as e:
            raise WriteTimeout(
                f"Ledger call {getattr(fn, '__name__', fn)} exceeded {self.write_timeout}s"
            ) from e

    async def _write(self, scaled: int) -> tuple[LedgerWriteStatus, str | None]:
        if self.ledger is None:
            return LedgerWriteStatus.DEGRADED, None

        try:
            await self._ledger_call(self.ledger.ensure_connected)
            receipt = await self._ledger_call(self.ledger.write_scaled_value, scaled)
        except LedgerBusy as e:
            logger.warning(f"Ledger write skipped: {e}")
            return LedgerWriteStatus.DEGRADED, f"Oracle update skipped: {e}"
        except LedgerError as e:
            logger.warning(f"Ledger write failed ({type(e).__name__}): {e}")
            return LedgerWriteStatus.FAILED, f"Oracle update failed: {e}"

        logger.info(
            f"Ledger updated with {scaled} "
            f"(ref={receipt.reference}, block={receipt.block_number})"
        )
        return LedgerWriteStatus.OK, None

    async def _verify_write(self, scaled: int) -> None:
        assert self.ledger is not None
        try:
            value = await self._ledger_call(self.ledger.read_current_value)
        except LedgerError as e:
            logger.warning(f"Could not read back ledger value: {e}")
            return
        self.state.record_ledger_value(value)
        if value != scaled:
            logger.warning(f"Ledger holds {value}, expected {scaled}")

    async def _refresh_threshold(self) -> None:
        assert self.ledger is not None
        try:
            threshold = await self._ledger_call(self.ledger.read_threshold)
        except LedgerError as e:
            logger.warning(f"Threshold read failed, keeping cached value: {e}")
            return
        self.state.record_threshold(threshold, self._clock())
        logger.debug(f"Threshold: {threshold} ({to_feet(threshold, self.scale)} ft)")

    async def _pipeline(self) -> OracleSnapshot:
        # Fetching
        try:
            measurement = await self.fetcher.fetch_latest()
        except FetcherError as e:
            logger.warning(f"Fetch failed ({type(e).__name__}): {e}")
            return self.state.record_failure(str(e))

        # Converting
        try:
            scaled = to_scaled(measurement.value_feet, self.scale)
        except InvalidMeasurement as e:
            logger.warning(f"Conversion failed: {e}")
            return self.state.record_failure(str(e))

        logger.info(f"Latest reading: {measurement} -> {scaled}")

        # Writing
        write_status, error = await self._write(scaled)
        self.state.record_measurement(measurement, scaled, write_status, error, self._clock())

        if self.ledger is not None and write_status == LedgerWriteStatus.OK:
            await self._verify_write(scaled)

        return self.state.snapshot()

    async def run_now(self) -> OracleSnapshot:
        """Execute one pipeline run and return the resulting snapshot.

        :returns: OracleSnapshot after the run.
        :raises RunAlreadyInProgress: If another run is executing.
        """
        if self._running:
            raise RunAlreadyInProgress("A pipeline run is already in progress")
        self._running = True
        try:
            await self._pipeline()
            # Refreshed on failed runs too
            if self.ledger is not None:
                await self._refresh_threshold()
        finally:
            self.state.schedule_next_run(self._clock() + timedelta(seconds=self.interval))
            self._running = False
        return self.state.snapshot()

    async def tick(self) -> None:
        """Timer entry point; skips when a manual run is executing."""
        try:
            snapshot = await self.run_now()
        except RunAlreadyInProgress:
            logger.info("Scheduled run skipped, another run is in progress")
            return
        logger.info(
            f"Run finished: status={snapshot.status}, "
            f"ledger={snapshot.ledger_write_status.value}, "
            f"next run at {snapshot.next_scheduled_run_at.isoformat() if snapshot.next_scheduled_run_at else '-'}"
        )

    async def run_forever(self) -> None:
        """Run the pipeline every interval until stop() is called."""
        logger.info(f"Scheduler started, interval {self.interval}s")
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception:  # Keep the loop alive on unexpected bugs
                logger.exception("Unexpected error in scheduled run")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Ask run_forever() to exit once the current run has finished."""
        self._stop.set()
