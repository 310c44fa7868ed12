"""FloodOracle: Main orchestrator for the gauge-to-ledger bridge.

Architecture:
    - One Scheduler runs the fetch -> convert -> write pipeline every
      interval
    - The ledger backend is optional; without one the bridge only serves
      the off-chain reading
    - OracleState is owned here and handed to the scheduler (writer) and
      the status API (reader)
    - The status API and the scheduler share one event loop; blocking
      ledger calls run in worker threads
"""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from .fetchers import BaseFetcher
from .LedgerClient import LedgerClient
from .OracleState import OracleState
from .Scheduler import DEFAULT_INTERVAL, Scheduler
from .StatusAPI import create_app
from .UnitConverter import SCALE

logger = logging.getLogger(__name__)


class FloodOracle:
    """Wires fetcher, ledger, state, scheduler and HTTP server together.

    :ivar fetcher: Measurement fetcher.
    :ivar ledger: Ledger backend or None.
    :ivar state: Shared oracle state.
    :ivar scheduler: Pipeline scheduler.
    :ivar app: FastAPI application serving the status API.
    :ivar host: Interface the HTTP server binds to.
    :ivar port: Port the HTTP server listens on.
    """

    def __init__(
        self,
        fetcher: BaseFetcher,
        ledger: LedgerClient | None = None,
        interval: float = DEFAULT_INTERVAL,
        host: str = "0.0.0.0",
        port: int = 3001,
    ) -> None:
        """Initialize the oracle.

        :param fetcher: Measurement fetcher.
        :param ledger: Ledger backend, None for off-chain only operation.
        :param interval: Seconds between scheduled runs (default: 300).
        :param host: HTTP bind address.
        :param port: HTTP port.
        """
        self.fetcher = fetcher
        self.ledger = ledger
        self.host = host
        self.port = port

        self.state = OracleState(
            ledger_backend=ledger.name if ledger is not None else "none",
            scale=ledger.scale if ledger is not None else SCALE,
        )
        self.scheduler = Scheduler(
            fetcher=fetcher,
            ledger=ledger,
            state=self.state,
            interval=interval,
        )
        self.app = create_app(self.state, self.scheduler)

        logger.info(
            f"FloodOracle initialized: source={fetcher.description}, "
            f"ledger={ledger.description if ledger else 'none'}, "
            f"interval={interval}s"
        )

    async def run(self) -> None:
        """Run the scheduler loop and the HTTP server until shutdown.

        On shutdown the HTTP server stops first, then the scheduler is
        asked to stop and its in-flight run is awaited.
        """
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_config=None)
        server = uvicorn.Server(config)
        scheduler_task = asyncio.create_task(self.scheduler.run_forever())

        logger.info(f"Status API listening on http://{self.host}:{self.port}")
        try:
            await server.serve()
        finally:
            self.scheduler.stop()
            await scheduler_task
            # Clean up shared HTTP client
            await BaseFetcher.close_shared_client()
