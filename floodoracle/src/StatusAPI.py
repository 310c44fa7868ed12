"""StatusAPI: Read-only HTTP surface over the oracle state.

Routes are served both at the root and under ``/api`` (the prefix the
dashboards use). ``/status`` never touches the ledger; it renders the
cached snapshot, including the threshold read during the last run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse

from .OracleState import OracleState, RunOutcome
from .Scheduler import RunAlreadyInProgress, Scheduler

logger = logging.getLogger(__name__)


def create_app(state: OracleState, scheduler: Scheduler) -> FastAPI:
    """Build the FastAPI application.

    :param state: Shared oracle state.
    :param scheduler: Scheduler used for manual runs.
    :returns: Configured FastAPI app.
    """
    router = APIRouter()

    @router.get("/health")
    def health() -> dict:
        """Liveness check, independent of the oracle state."""
        return {
            "status": "ok",
            "message": "Flood oracle bridge is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @router.get("/status")
    def status() -> dict:
        return state.snapshot().to_dict()

    @router.post("/manual-update")
    async def manual_update() -> JSONResponse:
        """Run the pipeline now and return the resulting snapshot."""
        logger.info("Manual update requested")
        try:
            snapshot = await scheduler.run_now()
        except RunAlreadyInProgress as e:
            return JSONResponse(
                status_code=409,
                content={
                    "success": False,
                    "error": "RunAlreadyInProgress",
                    "message": str(e),
                },
            )
        body = snapshot.to_dict()
        body["success"] = snapshot.last_outcome != RunOutcome.FAILED
        return JSONResponse(content=body)

    app = FastAPI(title="Flood Oracle Bridge", version="0.1.0")
    app.include_router(router)
    app.include_router(router, prefix="/api")
    app.add_api_route("/api/flood-data", status, methods=["GET"])
    return app
