"""
Flood Oracle Bridge - Gauge-to-Ledger Module

This module propagates river gauge readings to on-chain ledgers:
- UnitConverter: Feet <-> fixed-point integer conversion
- fetchers: Time-series provider clients (USGS)
- LedgerClient: Ledger backend interface (contract, canister)
- OracleState: Last-known-good snapshot shared with the API
- Scheduler: Periodic fetch -> convert -> write pipeline
- StatusAPI: HTTP status and manual trigger endpoints
- FloodOracle: Main orchestrator
"""

from .CanisterLedger import CanisterLedger
from .ContractLedger import ContractLedger
from .FloodOracle import FloodOracle
from .LedgerClient import (
    ConnectionUnavailable,
    LedgerClient,
    LedgerError,
    WriteReceipt,
    WriteRejected,
    WriteTimeout,
    get_available_ledgers,
    get_ledger_client,
)
from .Measurement import Measurement
from .OracleState import LedgerWriteStatus, OracleSnapshot, OracleState, RunOutcome
from .Scheduler import RunAlreadyInProgress, Scheduler
from .UnitConverter import SCALE, InvalidMeasurement, to_feet, to_scaled

__all__ = [
    "CanisterLedger",
    "ConnectionUnavailable",
    "ContractLedger",
    "FloodOracle",
    "InvalidMeasurement",
    "LedgerClient",
    "LedgerError",
    "LedgerWriteStatus",
    "Measurement",
    "OracleSnapshot",
    "OracleState",
    "RunAlreadyInProgress",
    "RunOutcome",
    "SCALE",
    "Scheduler",
    "WriteReceipt",
    "WriteRejected",
    "WriteTimeout",
    "get_available_ledgers",
    "get_ledger_client",
    "to_feet",
    "to_scaled",
]
