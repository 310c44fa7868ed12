#!/usr/bin/env python3
"""Flood Oracle Bridge.

Fetches the latest river gauge height from USGS, converts it to the
ledger's fixed-point encoding and writes it to an EVM oracle contract or
an Internet Computer canister, while serving the latest reading over HTTP.

Start with env vars or CLI flags. See README.md for configuration.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.fetchers import get_fetcher
from .src.fetchers.usgs import DEFAULT_PARAMETER_CD, DEFAULT_SITE_ID
from .src.FloodOracle import FloodOracle
from .src.LedgerClient import LedgerClient, LedgerError, get_available_ledgers, get_ledger_client
from .src.UnitConverter import SCALE, InvalidMeasurement, to_scaled

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

NO_LEDGER = "none"


def env_flag(name: str) -> bool:
    """Interpret an environment variable as a boolean flag.

    :param name: Environment variable name.
    :returns: True for 1/true/yes/on (case-insensitive).
    """
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser with environment defaults."""
    backends = get_available_ledgers() + [NO_LEDGER]

    parser = argparse.ArgumentParser(
        description="Flood Oracle Bridge: river gauge readings to on-chain ledgers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Ledger backends:
  {', '.join(backends)}

Examples:
  # Local Hardhat node with the oracle contract deployed
  python -m floodoracle.main --ledger contract --network hardhat \\
      --oracle-address 0x5FbDB2315678afecb367f032d93F642f64180aa3

  # Local ICP replica
  python -m floodoracle.main --ledger canister \\
      --canister-id bkyz2-fmaaa-aaaaa-qaaaq-cai --fetch-root-key

  # Off-chain only, poll every minute
  python -m floodoracle.main --ledger none --interval 60

  # Administrative threshold update (12 ft), then exit
  python -m floodoracle.main --ledger contract --oracle-address 0x... \\
      --set-threshold 12

Environment variables (CLI args take precedence):
  DATA_SOURCE_URL, USGS_SITE_ID, USGS_PARAMETER_CD, FETCH_TIMEOUT,
  LEDGER_BACKEND, NETWORK, RPC_URL, PRIVATE_KEY, ORACLE_ADDRESS,
  THRESHOLD_ADDRESS, ICP_HOST, ICP_CANISTER_ID, ICP_IDENTITY_KEY,
  ICP_FETCH_ROOT_KEY, SCALE, POLL_INTERVAL, CONFIRMATION_TIMEOUT,
  HOST, PORT
""",
    )

    source = parser.add_argument_group("data source")
    source.add_argument(
        "--source-url",
        dest="source_url",
        type=str,
        help="Full time-series URL (overrides --site-id/--parameter-cd)",
        default=os.environ.get("DATA_SOURCE_URL"),
    )
    source.add_argument(
        "--site-id",
        dest="site_id",
        type=str,
        help=f"USGS site number (default: {DEFAULT_SITE_ID})",
        default=os.environ.get("USGS_SITE_ID") or DEFAULT_SITE_ID,
    )
    source.add_argument(
        "--parameter-cd",
        dest="parameter_cd",
        type=str,
        help=f"USGS parameter code (default: {DEFAULT_PARAMETER_CD}, gage height)",
        default=os.environ.get("USGS_PARAMETER_CD") or DEFAULT_PARAMETER_CD,
    )
    source.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for data source requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    ledger = parser.add_argument_group("ledger")
    ledger.add_argument(
        "--ledger",
        type=str,
        choices=backends,
        help="Ledger backend (default: contract)",
        default=os.environ.get("LEDGER_BACKEND") or "contract",
    )
    ledger.add_argument(
        "--network",
        type=str,
        help="EVM network (hardhat, sapphire, sapphire-testnet, sapphire-localnet)",
        default=os.environ.get("NETWORK") or "hardhat",
    )
    ledger.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="EVM RPC URL (overrides the network default)",
        default=os.environ.get("RPC_URL"),
    )
    ledger.add_argument(
        "--oracle-address",
        dest="oracle_address",
        type=str,
        help="Oracle contract address",
        default=os.environ.get("ORACLE_ADDRESS") or os.environ.get("MOCK_ORACLE_ADDRESS"),
    )
    ledger.add_argument(
        "--threshold-address",
        dest="threshold_address",
        type=str,
        help="Contract exposing floodThreshold() (default: oracle address)",
        default=os.environ.get("THRESHOLD_ADDRESS") or os.environ.get("PARAMIFY_ADDRESS"),
    )
    ledger.add_argument(
        "--icp-host",
        dest="icp_host",
        type=str,
        help="ICP replica URL (default: http://127.0.0.1:4943)",
        default=os.environ.get("ICP_HOST") or "http://127.0.0.1:4943",
    )
    ledger.add_argument(
        "--canister-id",
        dest="canister_id",
        type=str,
        help="Oracle canister id",
        default=os.environ.get("ICP_CANISTER_ID"),
    )
    ledger.add_argument(
        "--fetch-root-key",
        dest="fetch_root_key",
        action="store_true",
        help="Fetch the replica root key (local ICP replicas only)",
        default=env_flag("ICP_FETCH_ROOT_KEY"),
    )
    ledger.add_argument(
        "--scale",
        type=int,
        help=f"Fixed-point factor of the ledger (default: {SCALE})",
        default=int(os.environ.get("SCALE") or SCALE),
    )
    ledger.add_argument(
        "--confirmation-timeout",
        dest="confirmation_timeout",
        type=float,
        help="Seconds to wait for write confirmation (default: 60.0)",
        default=float(os.environ.get("CONFIRMATION_TIMEOUT") or "60.0"),
    )

    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between scheduled runs (minimum: 1, default: 300)",
        default=float(os.environ.get("POLL_INTERVAL") or "300"),
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Status API bind address (default: 0.0.0.0)",
        default=os.environ.get("HOST") or "0.0.0.0",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Status API port (default: 3001)",
        default=int(os.environ.get("PORT") or "3001"),
    )
    parser.add_argument(
        "--set-threshold",
        dest="set_threshold",
        type=float,
        metavar="FEET",
        help="Write a new payout threshold to the ledger and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def build_ledger(args: argparse.Namespace) -> LedgerClient | None:
    """Create the configured ledger backend.

    Secrets are read from the environment only.

    :param args: Parsed arguments.
    :returns: LedgerClient, or None for off-chain only operation.
    :raises ValueError: If required settings are missing or invalid.
    """
    if args.ledger == NO_LEDGER:
        return None

    if args.ledger == "contract":
        options = {
            "oracle_address": args.oracle_address,
            "threshold_address": args.threshold_address,
            "network_name": args.network,
            "rpc_url": args.rpc_url,
            "private_key": os.environ.get("PRIVATE_KEY"),
        }
    else:
        options = {
            "canister_id": args.canister_id,
            "host": args.icp_host,
            "identity_key": os.environ.get("ICP_IDENTITY_KEY"),
            "fetch_root_key": args.fetch_root_key,
        }
    return get_ledger_client(
        args.ledger,
        scale=args.scale,
        confirmation_timeout=args.confirmation_timeout,
        **options,
    )


def set_threshold(ledger: LedgerClient, threshold_feet: float) -> int:
    """Administrative threshold update.

    :param ledger: Ledger backend.
    :param threshold_feet: New threshold in feet.
    :returns: Process exit code.
    """
    try:
        scaled = to_scaled(threshold_feet, ledger.scale)
        ledger.ensure_connected()
        receipt = ledger.write_threshold(scaled)
    except (InvalidMeasurement, ValueError, LedgerError) as e:
        logger.error(f"Threshold update failed: {e}")
        return 1
    logger.info(
        f"Threshold set to {threshold_feet} ft ({scaled}). "
        f"ref={receipt.reference}, block={receipt.block_number}"
    )
    return 0


def main() -> None:
    """Main entry point for the Flood Oracle Bridge CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.interval < 1:
        parser.error("--interval must be at least 1 second")

    if args.scale < 1:
        parser.error("--scale must be a positive integer")

    if args.fetch_timeout <= 0 or args.confirmation_timeout <= 0:
        parser.error("Timeouts must be positive")

    if args.ledger == "contract" and not args.oracle_address:
        parser.error("--oracle-address (ORACLE_ADDRESS) is required for the contract ledger")

    if args.ledger == "canister" and not args.canister_id:
        parser.error("--canister-id (ICP_CANISTER_ID) is required for the canister ledger")

    try:
        ledger = build_ledger(args)
    except ValueError as e:
        parser.error(str(e))

    if args.set_threshold is not None:
        if ledger is None:
            parser.error("--set-threshold requires a ledger backend")
        sys.exit(set_threshold(ledger, args.set_threshold))

    fetcher = get_fetcher(
        "usgs",
        timeout=args.fetch_timeout,
        site_id=args.site_id,
        parameter_cd=args.parameter_cd,
        endpoint=args.source_url,
    )

    # Log configuration
    logger.info("=" * 60)
    logger.info("Flood Oracle Bridge")
    logger.info("=" * 60)
    logger.info(f"Data Source:       {fetcher.description}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    logger.info(f"Ledger:            {ledger.description if ledger else 'none (off-chain only)'}")
    logger.info(f"Scale:             {args.scale}")
    logger.info(f"Confirm Timeout:   {args.confirmation_timeout}s")
    logger.info(f"Interval:          {args.interval}s")
    logger.info(f"Status API:        {args.host}:{args.port}")
    logger.info("=" * 60)

    try:
        flood_oracle = FloodOracle(
            fetcher=fetcher,
            ledger=ledger,
            interval=args.interval,
            host=args.host,
            port=args.port,
        )
        asyncio.run(flood_oracle.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
