"""CanisterLedger: Internet Computer canister backend.

Candid interface consumed::

    set_flood_level : (int64) -> (variant { Ok; Err : text });
    get_flood_level : () -> (int64) query;
    get_flood_threshold : () -> (nat64) query;
    set_flood_threshold : (nat64) -> (variant { Ok; Err : text });

Local replicas sign their certificates with a throwaway root key that has
to be fetched from the replica before talking to it. This is enabled
explicitly with ``fetch_root_key`` and must stay off on mainnet.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

import cbor2
import httpx
from ic.agent import Agent
from ic.candid import Types, encode
from ic.client import Client
from ic.identity import Identity

from .LedgerClient import (
    ConnectionUnavailable,
    LedgerClient,
    LedgerError,
    WriteReceipt,
    WriteRejected,
    WriteTimeout,
    register_ledger,
)

logger = logging.getLogger(__name__)

RESULT_TYPE = Types.Variant({"Ok": Types.Null, "Err": Types.Text})


@dataclass(frozen=True)
class CanisterConnection:
    """Live handle to the canister.

    :ivar agent: ic-py agent bound to the signing identity.
    :ivar canister_id: Textual canister principal.
    :ivar root_key: Replica root key, fetched for local replicas only.
    """

    agent: Agent
    canister_id: str
    root_key: bytes | None = None


@contextmanager
def _agent_errors(op: str) -> Iterator[None]:
    """Translate ic-py and transport exceptions into ledger errors."""
    try:
        yield
    except LedgerError:
        raise
    except httpx.TransportError as e:
        raise ConnectionUnavailable(f"{op} failed: {e}") from e
    except Exception as e:  # ic-py reports rejects and poll timeouts as bare Exception
        if "timeout" in str(e).lower():
            raise WriteTimeout(f"{op} not confirmed: {e}") from e
        raise WriteRejected(f"{op} rejected: {e}") from e


def _first_value(result: Any, op: str) -> Any:
    if not result or not isinstance(result[0], dict) or "value" not in result[0]:
        raise WriteRejected(f"{op} returned an unexpected reply: {result!r}")
    return result[0]["value"]


def _check_variant(result: Any, op: str) -> None:
    value = _first_value(result, op)
    if isinstance(value, dict) and "Ok" in value:
        return
    if isinstance(value, dict) and "Err" in value:
        raise WriteRejected(f"{op} rejected by canister: {value['Err']}")
    raise WriteRejected(f"{op} returned an unexpected reply: {value!r}")


@register_ledger
class CanisterLedger(LedgerClient[CanisterConnection]):
    """Ledger backend writing to an Internet Computer canister.

    :ivar host: Replica or boundary node URL.
    :ivar canister_id: Target canister principal.
    :ivar fetch_root_key: Whether to bootstrap the replica root key.
    """

    name = "canister"

    DEFAULT_RPC_TIMEOUT = 10.0

    def __init__(
        self,
        canister_id: str,
        host: str = "http://127.0.0.1:4943",
        identity_key: str | None = None,
        fetch_root_key: bool = False,
        rpc_timeout: float | None = None,
        agent: Agent | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the canister backend.

        :param canister_id: Target canister principal.
        :param host: Replica URL.
        :param identity_key: Hex encoded ed25519 private key. A throwaway
            identity is generated when omitted.
        :param fetch_root_key: Fetch the root key from the replica
            (local development replicas only).
        :param rpc_timeout: HTTP timeout for the root key request.
        :param agent: Optional pre-built agent (used as is).
        :raises ValueError: If no canister id is given.
        """
        super().__init__(**kwargs)
        if not canister_id:
            raise ValueError("Canister id is required")
        self.canister_id = canister_id
        self.host = host.rstrip("/")
        self.identity_key = identity_key
        self.fetch_root_key = fetch_root_key
        self.rpc_timeout = rpc_timeout or self.DEFAULT_RPC_TIMEOUT
        self._agent = agent

    @property
    def description(self) -> str:
        return f"canister {self.canister_id} at {self.host}"

    def _build_agent(self, root_key: bytes | None) -> Agent:
        if self.identity_key:
            identity = Identity(privkey=self.identity_key)
        else:
            logger.warning("[canister] No identity key configured, using a generated identity")
            identity = Identity()
        if root_key is None:
            return Agent(identity, Client(url=self.host))
        return Agent(identity, Client(url=self.host), root_key=root_key)

    def _fetch_root_key(self) -> bytes:
        """Fetch the replica root key from the CBOR status endpoint."""
        url = f"{self.host}/api/v2/status"
        try:
            response = httpx.get(url, timeout=self.rpc_timeout)
            response.raise_for_status()
            status = cbor2.loads(response.content)
        except httpx.HTTPError as e:
            raise ConnectionUnavailable(f"Root key fetch failed: {e}") from e
        except cbor2.CBORDecodeError as e:
            raise ConnectionUnavailable(f"Replica status is not CBOR: {e}") from e

        if isinstance(status, cbor2.CBORTag):
            status = status.value
        root_key = status.get("root_key") if isinstance(status, dict) else None
        if not root_key:
            raise ConnectionUnavailable("Replica status carries no root key")
        logger.info(f"[canister] Root key fetched for local replica ({len(root_key)} bytes)")
        return bytes(root_key)

    def _connect(self) -> CanisterConnection:
        root_key = self._fetch_root_key() if self.fetch_root_key else None
        if self._agent is None:
            agent = self._build_agent(root_key)
        else:
            agent = self._agent
            if root_key is not None:
                agent.root_key = root_key
        conn = CanisterConnection(agent=agent, canister_id=self.canister_id, root_key=root_key)

        try:
            self._call_read_threshold(conn)
        except (WriteRejected, WriteTimeout) as e:
            raise ConnectionUnavailable(f"Canister did not answer: {e}") from e
        return conn

    def _update(self, conn: CanisterConnection, method: str, arg_type: Any, scaled: int) -> WriteReceipt:
        with _agent_errors(method):
            result = conn.agent.update_raw(
                conn.canister_id,
                method,
                encode([{"type": arg_type, "value": scaled}]),
                return_type=[RESULT_TYPE],
                timeout=self.confirmation_timeout,
            )
        _check_variant(result, method)
        return WriteReceipt(backend=self.name, scaled=scaled)

    def _query(self, conn: CanisterConnection, method: str, return_type: Any) -> int:
        with _agent_errors(method):
            result = conn.agent.query_raw(
                conn.canister_id, method, encode([]), return_type=[return_type]
            )
        return int(_first_value(result, method))

    def _call_write_value(self, conn: CanisterConnection, scaled: int) -> WriteReceipt:
        return self._update(conn, "set_flood_level", Types.Int64, scaled)

    def _call_read_value(self, conn: CanisterConnection) -> int:
        return self._query(conn, "get_flood_level", Types.Int64)

    def _call_read_threshold(self, conn: CanisterConnection) -> int:
        return self._query(conn, "get_flood_threshold", Types.Nat64)

    def _call_write_threshold(self, conn: CanisterConnection, scaled: int) -> WriteReceipt:
        return self._update(conn, "set_flood_threshold", Types.Nat64, scaled)
