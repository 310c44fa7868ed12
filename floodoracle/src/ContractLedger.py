"""ContractLedger: EVM smart contract backend over Web3.

The oracle contract follows the Chainlink mock aggregator shape
(``updateAnswer(int256)`` / ``latestAnswer()``); the insurance contract
exposes ``floodThreshold()`` / ``setThreshold(int256)``. Both may live at
the same address.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from eth_account import Account
from eth_account.signers.local import LocalAccount
from sapphirepy import sapphire
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.exceptions import (
    ContractLogicError,
    ProviderConnectionError,
    TimeExhausted,
    Web3Exception,
    Web3RPCError,
)
from web3.middleware import SignAndSendRawMiddlewareBuilder

from .LedgerClient import (
    ConnectionUnavailable,
    LedgerClient,
    WriteReceipt,
    WriteRejected,
    WriteTimeout,
    register_ledger,
)

logger = logging.getLogger(__name__)

NETWORKS: dict[str, str] = {
    "hardhat": "http://127.0.0.1:8545",
    "sapphire": "https://sapphire.oasis.io",
    "sapphire-testnet": "https://testnet.sapphire.oasis.io",
    "sapphire-localnet": "http://localhost:8545",
}

# Networks where the well-known development account may sign.
LOCAL_NETWORKS = frozenset({"hardhat", "sapphire-localnet"})

DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

ORACLE_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"internalType": "int256", "name": "_answer", "type": "int256"}],
        "name": "updateAnswer",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "latestAnswer",
        "outputs": [{"internalType": "int256", "name": "", "type": "int256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

THRESHOLD_ABI: list[dict[str, Any]] = [
    {
        "inputs": [],
        "name": "floodThreshold",
        "outputs": [{"internalType": "int256", "name": "", "type": "int256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "int256", "name": "_threshold", "type": "int256"}],
        "name": "setThreshold",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass(frozen=True)
class ContractConnection:
    """Live handle to the contracts.

    :ivar w3: Web3 instance with the signing middleware installed.
    :ivar account: Address that signs transactions.
    :ivar oracle: Oracle contract (value storage).
    :ivar threshold: Contract holding the payout threshold.
    :ivar chain_id: Chain id reported when the connection was verified.
    """

    w3: Web3
    account: str
    oracle: Contract
    threshold: Contract
    chain_id: int


@contextmanager
def _rpc_errors(op: str) -> Iterator[None]:
    """Translate Web3 exceptions into ledger errors."""
    try:
        yield
    except TimeExhausted as e:
        raise WriteTimeout(f"{op} not confirmed: {e}") from e
    except (ProviderConnectionError, OSError) as e:
        raise ConnectionUnavailable(f"{op} failed: {e}") from e
    except (ContractLogicError, Web3RPCError) as e:
        raise WriteRejected(f"{op} rejected: {e}") from e
    except (Web3Exception, ValueError) as e:
        raise WriteRejected(f"{op} failed: {e}") from e


@register_ledger
class ContractLedger(LedgerClient[ContractConnection]):
    """Ledger backend writing to an EVM oracle contract.

    :ivar network_name: Named network or RPC URL.
    :ivar rpc_url: RPC endpoint in use.
    :ivar oracle_address: Checksummed oracle contract address.
    :ivar threshold_address: Checksummed threshold contract address.
    """

    name = "contract"

    DEFAULT_RPC_TIMEOUT = 10.0

    def __init__(
        self,
        oracle_address: str,
        threshold_address: str | None = None,
        network_name: str = "hardhat",
        rpc_url: str | None = None,
        private_key: str | None = None,
        rpc_timeout: float | None = None,
        w3: Web3 | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the contract backend.

        :param oracle_address: Address of the oracle contract.
        :param threshold_address: Address of the contract exposing
            floodThreshold(); defaults to the oracle address.
        :param network_name: Named network (hardhat, sapphire,
            sapphire-testnet, sapphire-localnet) or an RPC URL.
        :param rpc_url: Explicit RPC URL, overrides the named network.
        :param private_key: Signing key. Local networks fall back to the
            well-known development key.
        :param rpc_timeout: HTTP timeout for RPC requests in seconds.
        :param w3: Optional pre-built Web3 instance (used as is).
        :raises ValueError: If an address is invalid or no key is available.
        """
        super().__init__(**kwargs)
        if not oracle_address:
            raise ValueError("Oracle contract address is required")
        self.oracle_address = Web3.to_checksum_address(oracle_address)
        self.threshold_address = Web3.to_checksum_address(threshold_address or oracle_address)
        self.network_name = network_name
        self.rpc_url = rpc_url or os.environ.get("RPC_URL") or NETWORKS.get(network_name, network_name)
        self.rpc_timeout = rpc_timeout or self.DEFAULT_RPC_TIMEOUT
        self._w3 = w3

        if not private_key:
            if network_name not in LOCAL_NETWORKS:
                raise ValueError(f"A private key is required for network {network_name}")
            private_key = DEV_PRIVATE_KEY
        self._account: LocalAccount = Account.from_key(private_key)

    @property
    def description(self) -> str:
        return f"contract {self.oracle_address} on {self.network_name} ({self.rpc_url})"

    def _build_web3(self) -> Web3:
        w3 = Web3(
            Web3.HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.rpc_timeout})
        )
        w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self._account))
        w3.eth.default_account = self._account.address
        if self.network_name.startswith("sapphire"):
            w3 = sapphire.wrap(w3)
        return w3

    def _connect(self) -> ContractConnection:
        w3 = self._w3 if self._w3 is not None else self._build_web3()
        try:
            with _rpc_errors("connect"):
                chain_id = w3.eth.chain_id
        except (WriteRejected, WriteTimeout) as e:
            raise ConnectionUnavailable(str(e)) from e

        logger.debug(f"[contract] RPC {self.rpc_url} answered, chain id {chain_id}")
        return ContractConnection(
            w3=w3,
            account=self._account.address,
            oracle=w3.eth.contract(address=self.oracle_address, abi=ORACLE_ABI),
            threshold=w3.eth.contract(address=self.threshold_address, abi=THRESHOLD_ABI),
            chain_id=chain_id,
        )

    def _transact(self, conn: ContractConnection, fn: ContractFunction, scaled: int) -> WriteReceipt:
        """Sign, send and wait for a state-changing call."""
        tx_params = fn.build_transaction(
            {"from": conn.account, "gasPrice": conn.w3.eth.gas_price}
        )
        tx_hash = conn.w3.eth.send_transaction(tx_params)
        logger.debug(f"[contract] Transaction sent: {Web3.to_hex(tx_hash)}")

        tx_receipt = conn.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.confirmation_timeout
        )
        if tx_receipt["status"] != 1:
            raise WriteRejected(f"Transaction {Web3.to_hex(tx_hash)} reverted")

        return WriteReceipt(
            backend=self.name,
            scaled=scaled,
            reference=Web3.to_hex(tx_hash),
            block_number=tx_receipt.get("blockNumber"),
        )

    def _call_write_value(self, conn: ContractConnection, scaled: int) -> WriteReceipt:
        with _rpc_errors("updateAnswer"):
            return self._transact(conn, conn.oracle.functions.updateAnswer(scaled), scaled)

    def _call_read_value(self, conn: ContractConnection) -> int:
        with _rpc_errors("latestAnswer"):
            return int(conn.oracle.functions.latestAnswer().call())

    def _call_read_threshold(self, conn: ContractConnection) -> int:
        with _rpc_errors("floodThreshold"):
            return int(conn.threshold.functions.floodThreshold().call())

    def _call_write_threshold(self, conn: ContractConnection, scaled: int) -> WriteReceipt:
        with _rpc_errors("setThreshold"):
            return self._transact(conn, conn.threshold.functions.setThreshold(scaled), scaled)
