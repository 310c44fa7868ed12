"""Unit tests for CanisterLedger."""

from unittest.mock import MagicMock, patch

import cbor2
import httpx
import pytest

from floodoracle.src.CanisterLedger import CanisterLedger
from floodoracle.src.LedgerClient import ConnectionUnavailable, WriteRejected, WriteTimeout

CANISTER_ID = "bkyz2-fmaaa-aaaaa-qaaaq-cai"
HOST = "http://127.0.0.1:4943"


def make_agent() -> MagicMock:
    agent = MagicMock()
    agent.query_raw.return_value = [{"type": "nat64", "value": 1200000000000}]
    agent.update_raw.return_value = [{"type": "variant", "value": {"Ok": None}}]
    return agent


def make_ledger(agent: MagicMock, **kwargs) -> CanisterLedger:
    return CanisterLedger(
        canister_id=CANISTER_ID,
        host=HOST + "/",
        agent=agent,
        confirmation_timeout=45.0,
        **kwargs,
    )


def status_response(body: object) -> httpx.Response:
    return httpx.Response(
        200,
        content=cbor2.dumps(body),
        request=httpx.Request("GET", f"{HOST}/api/v2/status"),
    )


class TestCanisterLedgerInit:
    """Test configuration handling."""

    def test_requires_canister_id(self) -> None:
        """An empty canister id is rejected."""
        with pytest.raises(ValueError, match="Canister id is required"):
            CanisterLedger(canister_id="")

    def test_host_normalized(self) -> None:
        """Trailing slashes are stripped from the host."""
        ledger = make_ledger(make_agent())
        assert ledger.host == HOST
        assert ledger.name == "canister"
        assert CANISTER_ID in ledger.description


class TestCanisterLedgerConnect:
    """Test connection establishment and root key bootstrap."""

    def test_connect_verifies_with_query(self) -> None:
        """Connecting runs a threshold query and skips the root key by default."""
        agent = make_agent()
        ledger = make_ledger(agent)

        with patch("floodoracle.src.CanisterLedger.httpx.get") as mock_get:
            ledger.ensure_connected()

        mock_get.assert_not_called()
        assert ledger.is_connected
        assert agent.query_raw.call_args.args[:2] == (CANISTER_ID, "get_flood_threshold")
        assert ledger._connection.root_key is None

    def test_root_key_bootstrap(self) -> None:
        """The replica root key is fetched and set on the agent."""
        root_key = b"\x30\x81\x82" + b"\x01" * 130
        body = cbor2.CBORTag(55799, {"ic_api_version": "0.18.0", "root_key": root_key})
        agent = make_agent()
        ledger = make_ledger(agent, fetch_root_key=True)

        with patch(
            "floodoracle.src.CanisterLedger.httpx.get", return_value=status_response(body)
        ) as mock_get:
            ledger.ensure_connected()

        assert mock_get.call_args.args[0] == f"{HOST}/api/v2/status"
        assert agent.root_key == root_key
        assert ledger._connection.root_key == root_key

    def test_built_agent_trusts_fetched_root_key(self) -> None:
        """An agent built by the ledger verifies against the replica key."""
        root_key = b"\x30\x81\x82" + b"\x02" * 130
        ledger = CanisterLedger(canister_id=CANISTER_ID, host=HOST, fetch_root_key=True)

        with patch(
            "floodoracle.src.CanisterLedger.httpx.get",
            return_value=status_response({"root_key": root_key}),
        ), patch("floodoracle.src.CanisterLedger.Agent") as agent_cls, patch(
            "floodoracle.src.CanisterLedger.Identity"
        ), patch("floodoracle.src.CanisterLedger.Client"):
            agent_cls.return_value.query_raw.return_value = [{"type": "nat64", "value": 1}]
            ledger.ensure_connected()

        assert agent_cls.call_args.kwargs["root_key"] == root_key

    def test_root_key_missing(self) -> None:
        """A status reply without a root key fails the connection."""
        ledger = make_ledger(make_agent(), fetch_root_key=True)

        with patch(
            "floodoracle.src.CanisterLedger.httpx.get",
            return_value=status_response({"ic_api_version": "0.18.0"}),
        ):
            with pytest.raises(ConnectionUnavailable, match="no root key"):
                ledger.ensure_connected()

    def test_replica_unreachable(self) -> None:
        """An unreachable replica is a connection error."""
        ledger = make_ledger(make_agent(), fetch_root_key=True)

        with patch(
            "floodoracle.src.CanisterLedger.httpx.get",
            side_effect=httpx.ConnectError("connection refused"),
        ):
            with pytest.raises(ConnectionUnavailable, match="connection refused"):
                ledger.ensure_connected()
        assert not ledger.is_connected

    def test_canister_rejects_verification(self) -> None:
        """A failing verification query is a connection error."""
        agent = make_agent()
        agent.query_raw.side_effect = Exception("Canister reject the call: canister not found")
        ledger = make_ledger(agent)

        with pytest.raises(ConnectionUnavailable, match="did not answer"):
            ledger.ensure_connected()


class TestCanisterLedgerWrite:
    """Test set_flood_level and error mapping."""

    def test_write_ok(self) -> None:
        """set_flood_level is called with the confirmation timeout."""
        agent = make_agent()
        ledger = make_ledger(agent)
        receipt = ledger.write_scaled_value(381000000000)

        args, kwargs = agent.update_raw.call_args
        assert args[0] == CANISTER_ID
        assert args[1] == "set_flood_level"
        assert kwargs["timeout"] == 45.0
        assert receipt.backend == "canister"
        assert receipt.scaled == 381000000000
        assert receipt.reference is None

    def test_write_err_variant(self) -> None:
        """An Err variant is a rejected write."""
        agent = make_agent()
        agent.update_raw.return_value = [{"type": "variant", "value": {"Err": "Unauthorized"}}]
        ledger = make_ledger(agent)

        with pytest.raises(WriteRejected, match="Unauthorized"):
            ledger.write_scaled_value(1)

    def test_unexpected_reply(self) -> None:
        """An empty reply is a rejected write."""
        agent = make_agent()
        agent.update_raw.return_value = []
        ledger = make_ledger(agent)

        with pytest.raises(WriteRejected, match="unexpected reply"):
            ledger.write_scaled_value(1)

    def test_poll_timeout(self) -> None:
        """Polling past the deadline is a write timeout."""
        agent = make_agent()
        agent.update_raw.side_effect = Exception("Timeout to poll result, current status: processing")
        ledger = make_ledger(agent)

        with pytest.raises(WriteTimeout):
            ledger.write_scaled_value(1)

    def test_rejected_call(self) -> None:
        """A canister reject keeps the connection."""
        agent = make_agent()
        agent.update_raw.side_effect = Exception("Rejected: canister trapped")
        ledger = make_ledger(agent)

        with pytest.raises(WriteRejected, match="canister trapped"):
            ledger.write_scaled_value(1)
        assert ledger.is_connected

    def test_transport_error_discards_connection(self) -> None:
        """A transport error drops the connection."""
        agent = make_agent()
        agent.update_raw.side_effect = httpx.ConnectError("connection reset")
        ledger = make_ledger(agent)

        with pytest.raises(ConnectionUnavailable):
            ledger.write_scaled_value(1)
        assert not ledger.is_connected


class TestCanisterLedgerReads:
    """Test queries and the threshold update."""

    def test_read_threshold(self) -> None:
        """get_flood_threshold returns the stored threshold."""
        ledger = make_ledger(make_agent())
        assert ledger.read_threshold() == 1200000000000

    def test_read_current_value(self) -> None:
        """get_flood_level returns the stored value."""
        agent = make_agent()
        ledger = make_ledger(agent)
        ledger.ensure_connected()
        agent.query_raw.return_value = [{"type": "int64", "value": 381000000000}]

        assert ledger.read_current_value() == 381000000000
        assert agent.query_raw.call_args.args[1] == "get_flood_level"

    def test_write_threshold(self) -> None:
        """set_flood_threshold is an update call."""
        agent = make_agent()
        ledger = make_ledger(agent)
        ledger.write_threshold(1500000000000)

        assert agent.update_raw.call_args.args[1] == "set_flood_threshold"
