"""Test the client adapter, the readiness check and the hive starter."""

import json
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
import requests

from config import SimulatorConfig
from engine_test_rpc import AdminRPC, BlockResponse, EngineRPC, EthRPC, JSONRPCError

from ..client import (
    MERGED_GENESIS_ENVIRONMENT,
    ClientReadiness,
    ClientRole,
    EngineClient,
    HiveClientStarter,
)
from ..exceptions import ClientNotReadyError, ProtocolViolationError, TransportError

NODE_ID = "ab" * 64


class FlakyEth:
    """Answers `eth_getBlockByNumber` only after a number of refused connections."""

    def __init__(self, failures: int):
        """Refuse the first `failures` requests."""
        self.failures = failures
        self.calls = 0

    def get_block_by_number(self, block_number):
        """Raise a connection error until the client is up."""
        self.calls += 1
        if self.calls <= self.failures:
            raise requests.ConnectionError("connection refused")
        return {"number": block_number}


def client_with(eth: Any) -> EngineClient:
    """Return an adapter around the given data API."""
    return EngineClient("client-0", EngineRPC("http://engine"), eth)


def test_readiness_backoff():
    """Delays between attempts double until the client answers."""
    delays: List[float] = []
    eth = FlakyEth(failures=3)
    readiness = ClientReadiness(retries=5, backoff=0.5, sleep=delays.append)
    assert readiness.wait(client_with(eth)) == {"number": 0}
    assert delays == [0.5, 1.0, 2.0]
    assert eth.calls == 4


def test_readiness_exhausted():
    """A client that never answers is reported after the last attempt."""
    delays: List[float] = []
    readiness = ClientReadiness(retries=3, backoff=0.1, sleep=delays.append)
    with pytest.raises(ClientNotReadyError, match="after 3 attempts: connection refused"):
        readiness.wait(client_with(FlakyEth(failures=10)))
    assert delays == [0.1, 0.2]


class FailingEth:
    """Data API that always fails the same way."""

    def __init__(self, error: Exception | None):
        """Raise `error` on every call, or answer without a block when it is None."""
        self.error = error
        self.calls = 0

    def get_block_by_number(self, block_number):
        """Fail, or return no block."""
        self.calls += 1
        if self.error is not None:
            raise self.error
        return None


def test_readiness_without_genesis():
    """A client that answers but has no genesis block is retried like a refused one."""
    delays: List[float] = []
    eth = FailingEth(None)
    readiness = ClientReadiness(retries=3, backoff=1, sleep=delays.append)
    with pytest.raises(ClientNotReadyError, match="after 3 attempts: no genesis block"):
        readiness.wait(client_with(eth))
    assert delays == [1, 2]
    assert eth.calls == 3


def test_readiness_http_error_is_not_retried():
    """Only connection failures are retried; an HTTP error fails at once."""
    delays: List[float] = []
    eth = FailingEth(requests.HTTPError("401 Client Error: Unauthorized"))
    readiness = ClientReadiness(retries=5, backoff=0.5, sleep=delays.append)
    with pytest.raises(ClientNotReadyError, match="Unauthorized"):
        readiness.wait(client_with(eth))
    assert (delays, eth.calls) == ([], 1)


def test_readiness_from_config():
    """The readiness check follows the configuration."""
    readiness = ClientReadiness.from_config(
        SimulatorConfig(readiness_retries=7, readiness_backoff=0.25)
    )
    assert (readiness.retries, readiness.backoff) == (7, 0.25)


def test_transport_errors_are_wrapped():
    """Connection failures name the client and the method."""
    client = client_with(FlakyEth(failures=1))
    with pytest.raises(TransportError, match="eth_getBlockByNumber to client client-0") as e:
        client.get_block_by_number(0)
    assert isinstance(e.value.cause, requests.ConnectionError)


@pytest.mark.parametrize(
    "error",
    [
        requests.HTTPError("401 Client Error: Unauthorized"),
        requests.HTTPError("502 Server Error: Bad Gateway"),
        requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0),
    ],
    ids=["unauthorized", "bad-gateway", "not-json"],
)
def test_http_errors_are_wrapped(error: Exception):
    """Errors answered at the HTTP level are transport failures, not raw exceptions."""
    with pytest.raises(TransportError, match="eth_getBlockByNumber to client client-0") as e:
        client_with(FailingEth(error)).get_block_by_number(0)
    assert e.value.cause is error


class MalformedEth:
    """Data API whose answers do not parse."""

    def get_block_by_number(self, block_number):
        """Parse a block without any field."""
        return BlockResponse.model_validate({})


def test_malformed_result_is_a_protocol_violation():
    """A result that does not parse is the client's fault."""
    with pytest.raises(ProtocolViolationError, match="malformed result"):
        client_with(MalformedEth()).get_block_by_number(0)


class StubReadiness:
    """Readiness check that records the clients it was asked about."""

    def __init__(self):
        """Start without clients."""
        self.clients: List[EngineClient] = []

    def wait(self, client: EngineClient):
        """Accept every client."""
        self.clients.append(client)


@pytest.fixture
def hive_test() -> MagicMock:
    """A hive test whose clients run at 10.0.0.2."""
    hive_test = MagicMock()
    hive_test.start_client.return_value.ip = "10.0.0.2"
    return hive_test


@pytest.fixture
def starter(hive_test: MagicMock, monkeypatch: pytest.MonkeyPatch) -> HiveClientStarter:
    """A starter that does not wait for real containers."""
    client_type = MagicMock()
    client_type.name = "go-ethereum"
    starter = HiveClientStarter(hive_test, client_type, SimulatorConfig(request_timeout=3))
    starter.readiness = StubReadiness()  # type: ignore[assignment]
    monkeypatch.setattr(
        AdminRPC,
        "node_info",
        lambda self: {"enode": f"enode://{NODE_ID}@127.0.0.1:30303?discport=0"},
    )
    return starter


def start(starter: HiveClientStarter, role: ClientRole, bootnode: str | None) -> EngineClient:
    """Start a client with a minimal genesis."""
    return starter.start(
        name="client-1",
        genesis={"timestamp": "0x0"},
        environment={"HIVE_SHANGHAI_TIMESTAMP": "0"},
        role=role,
        bootnode=bootnode,
    )


def test_hive_starter(starter: HiveClientStarter, hive_test: MagicMock):
    """The client gets the merged genesis environment, the genesis file and the bootnode."""
    client = start(starter, ClientRole.MIRRORED, "enode://boot@10.0.0.1:30303")
    kwargs: Dict[str, Any] = hive_test.start_client.call_args.kwargs
    environment = kwargs["environment"]
    assert environment["HIVE_BOOTNODE"] == "enode://boot@10.0.0.1:30303"
    assert environment["HIVE_SHANGHAI_TIMESTAMP"] == "0"
    assert MERGED_GENESIS_ENVIRONMENT.items() <= environment.items()
    assert json.loads(kwargs["files"]["/genesis.json"].read()) == {"timestamp": "0x0"}

    assert isinstance(client.engine, EngineRPC) and isinstance(client.eth, EthRPC)
    assert client.engine.url == "http://10.0.0.2:8551"
    assert client.eth.url == "http://10.0.0.2:8545"
    assert client.engine.timeout == 3
    assert client.role == ClientRole.MIRRORED
    assert client.enode == f"enode://{NODE_ID}@10.0.0.2:30303"
    assert starter.readiness.clients == [client]  # type: ignore[attr-defined]


def test_syncing_client_has_no_bootnode(starter: HiveClientStarter, hive_test: MagicMock):
    """A client left behind on purpose is not told about the bootnode."""
    start(starter, ClientRole.SYNCING, "enode://boot@10.0.0.1:30303")
    assert "HIVE_BOOTNODE" not in hive_test.start_client.call_args.kwargs["environment"]


def test_client_without_admin_namespace(
    starter: HiveClientStarter, monkeypatch: pytest.MonkeyPatch
):
    """A client that does not serve its node info has no enode."""

    def node_info(self):
        raise JSONRPCError(-32601, "the method admin_nodeInfo does not exist")

    monkeypatch.setattr(AdminRPC, "node_info", node_info)
    assert start(starter, ClientRole.MIRRORED, None).enode is None


def test_hive_refuses_to_start(starter: HiveClientStarter, hive_test: MagicMock):
    """A container that does not start is a setup failure."""
    hive_test.start_client.return_value = None
    with pytest.raises(ClientNotReadyError, match="Unable to start client client-1"):
        start(starter, ClientRole.MIRRORED, None)


def test_stop(starter: HiveClientStarter, hive_test: MagicMock):
    """Stopping a client stops its container."""
    client = start(starter, ClientRole.MIRRORED, None)
    starter.stop(client)
    hive_test.start_client.return_value.stop.assert_called_once()
