"""
Adapter between the CL Mock and the clients under test.

`EngineClient` issues the Engine API and data API calls of one client, turning transport
failures into `TransportError` so that they are reported as fatal for the running
scenario. How a client process is created is left to a `ClientStarter`.
"""

import io
import json
import re
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, TypeVar, cast

import requests
from hive.client import Client, ClientType
from hive.testing import HiveTest
from pydantic import ValidationError
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from config import SimulatorConfig
from engine_test_base_types import Bytes, Hash
from engine_test_rpc import (
    AdminRPC,
    BlockNumberType,
    BlockResponse,
    EngineRPC,
    EthRPC,
    ForkchoiceState,
    ForkchoiceUpdateResponse,
    GetPayloadResponse,
    JSONRPCError,
    PayloadAttributes,
    PayloadStatus,
    TransactionByHashResponse,
)
from engine_test_types import ExecutionPayload, Transaction
from pytest_plugins.logging import get_logger

from .exceptions import ClientNotReadyError, ProtocolViolationError, TransportError

logger = get_logger(__name__)

T = TypeVar("T")

# Pre-merge forks are active from genesis and the chain starts merged.
MERGED_GENESIS_ENVIRONMENT: Dict[str, str] = {
    "HIVE_FORK_HOMESTEAD": "0",
    "HIVE_FORK_TANGERINE": "0",
    "HIVE_FORK_SPURIOUS": "0",
    "HIVE_FORK_BYZANTIUM": "0",
    "HIVE_FORK_CONSTANTINOPLE": "0",
    "HIVE_FORK_PETERSBURG": "0",
    "HIVE_FORK_ISTANBUL": "0",
    "HIVE_FORK_BERLIN": "0",
    "HIVE_FORK_LONDON": "0",
    "HIVE_FORK_MERGE": "0",
    "HIVE_TERMINAL_TOTAL_DIFFICULTY": "0",
}


class ClientRole(str, Enum):
    """How a client takes part in a scenario."""

    MIRRORED = "mirrored"
    """Receives every payload produced by the CL Mock and may be asked to build one."""
    DETACHED = "detached"
    """Connected to the network but never driven by the CL Mock."""
    SYNCING = "syncing"
    """Neither driven by the CL Mock nor connected to the bootnode, so it stays behind."""


class EngineClient:
    """A client under test, reached through its Engine API and data API endpoints."""

    def __init__(
        self,
        name: str,
        engine: EngineRPC,
        eth: EthRPC,
        *,
        role: ClientRole = ClientRole.MIRRORED,
        enode: str | None = None,
        handle: Any = None,
    ):
        """Initialize the adapter; `handle` is whatever the starter needs to stop the client."""
        self.name = name
        self.engine = engine
        self.eth = eth
        self.role = role
        self.enode = enode
        self.handle = handle

    def __repr__(self) -> str:
        """Return the client name and role."""
        return f"EngineClient({self.name}, {self.role.value})"

    def _call(self, method: str, request: Callable[[], T]) -> T:
        try:
            return request()
        except requests.RequestException as e:
            # HTTP errors and undecodable bodies included
            logger.fail(f"{method} to {self.name} failed: {e}")
            raise TransportError(self.name, method, e) from e
        except ValidationError as e:
            logger.fail(f"{method} to {self.name} returned a malformed result: {e}")
            raise ProtocolViolationError(
                f"{method} to {self.name} returned a malformed result", actual=str(e)
            ) from e

    def forkchoice_updated(
        self,
        forkchoice_state: ForkchoiceState,
        payload_attributes: PayloadAttributes | None,
        *,
        version: int,
    ) -> ForkchoiceUpdateResponse:
        """Send `engine_forkchoiceUpdatedVX`."""
        method = f"engine_forkchoiceUpdatedV{version}"
        logger.verbose(
            f"{self.name}: {method} head={forkchoice_state.head_block_hash} "
            f"attributes={'yes' if payload_attributes is not None else 'no'}"
        )
        return self._call(
            method,
            lambda: self.engine.forkchoice_updated(
                forkchoice_state, payload_attributes, version=version
            ),
        )

    def get_payload(self, payload_id: Bytes, *, version: int) -> GetPayloadResponse:
        """Send `engine_getPayloadVX`."""
        method = f"engine_getPayloadV{version}"
        logger.verbose(f"{self.name}: {method} id={payload_id}")
        return self._call(method, lambda: self.engine.get_payload(payload_id, version=version))

    def new_payload(
        self,
        payload: ExecutionPayload,
        versioned_hashes: List[Hash] | None,
        parent_beacon_block_root: Hash | None,
        *,
        version: int,
    ) -> PayloadStatus:
        """Send `engine_newPayloadVX`."""
        method = f"engine_newPayloadV{version}"
        logger.verbose(f"{self.name}: {method} number={payload.number} hash={payload.block_hash}")
        return self._call(
            method,
            lambda: self.engine.new_payload(
                payload, versioned_hashes, parent_beacon_block_root, version=version
            ),
        )

    def send_transaction(self, transaction: Transaction, raw: Bytes | None = None) -> Hash:
        """Send a transaction, possibly in its network encoding, to the client's pool."""
        logger.debug(f"{self.name}: eth_sendRawTransaction {transaction.hash}")
        return self._call(
            "eth_sendRawTransaction", lambda: self.eth.send_transaction(transaction, raw)
        )

    def get_block_by_number(self, block_number: BlockNumberType = "latest") -> BlockResponse | None:
        """Read a block through the data API."""
        return self._call(
            "eth_getBlockByNumber", lambda: self.eth.get_block_by_number(block_number)
        )

    def get_transaction_by_hash(self, transaction_hash: Hash) -> TransactionByHashResponse | None:
        """Read a transaction through the data API."""
        return self._call(
            "eth_getTransactionByHash", lambda: self.eth.get_transaction_by_hash(transaction_hash)
        )


class ClientReadiness:
    """Waits for a freshly started client to answer, retrying with exponential backoff."""

    def __init__(self, retries: int, backoff: float, sleep: Callable[[float], None] = time.sleep):
        """Initialize with the number of attempts and the first delay between them."""
        self.retries = retries
        self.backoff = backoff
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: SimulatorConfig) -> "ClientReadiness":
        """Create the readiness check described by the configuration."""
        return cls(config.readiness_retries, config.readiness_backoff)

    def retrying(self, client: EngineClient) -> Retrying:
        """Return the retry policy: connection failures and a missing genesis are retried."""

        def log_attempt(retry_state: RetryCallState):
            logger.debug(
                f"{client.name} not ready (attempt {retry_state.attempt_number}/{self.retries})"
            )

        return Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=self.backoff),
            retry=(
                retry_if_exception_type((requests.ConnectionError, requests.Timeout))
                | retry_if_result(lambda genesis: genesis is None)
            ),
            sleep=self.sleep,
            before_sleep=log_attempt,
        )

    def wait(self, client: EngineClient) -> BlockResponse:
        """Return the genesis block once the client serves it."""
        retrying = self.retrying(client)
        try:
            genesis = cast(BlockResponse, retrying(client.eth.get_block_by_number, 0))
        except RetryError as e:
            raise ClientNotReadyError(
                f"client {client.name} not reachable after {self.retries} attempts: "
                f"{e.last_attempt.exception() or 'no genesis block'}"
            ) from e
        except requests.RequestException as e:
            raise ClientNotReadyError(f"client {client.name} failed while starting: {e}") from e
        logger.verbose(
            f"{client.name} ready after {retrying.statistics['attempt_number']} attempt(s)"
        )
        return genesis


class ClientStarter(ABC):
    """Creates and stops client processes for a scenario."""

    @abstractmethod
    def start(
        self,
        *,
        name: str,
        genesis: Dict[str, Any],
        environment: Mapping[str, str],
        role: ClientRole,
        bootnode: str | None,
    ) -> EngineClient:
        """Start a client and return once it is reachable."""
        pass

    @abstractmethod
    def stop(self, client: EngineClient):
        """Stop a client previously returned by `start`."""
        pass


class HiveClientStarter(ClientStarter):
    """Starts clients as hive containers of a single client type."""

    def __init__(self, hive_test: HiveTest, client_type: ClientType, config: SimulatorConfig):
        """Initialize the starter for one hive test."""
        self.hive_test = hive_test
        self.client_type = client_type
        self.config = config
        self.readiness = ClientReadiness.from_config(config)

    def start(
        self,
        *,
        name: str,
        genesis: Dict[str, Any],
        environment: Mapping[str, str],
        role: ClientRole,
        bootnode: str | None,
    ) -> EngineClient:
        """Start a hive client with the given genesis and fork environment."""
        env = MERGED_GENESIS_ENVIRONMENT | dict(environment)
        if bootnode is not None and role != ClientRole.SYNCING:
            env["HIVE_BOOTNODE"] = bootnode
        genesis_bytes = json.dumps(genesis).encode("utf-8")
        files = {"/genesis.json": io.BufferedReader(cast(io.RawIOBase, io.BytesIO(genesis_bytes)))}

        logger.info(f"Starting client {name} ({self.client_type.name}, {role.value})...")
        hive_client = self.hive_test.start_client(
            client_type=self.client_type, environment=env, files=files
        )
        if hive_client is None:
            raise ClientNotReadyError(
                f"Unable to start client {name} ({self.client_type.name}) via hive. Check the "
                "client or hive server logs for more information."
            )
        client = EngineClient(
            name,
            EngineRPC(f"http://{hive_client.ip}:8551", timeout=self.config.request_timeout),
            EthRPC(f"http://{hive_client.ip}:8545", timeout=self.config.request_timeout),
            role=role,
            handle=hive_client,
        )
        self.readiness.wait(client)
        client.enode = self._enode_url(hive_client)
        logger.info(f"Client {name} ready")
        return client

    def _enode_url(self, hive_client: Client) -> str | None:
        admin = AdminRPC(f"http://{hive_client.ip}:8545", timeout=self.config.request_timeout)
        try:
            enode = admin.enode()
        except JSONRPCError as e:
            # The admin namespace is optional; devp2p steps fail later without it.
            logger.warning(f"Client {hive_client.ip} does not serve admin_nodeInfo: {e}")
            return None
        # Clients report their listening address, which may differ from the container's.
        return re.sub(r"@[^:]+:", f"@{hive_client.ip}:", enode.split("?")[0])

    def stop(self, client: EngineClient):
        """Stop the hive container of the client."""
        logger.info(f"Stopping client {client.name}...")
        cast(Client, client.handle).stop()
