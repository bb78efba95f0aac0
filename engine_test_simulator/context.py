"""Mutable state of one running scenario."""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from config import SimulatorConfig
from engine_test_forks import BlobGasParameters, ForkSchedule
from engine_test_types import EOA, AccountRegistry
from pytest_plugins.logging import get_logger

from .client import ClientRole, ClientStarter, EngineClient
from .clmock import ChainHead, CLMock
from .exceptions import SequencingError
from .genesis import build_genesis, client_environment
from .txpool import TransactionPool
from .validator import PayloadValidator

logger = get_logger(__name__)


@dataclass(frozen=True)
class ContextSnapshot:
    """Client set and chain head as seen by a step when it starts."""

    clients: Tuple[EngineClient, ...]
    head: ChainHead | None


class ScenarioContext:
    """
    Everything a scenario's steps share: clients, CL Mock, accounts and submitted
    transactions, fork schedule and blob gas parameters.

    A context is created for a single scenario and closed at its end; fork parameters are
    plain attributes of the context so that concurrent scenarios never share them.
    """

    def __init__(
        self,
        name: str,
        *,
        schedule: ForkSchedule,
        starter: ClientStarter,
        config: SimulatorConfig,
        blob_params: BlobGasParameters | None = None,
        account_count: int = 16,
    ):
        """Create the context; no client is started until `launch_client` is called."""
        self.name = name
        self.schedule = schedule
        self.starter = starter
        self.config = config
        self.blob_params = blob_params if blob_params is not None else BlobGasParameters()
        self.chain_id = config.chain_id
        self.registry = AccountRegistry.deterministic(account_count)
        self.pool = TransactionPool()
        self.validator = PayloadValidator(self.pool, self.blob_params)
        self.clmock = CLMock(
            schedule,
            self.blob_params,
            block_timestamp_increment=config.block_timestamp_increment,
            get_payload_delay=config.get_payload_delay,
        )
        self.clients: List[EngineClient] = []
        self._clients_lock = threading.Lock()
        self.genesis: Dict[str, Any] = build_genesis(schedule, self.registry, self.chain_id)

    @property
    def primary(self) -> EngineClient:
        """The first client launched by the scenario."""
        if not self.clients:
            raise SequencingError("the scenario has no client")
        return self.clients[0]

    def client(self, index: int) -> EngineClient:
        """Return the client launched at the given position."""
        if not 0 <= index < len(self.clients):
            raise SequencingError(
                f"client {index} requested but the scenario has {len(self.clients)} client(s)"
            )
        return self.clients[index]

    def account(self, index: int) -> EOA:
        """Return the test account at the given index."""
        if not 0 <= index < len(self.registry):
            raise SequencingError(
                f"account {index} requested but the scenario has {len(self.registry)} account(s)"
            )
        return self.registry[index]

    def launch_client(self, role: ClientRole = ClientRole.MIRRORED) -> EngineClient:
        """Start a client; it is connected to the primary client unless it is syncing."""
        with self._clients_lock:
            name = f"client-{len(self.clients)}"
            bootnode = self.clients[0].enode if self.clients else None
            client = self.starter.start(
                name=name,
                genesis=self.genesis,
                environment=client_environment(self.schedule, self.chain_id),
                role=role,
                bootnode=bootnode,
            )
            client.role = role
            self.clients.append(client)
        if role == ClientRole.MIRRORED:
            self.clmock.add_client(client)
        logger.info(f"Launched {client.name} as {role.value} client")
        return client

    def snapshot(self) -> ContextSnapshot:
        """Return the client set and head a step should work with."""
        with self._clients_lock:
            clients = tuple(self.clients)
        return ContextSnapshot(clients=clients, head=self.clmock.head)

    def close(self):
        """Stop every client of the scenario, even if some fail to stop."""
        with self._clients_lock:
            clients, self.clients = self.clients, []
        for client in reversed(clients):
            try:
                self.starter.stop(client)
            except Exception as e:
                logger.warning(f"Failed to stop {client.name}: {e}")
