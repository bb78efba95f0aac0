"""
Consensus layer mock driving the clients of a scenario through the Engine API.

Each produced payload goes through the same rounds:

1. `engine_forkchoiceUpdatedVX` with payload attributes on the producing client.
2. An optional delay, so the builder can pick up more transactions.
3. `engine_getPayloadVX` and a check of the payload's shape for its fork.
4. `engine_newPayloadVX` on every mirrored client.
5. `engine_forkchoiceUpdatedVX` on every mirrored client, promoting the payload to head.

Hooks let a step observe or extend a round, e.g. to send a modified copy of the payload
before the real one is broadcast.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List

from engine_test_base_types import Address, Hash
from engine_test_forks import BlobGasParameters, Fork, ForkSchedule
from engine_test_rpc import (
    ForkchoiceState,
    GetPayloadResponse,
    PayloadAttributes,
    PayloadStatusEnum,
)
from engine_test_types import ExecutionPayload
from engine_test_types.utils import keccak256
from pytest_plugins.logging import get_logger

from .client import ClientRole, EngineClient
from .exceptions import ProtocolViolationError, SequencingError, SimulatorError
from .validator import check_payload_shape

logger = get_logger(__name__)

ACCEPTED_BROADCAST_STATUSES = (
    PayloadStatusEnum.VALID,
    PayloadStatusEnum.ACCEPTED,
    PayloadStatusEnum.SYNCING,
)


class CLMockState(str, Enum):
    """Life cycle of the CL Mock."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    BUILDING = "building"
    FAULTED = "faulted"


@dataclass(frozen=True)
class ChainHead:
    """The fields of the canonical head that the next payload depends on."""

    number: int
    hash: Hash
    timestamp: int
    blob_gas_used: int = 0
    excess_blob_gas: int = 0


@dataclass(frozen=True)
class ProducedPayload:
    """A payload built by a client during one round of the CL Mock."""

    response: GetPayloadResponse
    attributes: PayloadAttributes
    fork: Fork
    parent: ChainHead
    producer: EngineClient

    @property
    def payload(self) -> ExecutionPayload:
        """The execution payload."""
        return self.response.execution_payload

    @property
    def parent_beacon_root(self) -> Hash | None:
        """Beacon root the payload was built with."""
        return self.attributes.parent_beacon_block_root

    @property
    def blob_count(self) -> int:
        """Number of blobs the payload carries."""
        return len(self.payload.blob_versioned_hashes())


@dataclass
class CLMockHooks:
    """Callbacks run at fixed points of a round."""

    on_get_payload: Callable[[ProducedPayload], None] | None = None
    on_new_payload_broadcast: Callable[[ProducedPayload], None] | None = None
    on_forkchoice_broadcast: Callable[[ProducedPayload], None] | None = None


def _derive(label: bytes, number: int) -> Hash:
    return keccak256(label + number.to_bytes(8, "big"))


class CLMock:
    """Builds and promotes payloads for the clients of one scenario, one round at a time."""

    def __init__(
        self,
        schedule: ForkSchedule,
        blob_params: BlobGasParameters,
        *,
        block_timestamp_increment: int = 1,
        get_payload_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the mock; it becomes ready once the first client is added."""
        self.schedule = schedule
        self.blob_params = blob_params
        self.block_timestamp_increment = block_timestamp_increment
        self.get_payload_delay = get_payload_delay
        self.sleep = sleep
        self.state = CLMockState.UNINITIALIZED
        self.clients: List[EngineClient] = []
        self.head: ChainHead | None = None
        self.genesis: ChainHead | None = None
        self.history: List[ProducedPayload] = []
        self._producer_index = 0
        self._lock = threading.Lock()

    def add_client(self, client: EngineClient):
        """Mirror every future payload to the client; the first client defines the genesis."""
        with self._lock:
            if self.state == CLMockState.UNINITIALIZED:
                genesis = client.get_block_by_number(0)
                if genesis is None:
                    raise ProtocolViolationError(f"{client.name} does not serve the genesis block")
                self.genesis = ChainHead(
                    number=0,
                    hash=genesis.hash,
                    timestamp=int(genesis.timestamp),
                    blob_gas_used=int(genesis.blob_gas_used or 0),
                    excess_blob_gas=int(genesis.excess_blob_gas or 0),
                )
                self.head = self.genesis
                self.state = CLMockState.READY
                logger.info(f"CL Mock initialized on genesis {genesis.hash} from {client.name}")
            client.role = ClientRole.MIRRORED
            self.clients.append(client)

    @property
    def latest(self) -> ProducedPayload:
        """The last payload produced by the mock."""
        if not self.history:
            raise SequencingError("no payload has been produced yet")
        return self.history[-1]

    def next_producer(self) -> EngineClient:
        """Return the client that builds the next payload, rotating over mirrored clients."""
        if not self.clients:
            raise SequencingError("the CL Mock has no client to build payloads")
        producer = self.clients[self._producer_index % len(self.clients)]
        self._producer_index += 1
        return producer

    def payload_attributes(self, fork: Fork, number: int, timestamp: int) -> PayloadAttributes:
        """Return the deterministic attributes of the payload at the given height."""
        return PayloadAttributes(
            timestamp=timestamp,
            prev_randao=_derive(b"prev-randao", number),
            suggested_fee_recipient=Address(0),
            withdrawals=[] if fork.header_withdrawals_required() else None,
            parent_beacon_block_root=(
                _derive(b"beacon-root", number) if fork.header_beacon_root_required() else None
            ),
        )

    def produce_payload(
        self, hooks: CLMockHooks | None = None, *, get_payload_delay: float | None = None
    ) -> ProducedPayload:
        """Run one full round and return the promoted payload."""
        if hooks is None:
            hooks = CLMockHooks()
        with self._lock:
            if self.state == CLMockState.FAULTED:
                raise SequencingError("the CL Mock faulted during an earlier round")
            if self.state == CLMockState.UNINITIALIZED or self.head is None:
                raise SequencingError("the CL Mock has no client yet")
            self.state = CLMockState.BUILDING
            try:
                produced = self._round(
                    hooks,
                    self.get_payload_delay if get_payload_delay is None else get_payload_delay,
                )
            except SimulatorError as e:
                self.state = CLMockState.FAULTED
                logger.fail(f"CL Mock round on top of block {self.head.number} failed: {e}")
                raise
            self.state = CLMockState.READY
            return produced

    def _round(self, hooks: CLMockHooks, delay: float) -> ProducedPayload:
        parent = self.head
        if parent is None:
            raise SequencingError("the CL Mock has no chain head")
        producer = self.next_producer()
        number = parent.number + 1
        timestamp = parent.timestamp + self.block_timestamp_increment
        fork = self.schedule.fork_at(timestamp)
        attributes = self.payload_attributes(fork, number, timestamp)
        build_state = ForkchoiceState(
            head_block_hash=parent.hash,
            safe_block_hash=parent.hash,
            finalized_block_hash=parent.hash,
        )

        response = producer.forkchoice_updated(
            build_state, attributes, version=fork.engine_forkchoice_updated_version()
        )
        if response.payload_status.status != PayloadStatusEnum.VALID:
            raise ProtocolViolationError(
                f"{producer.name} did not accept the build request",
                expected=PayloadStatusEnum.VALID.value,
                actual=response.payload_status.status.value,
            )
        if response.payload_id is None:
            raise ProtocolViolationError(f"{producer.name} returned no payload id")

        if delay > 0:
            self.sleep(delay)

        built = producer.get_payload(
            response.payload_id, version=fork.engine_get_payload_version()
        )
        check_payload_shape(
            fork,
            built.execution_payload,
            parent_hash=parent.hash,
            number=number,
            timestamp=timestamp,
        )
        produced = ProducedPayload(
            response=built, attributes=attributes, fork=fork, parent=parent, producer=producer
        )
        if hooks.on_get_payload is not None:
            hooks.on_get_payload(produced)

        self._broadcast_new_payload(produced)
        if hooks.on_new_payload_broadcast is not None:
            hooks.on_new_payload_broadcast(produced)

        self._broadcast_forkchoice(produced)
        if hooks.on_forkchoice_broadcast is not None:
            hooks.on_forkchoice_broadcast(produced)

        payload = produced.payload
        self.head = ChainHead(
            number=number,
            hash=payload.block_hash,
            timestamp=timestamp,
            blob_gas_used=int(payload.blob_gas_used or 0),
            excess_blob_gas=int(payload.excess_blob_gas or 0),
        )
        self.history.append(produced)
        logger.info(
            f"Produced payload {number} ({fork}) hash={payload.block_hash} "
            f"blobs={produced.blob_count} txs={len(payload.transactions)} by {producer.name}"
        )
        return produced

    def _broadcast_new_payload(self, produced: ProducedPayload):
        payload = produced.payload
        version = produced.fork.engine_new_payload_version()
        versioned_hashes = (
            payload.blob_versioned_hashes()
            if produced.fork.engine_new_payload_blob_hashes()
            else None
        )
        for client in self.clients:
            status = client.new_payload(
                payload, versioned_hashes, produced.parent_beacon_root, version=version
            )
            accepted = (
                (PayloadStatusEnum.VALID,)
                if client is produced.producer
                else ACCEPTED_BROADCAST_STATUSES
            )
            if status.status not in accepted:
                raise ProtocolViolationError(
                    f"{client.name} rejected payload {payload.number} built by "
                    f"{produced.producer.name}: {status.validation_error}",
                    expected=[s.value for s in accepted],
                    actual=status.status.value,
                )

    def _broadcast_forkchoice(self, produced: ProducedPayload):
        payload = produced.payload
        state = ForkchoiceState(
            head_block_hash=payload.block_hash,
            safe_block_hash=produced.parent.hash,
            finalized_block_hash=produced.parent.hash,
        )
        version = produced.fork.engine_forkchoice_updated_version()
        for client in self.clients:
            response = client.forkchoice_updated(state, None, version=version)
            accepted = (
                (PayloadStatusEnum.VALID,)
                if client is produced.producer
                else ACCEPTED_BROADCAST_STATUSES
            )
            if response.payload_status.status not in accepted:
                raise ProtocolViolationError(
                    f"{client.name} did not promote payload {payload.number}",
                    expected=[s.value for s in accepted],
                    actual=response.payload_status.status.value,
                )
