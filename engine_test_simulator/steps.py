"""
Steps a scenario is made of.

Every step is a pydantic model describing what to do, and `execute` does it against the
scenario context. Steps raise on failure and return nothing on success.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, List

from pydantic import BaseModel, ConfigDict, Field, model_validator

from engine_test_base_types import Bytes, Hash
from engine_test_forks import Fork
from engine_test_rpc import PayloadStatusEnum
from engine_test_types import (
    BlobID,
    ExecutionPayload,
    HashCorruption,
    Transaction,
    VersionedHashes,
)
from pytest_plugins.logging import get_logger

from .client import ClientRole, EngineClient
from .clmock import CLMockHooks, ProducedPayload
from .customizer import PayloadCustomizer
from .devp2p import DevP2PProbe, compute_fork_id
from .exceptions import (
    ParallelStepsError,
    ProtocolViolationError,
    SequencingError,
    SimulatorError,
    StepFailure,
    SubmissionError,
)
from .generator import (
    DEFAULT_GAS_FEE_CAP,
    DEFAULT_GAS_TIP_CAP,
    DEFAULT_MAX_BLOB_GAS_COST,
    TransactionGenerator,
)
from .planner import plan_payload, planned_blob_ids
from .validator import ExpectedOutcome, PayloadExpectation, classify_new_payload

if TYPE_CHECKING:
    from .context import ScenarioContext

logger = get_logger(__name__)


class Step(BaseModel, ABC):
    """One action of a scenario."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @abstractmethod
    def execute(self, context: "ScenarioContext"):
        """Run the step against the scenario's context."""
        pass

    def description(self) -> str:
        """Return the step kind and its non-default parameters."""
        parameters = ", ".join(
            f"{name}={getattr(self, name)!r}"
            for name in type(self).model_fields
            if name in self.model_fields_set
        )
        return f"{type(self).__name__}({parameters})"


class PayloadModification(BaseModel):
    """Parameters shared by the steps that send a hand-crafted payload."""

    versioned_hashes: VersionedHashes | None = None
    versioned_hash_corruption: HashCorruption | None = None
    """Applied last, to the explicit, customized or canonical list."""
    payload_customizer: PayloadCustomizer | None = None
    expected_status: PayloadStatusEnum | None = None
    expected_error: int | None = None
    expectation_description: str = ""

    def expected_outcome(
        self,
        fork: Fork,
        *,
        version: int,
        payload: ExecutionPayload,
        versioned_hashes: List[Hash] | None,
        parent_beacon_root: Hash | None,
        canonical_hashes: List[Hash],
    ) -> ExpectedOutcome:
        """
        Return the outcome the client must produce.

        An explicit error or status wins; otherwise the outcome mandated by the Engine API
        applies, and a payload with customized fields is expected to be invalid.
        """
        description = self.expectation_description
        if self.expected_error is not None:
            return ExpectedOutcome.error(self.expected_error, description)
        if self.expected_status is not None:
            return ExpectedOutcome(status=self.expected_status, description=description)
        mandated = classify_new_payload(
            fork,
            version=version,
            blob_gas_used=payload.blob_gas_used,
            excess_blob_gas=payload.excess_blob_gas,
            versioned_hashes=versioned_hashes,
            parent_beacon_root=parent_beacon_root,
            canonical_hashes=canonical_hashes,
        )
        if mandated is not None:
            return mandated
        if self.payload_customizer is not None:
            return ExpectedOutcome.invalid(description or self.payload_customizer.description())
        return ExpectedOutcome.valid(description)

    def send_modified(
        self,
        context: "ScenarioContext",
        produced: ProducedPayload,
        client: EngineClient,
        version: int,
    ):
        """Send a modified copy of a produced payload and check the client's answer."""
        fork = produced.fork
        canonical = produced.payload.blob_versioned_hashes()
        hashes: List[Hash] | None = canonical if fork.engine_new_payload_blob_hashes() else None
        if self.versioned_hashes is not None:
            hashes = self.versioned_hashes.hashes(context.blob_params.versioned_hash_version)
        payload, beacon_root = produced.payload, produced.parent_beacon_root
        if self.payload_customizer is not None:
            hashes = self.payload_customizer.custom_versioned_hashes(hashes)
            payload, beacon_root = self.payload_customizer.apply(payload, beacon_root)
        if self.versioned_hash_corruption is not None:
            hashes = self.versioned_hash_corruption.apply(hashes)
        expected = self.expected_outcome(
            fork,
            version=version,
            payload=payload,
            versioned_hashes=hashes,
            parent_beacon_root=beacon_root,
            canonical_hashes=canonical,
        )
        method = f"engine_newPayloadV{version}"
        logger.info(
            f"Sending modified payload {payload.number} to {client.name}, expecting {expected}"
        )
        expected.verify(
            method, lambda: client.new_payload(payload, hashes, beacon_root, version=version)
        )


class NewPayloads(Step, PayloadModification):
    """
    Produce payloads with the CL Mock and check their blob content.

    When a modification is requested (a customizer, explicit or corrupted versioned hashes,
    or a forced method version), a modified copy of every payload is first sent to the client that
    built it and its answer is checked; the CL Mock then carries on with the real payload.
    """

    payload_count: int = Field(1, ge=0)
    expected_included_blob_count: int = 0
    expected_blobs: List[BlobID] | None = None
    get_payload_delay: float | None = None
    version: int | None = None

    @property
    def modifies_payload(self) -> bool:
        """Whether a modified payload is sent in each round."""
        return (
            self.payload_customizer is not None
            or self.versioned_hashes is not None
            or self.versioned_hash_corruption is not None
            or self.version is not None
        )

    def on_get_payload(self, context: "ScenarioContext", produced: ProducedPayload):
        """Check the built payload and send the modified copy, if any."""
        payload = produced.payload
        reference = plan_payload(
            context.pool.pending(),
            context.blob_params,
            parent_excess_blob_gas=produced.parent.excess_blob_gas or 0,
            parent_blob_gas_used=produced.parent.blob_gas_used or 0,
        )
        context.validator.check(
            produced.response,
            PayloadExpectation(
                blob_count=self.expected_included_blob_count,
                blob_ids=self.expected_blobs,
                reference_blob_ids=planned_blob_ids(reference),
            ),
        )
        context.validator.check_blob_gas(
            produced.fork,
            payload,
            parent_excess_blob_gas=produced.parent.excess_blob_gas,
            parent_blob_gas_used=produced.parent.blob_gas_used,
        )
        if self.modifies_payload:
            version = (
                self.version
                if self.version is not None
                else produced.fork.engine_new_payload_version()
            )
            self.send_modified(context, produced, produced.producer, version)

    def execute(self, context: "ScenarioContext"):
        """Run `payload_count` rounds of the CL Mock."""
        hooks = CLMockHooks(on_get_payload=lambda produced: self.on_get_payload(context, produced))
        for _ in range(self.payload_count):
            produced = context.clmock.produce_payload(
                hooks, get_payload_delay=self.get_payload_delay
            )
            context.validator.record_inclusion(produced.payload)
            context.validator.cross_check(
                produced.producer, produced.payload, produced.parent_beacon_root
            )


class SendBlobTransactions(Step):
    """Submit transactions from one account, blob-carrying unless `blobs_per_transaction` is 0."""

    transaction_count: int = Field(1, ge=1)
    blobs_per_transaction: int = Field(1, ge=0)
    max_blob_gas_cost: int = DEFAULT_MAX_BLOB_GAS_COST
    fee_cap: int = DEFAULT_GAS_FEE_CAP
    tip_cap: int = DEFAULT_GAS_TIP_CAP
    replace_transactions: bool = False
    account_index: int = 0
    client_index: int = 0
    expect_submission_error: bool = False

    def execute(self, context: "ScenarioContext"):
        """Submit the transactions to the selected client."""
        generator = TransactionGenerator(context)
        client = context.client(self.client_index)
        try:
            generator.send(
                self.transaction_count,
                blobs_per_transaction=self.blobs_per_transaction,
                max_blob_gas_cost=self.max_blob_gas_cost,
                fee_cap=self.fee_cap,
                tip_cap=self.tip_cap,
                account=self.account_index,
                client=client,
                replace=self.replace_transactions,
            )
        except SubmissionError as e:
            if not self.expect_submission_error:
                raise
            logger.info(f"Submission rejected as expected: {e.reason}")
            return
        if self.expect_submission_error:
            raise ProtocolViolationError(
                f"{client.name} accepted transactions it was expected to reject",
                expected="rejection",
                actual="accepted",
            )


class LaunchClients(Step):
    """
    Start more clients of the same type.

    A client added to the CL Mock receives every later payload; one that is not stays
    connected to the network unless it also skips the bootnode, which leaves it syncing.
    """

    client_count: int = Field(1, ge=1)
    skip_adding_to_clmock: bool = False
    skip_connecting_to_bootnode: bool = False

    @model_validator(mode="after")
    def check_roles(self) -> "LaunchClients":
        """Mirrored clients always follow the chain, so they cannot skip the bootnode."""
        if self.skip_connecting_to_bootnode and not self.skip_adding_to_clmock:
            raise ValueError("skip_connecting_to_bootnode requires skip_adding_to_clmock")
        return self

    @property
    def role(self) -> ClientRole:
        """Role of every launched client."""
        if not self.skip_adding_to_clmock:
            return ClientRole.MIRRORED
        if self.skip_connecting_to_bootnode:
            return ClientRole.SYNCING
        return ClientRole.DETACHED

    def execute(self, context: "ScenarioContext"):
        """Start the clients one after the other."""
        for _ in range(self.client_count):
            context.launch_client(self.role)


class SendModifiedLatestPayload(Step, PayloadModification):
    """Send a modified copy of the CL Mock's latest payload to one client."""

    client_index: int = 0

    def execute(self, context: "ScenarioContext"):
        """Build the copy from the latest payload and check the client's answer."""
        latest = context.clmock.latest
        client = context.client(self.client_index)
        self.send_modified(context, latest, client, latest.fork.engine_new_payload_version())


class ParallelSteps(Step):
    """Run steps concurrently and wait for all of them, failing if any failed."""

    steps: List[Step]

    def description(self) -> str:
        """List the member steps."""
        return f"ParallelSteps({', '.join(step.description() for step in self.steps)})"

    def execute(self, context: "ScenarioContext"):
        """Run every member to completion, then report every failure at once."""
        if not self.steps:
            return
        with ThreadPoolExecutor(max_workers=len(self.steps)) as executor:
            futures = [executor.submit(step.execute, context) for step in self.steps]
            errors = [future.exception() for future in futures]
        failures: List[StepFailure] = []
        for step, error in zip(self.steps, errors):
            if error is None:
                continue
            if not isinstance(error, SimulatorError):
                raise error
            failures.append(StepFailure(step.description(), error))
        if failures:
            raise ParallelStepsError(failures)


def _probe(context: "ScenarioContext", client: EngineClient) -> DevP2PProbe:
    if client.enode is None:
        raise SequencingError(f"{client.name} has no enode to connect to")
    genesis = context.clmock.genesis
    if genesis is None:
        raise SequencingError("the genesis of the scenario is not known yet")
    head = client.get_block_by_number("latest")
    if head is None:
        raise ProtocolViolationError(f"{client.name} does not serve its latest block")
    return DevP2PProbe(
        client.enode,
        network_id=context.chain_id,
        genesis_hash=bytes(genesis.hash),
        fork_id=compute_fork_id(genesis.hash, context.schedule, int(head.timestamp)),
        best_hash=bytes(head.hash),
        timeout=context.config.request_timeout,
    )


class DevP2PClientPeering(Step):
    """Peer with a client and check the fork id it announces."""

    client_index: int = 0

    def execute(self, context: "ScenarioContext"):
        """Connect, compare the announced fork id, and check the session stays open."""
        client = context.client(self.client_index)
        probe = _probe(context, client)
        with probe:
            status = probe.remote_status
            if status is None:
                raise ProtocolViolationError(f"{client.name} sent no Status message")
            actual = (Bytes(status.fork_hash), status.fork_next)
            expected = (Bytes(probe.fork_id.fork_hash), probe.fork_id.fork_next)
            if actual != expected:
                raise ProtocolViolationError(
                    f"{client.name} announced an unexpected fork id",
                    expected=expected,
                    actual=actual,
                )
            if status.genesis_hash != probe.genesis_hash:
                raise ProtocolViolationError(
                    f"{client.name} announced an unexpected genesis",
                    expected=Bytes(probe.genesis_hash),
                    actual=Bytes(status.genesis_hash),
                )
            probe.ping()
        logger.info(f"Peered with {client.name}, fork id {expected}")


class DevP2PRequestPooledTransactionHash(Step):
    """Request submitted transactions from a client's pool over devp2p."""

    client_index: int = 0
    transaction_indexes: List[int]
    wait_for_new_pooled_transaction: bool = False

    def execute(self, context: "ScenarioContext"):
        """Request the transactions by hash and compare them with what was submitted."""
        client = context.client(self.client_index)
        if any(not 0 <= i < len(context.pool) for i in self.transaction_indexes):
            raise SequencingError(
                f"transactions {self.transaction_indexes} requested but only "
                f"{len(context.pool)} were sent"
            )
        submitted = [context.pool[i] for i in self.transaction_indexes]
        hashes = [bytes(p.hash) for p in submitted]
        with _probe(context, client) as probe:
            if self.wait_for_new_pooled_transaction:
                announced = probe.wait_for_announcements(hashes)
                for pending in submitted:
                    if announced[bytes(pending.hash)] != pending.tx.ty:
                        raise ProtocolViolationError(
                            f"transaction {pending.hash} announced with the wrong type",
                            expected=int(pending.tx.ty),
                            actual=announced[bytes(pending.hash)],
                        )
            bodies = probe.request_pooled_transactions(hashes)
        if len(bodies) != len(submitted):
            raise ProtocolViolationError(
                f"{client.name} returned {len(bodies)} pooled transaction(s)",
                expected=len(submitted),
                actual=len(bodies),
            )
        for pending, body in zip(submitted, bodies):
            if Bytes(body) != pending.raw or Transaction.from_rlp(body).hash != pending.hash:
                raise ProtocolViolationError(
                    f"pooled transaction {pending.hash} differs from the submitted one",
                    expected=pending.raw.hex()[:66],
                    actual=Bytes(body).hex()[:66],
                )
        logger.info(f"Retrieved {len(bodies)} pooled transaction(s) from {client.name}")
