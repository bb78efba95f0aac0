"""
In-process execution client used to exercise the simulator without hive.

The fake builds payloads with the same selection policy the simulator expects from a
reference builder and answers `engine_newPayloadVX` from its own reading of the Engine
API rules, so scenario tests check the simulator against an independent implementation.
"""

import json
import threading
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, List, Mapping, Tuple

import ethereum_rlp as eth_rlp

from engine_test_base_types import Address, Bloom, Bytes, Hash
from engine_test_exceptions import EngineAPIError
from engine_test_forks import BlobGasParameters
from engine_test_rpc import (
    BlobsBundle,
    BlockNumberType,
    BlockResponse,
    ForkchoiceState,
    ForkchoiceUpdateResponse,
    GetPayloadResponse,
    JSONRPCError,
    PayloadAttributes,
    PayloadStatus,
    PayloadStatusEnum,
    SendTransactionExceptionError,
    TransactionByHashResponse,
)
from engine_test_types import ExecutionPayload, Transaction, TransactionType
from engine_test_types.utils import keccak256

from ..client import ClientRole, ClientStarter, EngineClient
from ..genesis import GENESIS_BASE_FEE, GENESIS_GAS_LIMIT
from ..planner import plan_payload
from ..txpool import PendingTransaction

INTRINSIC_GAS = 21_000


@dataclass
class StoredBlock:
    """A block known to the fake, with the payload it was imported from."""

    response: BlockResponse
    payload: ExecutionPayload | None = None


@dataclass
class Sidecar:
    """Blob data received with a transaction in its network form."""

    blobs: List[bytes] = field(default_factory=list)
    commitments: List[bytes] = field(default_factory=list)
    proofs: List[bytes] = field(default_factory=list)


class FakeNetwork:
    """Nodes connected through the bootnode gossip the transactions they receive."""

    def __init__(self):
        """Initialize an empty network."""
        self.nodes: List["FakeExecutionNode"] = []

    def gossip(self, origin: "FakeExecutionNode", tx: Transaction, raw: bytes):
        """Forward a transaction to every other connected node."""
        for node in self.nodes:
            if node is not origin:
                node.add_transaction(tx, raw, gossip=False)


class FakeExecutionNode:
    """Serves the Engine API and the data API methods used by the simulator."""

    def __init__(
        self,
        name: str,
        genesis: Dict[str, Any],
        *,
        network: FakeNetwork | None = None,
        blob_params: BlobGasParameters | None = None,
    ):
        """Initialize the node on the given genesis."""
        self.name = name
        self.network = network
        self.blob_params = blob_params if blob_params is not None else BlobGasParameters()
        self.cancun_time = int(genesis["config"]["cancunTime"])
        genesis_hash = keccak256(json.dumps(genesis, sort_keys=True).encode())
        genesis_block = BlockResponse(
            number=0,
            hash=genesis_hash,
            parent_hash=Hash(0),
            timestamp=int(genesis["timestamp"], 16),
            blob_gas_used=int(genesis["blobGasUsed"], 16) if "blobGasUsed" in genesis else None,
            excess_blob_gas=(
                int(genesis["excessBlobGas"], 16) if "excessBlobGas" in genesis else None
            ),
        )
        self.blocks: Dict[Hash, StoredBlock] = {genesis_hash: StoredBlock(genesis_block)}
        self.canonical: Dict[int, Hash] = {0: genesis_hash}
        self.head = genesis_hash
        self.pool: List[PendingTransaction] = []
        self.sidecars: Dict[Hash, Sidecar] = {}
        self.included: Dict[Hash, Tuple[Hash, int]] = {}
        self.built: Dict[bytes, GetPayloadResponse] = {}
        self.senders: Dict[Address, int] = {}
        self.calls: List[str] = []
        self._payload_ids = count(1)
        self._sequence = count()
        self._lock = threading.RLock()

    # Engine API

    def forkchoice_updated(
        self,
        forkchoice_state: ForkchoiceState,
        payload_attributes: PayloadAttributes | None = None,
        *,
        version: int,
    ) -> ForkchoiceUpdateResponse:
        """Move the head and start building on top of it when attributes are given."""
        with self._lock:
            self.calls.append(f"engine_forkchoiceUpdatedV{version}")
            head = forkchoice_state.head_block_hash
            if head not in self.blocks:
                return ForkchoiceUpdateResponse(
                    payload_status=PayloadStatus(status=PayloadStatusEnum.SYNCING)
                )
            self._set_head(head)
            payload_id = None
            if payload_attributes is not None:
                if version >= 3 and payload_attributes.parent_beacon_block_root is None:
                    raise JSONRPCError(EngineAPIError.InvalidParams, "missing beacon root")
                payload_id = self._build(head, payload_attributes)
            return ForkchoiceUpdateResponse(
                payload_status=PayloadStatus(
                    status=PayloadStatusEnum.VALID, latest_valid_hash=head
                ),
                payload_id=payload_id,
            )

    def get_payload(self, payload_id: Bytes, *, version: int) -> GetPayloadResponse:
        """Return a payload built earlier."""
        with self._lock:
            self.calls.append(f"engine_getPayloadV{version}")
            if bytes(payload_id) not in self.built:
                raise JSONRPCError(EngineAPIError.UnknownPayload, "unknown payload")
            return self.built[bytes(payload_id)]

    def new_payload(
        self,
        payload: ExecutionPayload,
        versioned_hashes: List[Hash] | None = None,
        parent_beacon_block_root: Hash | None = None,
        *,
        version: int,
    ) -> PayloadStatus:
        """Validate and import a payload."""
        with self._lock:
            self.calls.append(f"engine_newPayloadV{version}")
            cancun = int(payload.timestamp) >= self.cancun_time
            if version >= 3:
                if (
                    payload.blob_gas_used is None
                    or payload.excess_blob_gas is None
                    or versioned_hashes is None
                    or parent_beacon_block_root is None
                ):
                    raise JSONRPCError(EngineAPIError.InvalidParams, "missing V3 field")
                if not cancun:
                    raise JSONRPCError(EngineAPIError.UnsupportedFork, "payload before Cancun")
                if list(versioned_hashes) != payload.blob_versioned_hashes():
                    return PayloadStatus(
                        status=PayloadStatusEnum.INVALID,
                        validation_error="versioned hashes mismatch",
                    )
            elif payload.blob_gas_used is not None or payload.excess_blob_gas is not None:
                raise JSONRPCError(EngineAPIError.InvalidParams, "blob fields before V3")
            if payload.compute_block_hash(parent_beacon_block_root) != payload.block_hash:
                return PayloadStatus(status=PayloadStatusEnum.INVALID_BLOCK_HASH)
            parent = self.blocks.get(payload.parent_hash)
            if parent is None:
                return PayloadStatus(status=PayloadStatusEnum.SYNCING)
            if cancun:
                error = self._blob_gas_error(payload, parent.response)
                if error is not None:
                    return PayloadStatus(
                        status=PayloadStatusEnum.INVALID,
                        latest_valid_hash=payload.parent_hash,
                        validation_error=error,
                    )
            self.blocks[payload.block_hash] = StoredBlock(
                BlockResponse(
                    number=payload.number,
                    hash=payload.block_hash,
                    parent_hash=payload.parent_hash,
                    timestamp=payload.timestamp,
                    transactions=[Transaction.from_rlp(tx).hash for tx in payload.transactions],
                    blob_gas_used=payload.blob_gas_used,
                    excess_blob_gas=payload.excess_blob_gas,
                    parent_beacon_block_root=parent_beacon_block_root,
                ),
                payload,
            )
            return PayloadStatus(
                status=PayloadStatusEnum.VALID, latest_valid_hash=payload.block_hash
            )

    def _blob_gas_error(self, payload: ExecutionPayload, parent: BlockResponse) -> str | None:
        blobs = len(payload.blob_versioned_hashes())
        if payload.blob_gas_used != self.blob_params.blob_gas_used(blobs):
            return "invalid blobGasUsed"
        excess = self.blob_params.next_excess_blob_gas(
            int(parent.excess_blob_gas or 0), int(parent.blob_gas_used or 0)
        )
        if payload.excess_blob_gas != excess:
            return "invalid excessBlobGas"
        return None

    def _set_head(self, head: Hash):
        self.head = head
        block = self.blocks[head]
        self.canonical[int(block.response.number)] = head
        if block.payload is None:
            return
        for raw in block.payload.transactions:
            tx_hash = Transaction.from_rlp(raw).hash
            self.included[tx_hash] = (head, int(block.response.number))
        self.pool = [p for p in self.pool if p.hash not in self.included]

    def _build(self, parent_hash: Hash, attributes: PayloadAttributes) -> Bytes:
        parent = self.blocks[parent_hash].response
        cancun = int(attributes.timestamp) >= self.cancun_time
        candidates = [p for p in self.pool if not p.superseded and (cancun or not p.blob_ids)]
        selected = plan_payload(
            candidates,
            self.blob_params,
            parent_excess_blob_gas=int(parent.excess_blob_gas or 0),
            parent_blob_gas_used=int(parent.blob_gas_used or 0),
        )
        blob_count = sum(len(p.blob_ids) for p in selected)
        payload = ExecutionPayload(
            parent_hash=parent_hash,
            fee_recipient=attributes.suggested_fee_recipient,
            state_root=keccak256(b"state" + bytes(parent_hash)),
            receipts_root=Hash(0),
            logs_bloom=Bloom(0),
            number=int(parent.number) + 1,
            gas_limit=GENESIS_GAS_LIMIT,
            gas_used=INTRINSIC_GAS * len(selected),
            timestamp=attributes.timestamp,
            extra_data=Bytes(b""),
            prev_randao=attributes.prev_randao,
            base_fee_per_gas=GENESIS_BASE_FEE,
            block_hash=Hash(0),
            transactions=[p.tx.rlp() for p in selected],
            withdrawals=attributes.withdrawals,
            blob_gas_used=self.blob_params.blob_gas_used(blob_count) if cancun else None,
            excess_blob_gas=(
                self.blob_params.next_excess_blob_gas(
                    int(parent.excess_blob_gas or 0), int(parent.blob_gas_used or 0)
                )
                if cancun
                else None
            ),
        )
        payload = payload.model_copy(
            update={"block_hash": payload.compute_block_hash(attributes.parent_beacon_block_root)}
        )
        bundle = None
        if cancun:
            sidecars = [self.sidecars[p.hash] for p in selected if p.blob_ids]
            bundle = BlobsBundle(
                commitments=[c for s in sidecars for c in s.commitments],
                proofs=[p for s in sidecars for p in s.proofs],
                blobs=[b for s in sidecars for b in s.blobs],
            )
        payload_id = Bytes(next(self._payload_ids).to_bytes(8, "big"))
        self.built[bytes(payload_id)] = GetPayloadResponse(
            execution_payload=payload, block_value=0, blobs_bundle=bundle
        )
        return payload_id

    # Data API

    def send_transaction(self, transaction: Transaction, raw: Bytes | None = None) -> Hash:
        """Add a transaction to the pool and gossip it to connected peers."""
        self.calls.append("eth_sendRawTransaction")
        return self.add_transaction(transaction, raw if raw is not None else transaction.rlp())

    def add_transaction(self, transaction: Transaction, raw: bytes, *, gossip: bool = True) -> Hash:
        """Validate a raw transaction and add it to the pool."""
        with self._lock:
            tx = Transaction.from_rlp(raw)
            sidecar = Sidecar()
            if raw[0] == TransactionType.BLOB_TRANSACTION:
                items = eth_rlp.decode(bytes(raw[1:]))
                if not isinstance(items[0], (list, tuple)):
                    raise SendTransactionExceptionError(
                        "blob transaction without sidecar", tx=transaction, code=-32000
                    )
                _, blobs, commitments, proofs = items
                sidecar = Sidecar(list(blobs), list(commitments), list(proofs))
                if len(commitments) != tx.blob_count:
                    raise SendTransactionExceptionError(
                        "sidecar does not match the versioned hashes", tx=transaction, code=-32000
                    )
            sender = tx.recover_sender()
            account = self.senders.setdefault(sender, len(self.senders))
            for previous in self.pool:
                if previous.account != account or previous.nonce != tx.nonce:
                    continue
                if previous.superseded:
                    continue
                if tx.max_priority_fee_per_gas < 2 * previous.tip or (
                    tx.blob_count
                    and (tx.max_fee_per_blob_gas or 0) < 2 * previous.max_fee_per_blob_gas
                ):
                    raise SendTransactionExceptionError(
                        "replacement transaction underpriced", tx=transaction, code=-32000
                    )
                previous.superseded = True
            self.pool.append(
                PendingTransaction(
                    account=account,
                    tx=tx,
                    blob_ids=list(range(tx.blob_count)),
                    raw=Bytes(raw),
                    client=self.name,
                    sequence=next(self._sequence),
                )
            )
            self.sidecars[tx.hash] = sidecar
        if gossip and self.network is not None:
            self.network.gossip(self, tx, raw)
        return tx.hash

    def get_block_by_number(self, block_number: BlockNumberType = "latest") -> BlockResponse | None:
        """Return a canonical block."""
        with self._lock:
            if block_number == "latest":
                return self.blocks[self.head].response
            if not isinstance(block_number, int) or block_number not in self.canonical:
                return None
            return self.blocks[self.canonical[block_number]].response

    def get_transaction_by_hash(self, transaction_hash: Hash) -> TransactionByHashResponse | None:
        """Return a pooled or included transaction."""
        with self._lock:
            for pending in self.pool:
                if pending.hash == transaction_hash:
                    return self._transaction_response(pending.tx, None, None)
            if transaction_hash in self.included:
                block_hash, number = self.included[transaction_hash]
                payload = self.blocks[block_hash].payload
                assert payload is not None
                for tx in payload.decoded_transactions():
                    if tx.hash == transaction_hash:
                        return self._transaction_response(tx, block_hash, number)
            return None

    @staticmethod
    def _transaction_response(
        tx: Transaction, block_hash: Hash | None, number: int | None
    ) -> TransactionByHashResponse:
        return TransactionByHashResponse(
            transaction_hash=tx.hash,
            sender=tx.recover_sender(),
            nonce=tx.nonce,
            block_hash=block_hash,
            block_number=number,
            ty=tx.ty,
            blob_versioned_hashes=tx.blob_versioned_hashes,
        )


class FakeClientStarter(ClientStarter):
    """Starts fake nodes; nodes that get a bootnode join the shared network."""

    def __init__(self, blob_params: BlobGasParameters | None = None):
        """Initialize the starter with an empty network."""
        self.blob_params = blob_params
        self.network = FakeNetwork()
        self.nodes: Dict[str, FakeExecutionNode] = {}
        self.stopped: List[str] = []

    def start(
        self,
        *,
        name: str,
        genesis: Dict[str, Any],
        environment: Mapping[str, str],
        role: ClientRole,
        bootnode: str | None,
    ) -> EngineClient:
        """Create a node and wrap it in an `EngineClient`."""
        connected = role != ClientRole.SYNCING
        node = FakeExecutionNode(
            name,
            genesis,
            network=self.network if connected else None,
            blob_params=self.blob_params,
        )
        if connected:
            self.network.nodes.append(node)
        self.nodes[name] = node
        return EngineClient(name, node, node, role=role, handle=node)  # type: ignore[arg-type]

    def stop(self, client: EngineClient):
        """Forget the node."""
        self.stopped.append(client.name)
        if client.handle in self.network.nodes:
            self.network.nodes.remove(client.handle)
