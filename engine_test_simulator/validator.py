"""
Checks of client responses and produced payloads against what the simulator expects.

Two failure classes of `engine_newPayloadV3` are kept apart: a call that lacks a field
required by the method, or that targets a payload of the wrong fork, is rejected with a
JSON-RPC error, while a call with every field present but a wrong versioned hash list is
answered with an `INVALID` status.
"""

from typing import TYPE_CHECKING, Callable, List, Sequence

from pydantic import BaseModel, ConfigDict

from engine_test_base_types import Hash
from engine_test_exceptions import EngineAPIError
from engine_test_forks import BlobGasParameters, Fork
from engine_test_rpc import GetPayloadResponse, JSONRPCError, PayloadStatus, PayloadStatusEnum
from engine_test_types import Blob, BlobID, ExecutionPayload, Transaction, kzg_to_versioned_hash
from pytest_plugins.logging import get_logger

from .exceptions import ProtocolViolationError, UnexpectedErrorCode

if TYPE_CHECKING:
    from .client import EngineClient
    from .txpool import TransactionPool

logger = get_logger(__name__)


class ExpectedOutcome(BaseModel):
    """Expected answer to an Engine API call: a status, or a JSON-RPC error code."""

    model_config = ConfigDict(frozen=True)

    status: PayloadStatusEnum | None = None
    error_code: int | None = None
    description: str = ""

    @classmethod
    def valid(cls, description: str = "") -> "ExpectedOutcome":
        """Expect a `VALID` status."""
        return cls(status=PayloadStatusEnum.VALID, description=description)

    @classmethod
    def invalid(cls, description: str = "") -> "ExpectedOutcome":
        """Expect an `INVALID` status."""
        return cls(status=PayloadStatusEnum.INVALID, description=description)

    @classmethod
    def error(cls, code: int, description: str = "") -> "ExpectedOutcome":
        """Expect a JSON-RPC error with the given code."""
        return cls(error_code=code, description=description)

    def __str__(self) -> str:
        """Describe the outcome in failure reports."""
        if self.error_code is not None:
            expected = EngineAPIError.describe(self.error_code)
        else:
            expected = self.status.value if self.status is not None else "any status"
        return f"{expected} ({self.description})" if self.description else expected

    def verify(self, method: str, call: Callable[[], PayloadStatus]) -> PayloadStatus | None:
        """Issue the call and compare its answer with the expectation."""
        try:
            result = call()
        except JSONRPCError as e:
            if self.error_code is None or e.code != self.error_code:
                logger.fail(f"{method} returned error {e.code} ({e.message}), expected {self}")
                raise UnexpectedErrorCode(
                    method, expected=self.error_code, actual=e.code, message=e.message
                ) from e
            logger.verbose(f"{method} returned expected error {e.code}")
            return None
        if self.error_code is not None:
            logger.fail(f"{method} returned {result.status.value}, expected {self}")
            raise UnexpectedErrorCode(
                method,
                expected=self.error_code,
                actual=None,
                message=f"status {result.status.value} returned instead of an error",
            )
        if self.status is not None and result.status != self.status:
            actual = result.status.value
            if result.validation_error:
                actual += f" ({result.validation_error})"
            logger.fail(f"{method} returned {actual}, expected {self}")
            raise ProtocolViolationError(
                f"{method} returned an unexpected status", expected=str(self), actual=actual
            )
        return result


def classify_new_payload(
    fork: Fork,
    *,
    version: int,
    blob_gas_used: int | None,
    excess_blob_gas: int | None,
    versioned_hashes: List[Hash] | None,
    parent_beacon_root: Hash | None,
    canonical_hashes: List[Hash] | None,
) -> ExpectedOutcome | None:
    """
    Return the outcome mandated for an `engine_newPayloadVX` call, or None when the call
    is well formed and its verdict depends on execution.

    For version 3 a missing field is always `InvalidParams`, a complete call for a payload
    of an earlier fork is `UnsupportedFork`, and a complete call whose hashes do not match
    the payload's transactions is `INVALID`.
    """
    if version < 3:
        return None
    missing = [
        name
        for name, value in (
            ("blobGasUsed", blob_gas_used),
            ("excessBlobGas", excess_blob_gas),
            ("expectedBlobVersionedHashes", versioned_hashes),
            ("parentBeaconBlockRoot", parent_beacon_root),
        )
        if value is None
    ]
    if missing:
        return ExpectedOutcome.error(
            EngineAPIError.InvalidParams, f"missing {', '.join(missing)}"
        )
    if not fork.engine_new_payload_blob_hashes():
        return ExpectedOutcome.error(
            EngineAPIError.UnsupportedFork, f"engine_newPayloadV3 on a {fork} payload"
        )
    if versioned_hashes != canonical_hashes:
        return ExpectedOutcome.invalid("versioned hashes do not match the payload")
    return None


def check_payload_shape(
    fork: Fork,
    payload: ExecutionPayload,
    *,
    parent_hash: Hash,
    number: int,
    timestamp: int,
):
    """Check that a built payload extends the right parent and carries its fork's fields."""
    checks = [
        ("parentHash", payload.parent_hash, parent_hash),
        ("blockNumber", int(payload.number), number),
        ("timestamp", int(payload.timestamp), timestamp),
    ]
    for name, actual, expected in checks:
        if actual != expected:
            raise ProtocolViolationError(
                f"built payload has an unexpected {name}", expected=expected, actual=actual
            )
    presence = [
        ("withdrawals", payload.withdrawals, fork.header_withdrawals_required()),
        ("blobGasUsed", payload.blob_gas_used, fork.header_blob_gas_used_required()),
        ("excessBlobGas", payload.excess_blob_gas, fork.header_excess_blob_gas_required()),
    ]
    for name, value, required in presence:
        if required and value is None:
            raise ProtocolViolationError(f"{fork} payload is missing {name}")
        if not required and value is not None:
            raise ProtocolViolationError(f"{fork} payload carries {name}", actual=value)


class PayloadExpectation(BaseModel):
    """Expected blob content of one produced payload."""

    blob_count: int = 0
    blob_ids: List[BlobID] | None = None
    reference_blob_ids: List[BlobID] | None = None
    """Blobs a reference builder would include; only reported when the blob count differs."""


class PayloadValidator:
    """Checks produced payloads against the transactions a scenario submitted."""

    def __init__(self, pool: "TransactionPool", blob_params: BlobGasParameters):
        """Initialize the validator for a scenario."""
        self.pool = pool
        self.blob_params = blob_params

    def check(
        self,
        response: GetPayloadResponse,
        expectation: PayloadExpectation,
    ):
        """Check blob count, blob identity and order, and versioned hash correctness."""
        payload = response.execution_payload
        txs = payload.decoded_transactions()
        blob_count = sum(tx.blob_count for tx in txs)
        if blob_count != expectation.blob_count:
            message = f"payload {payload.number} has an unexpected blob count"
            if expectation.reference_blob_ids is not None:
                message += (
                    f"; a reference builder would include blobs {expectation.reference_blob_ids}"
                )
            raise ProtocolViolationError(
                message,
                expected=expectation.blob_count,
                actual=blob_count,
            )
        blob_ids = self.included_blob_ids(txs)
        if expectation.blob_ids is not None and blob_ids != expectation.blob_ids:
            raise ProtocolViolationError(
                f"payload {payload.number} has unexpected blobs",
                expected=expectation.blob_ids,
                actual=blob_ids,
            )
        for tx in txs:
            self.check_versioned_hashes(tx)
        self.check_blobs_bundle(response)

    def included_blob_ids(self, txs: Sequence[Transaction]) -> List[BlobID | None]:
        """Return the BlobIDs carried by the transactions; unknown blobs map to None."""
        blob_ids: List[BlobID | None] = []
        for tx in txs:
            pending = self.pool.lookup(tx.hash)
            if pending is None:
                blob_ids += [None] * tx.blob_count
            else:
                blob_ids += pending.blob_ids
        return blob_ids

    def check_versioned_hashes(self, tx: Transaction):
        """Check that a submitted transaction's hashes are those of the blobs it was sent with."""
        pending = self.pool.lookup(tx.hash)
        if pending is None or tx.blob_count == 0:
            return
        expected = [
            Blob.from_id(blob_id).versioned_hash(self.blob_params.versioned_hash_version)
            for blob_id in pending.blob_ids
        ]
        if tx.blob_versioned_hashes != expected:
            raise ProtocolViolationError(
                f"transaction {tx.hash} carries unexpected versioned hashes",
                expected=expected,
                actual=tx.blob_versioned_hashes,
            )

    def check_blobs_bundle(self, response: GetPayloadResponse):
        """Check that the blobs bundle matches the versioned hashes of the payload."""
        payload = response.execution_payload
        bundle = response.blobs_bundle
        expected_hashes = payload.blob_versioned_hashes()
        if bundle is None:
            if expected_hashes and payload.blob_gas_used is not None:
                raise ProtocolViolationError(
                    f"payload {payload.number} has blobs but no blobs bundle"
                )
            return
        sizes = {len(bundle.commitments), len(bundle.proofs), len(bundle.blobs)}
        if sizes != {len(expected_hashes)}:
            raise ProtocolViolationError(
                f"blobs bundle of payload {payload.number} has the wrong size",
                expected=len(expected_hashes),
                actual=(len(bundle.commitments), len(bundle.proofs), len(bundle.blobs)),
            )
        bundle_hashes = [
            kzg_to_versioned_hash(commitment, self.blob_params.versioned_hash_version)
            for commitment in bundle.commitments
        ]
        if bundle_hashes != expected_hashes:
            raise ProtocolViolationError(
                f"blobs bundle commitments of payload {payload.number} do not match its "
                "transactions",
                expected=expected_hashes,
                actual=bundle_hashes,
            )

    def check_blob_gas(
        self,
        fork: Fork,
        payload: ExecutionPayload,
        *,
        parent_excess_blob_gas: int,
        parent_blob_gas_used: int,
    ):
        """Check the blob gas header fields against the EIP-4844 formulas."""
        if not fork.header_blob_gas_used_required():
            return
        blobs = len(payload.blob_versioned_hashes())
        expected_used = self.blob_params.blob_gas_used(blobs)
        if payload.blob_gas_used != expected_used:
            raise ProtocolViolationError(
                f"payload {payload.number} has an unexpected blobGasUsed",
                expected=expected_used,
                actual=payload.blob_gas_used,
            )
        expected_excess = self.blob_params.next_excess_blob_gas(
            parent_excess_blob_gas, parent_blob_gas_used
        )
        if payload.excess_blob_gas != expected_excess:
            raise ProtocolViolationError(
                f"payload {payload.number} has an unexpected excessBlobGas",
                expected=expected_excess,
                actual=payload.excess_blob_gas,
            )

    def record_inclusion(self, payload: ExecutionPayload):
        """
        Mark the payload's transactions as included, checking that replaced transactions are
        never included and that every account's transactions are included in nonce order.
        """
        for tx in payload.decoded_transactions():
            pending = self.pool.lookup(tx.hash)
            if pending is None:
                continue
            if pending.superseded:
                raise ProtocolViolationError(
                    f"replaced transaction {tx.hash} (account {pending.account}, nonce "
                    f"{pending.nonce}) included in payload {payload.number}"
                )
            for earlier in self.pool.of_account(pending.account):
                if earlier.nonce >= pending.nonce or earlier.superseded:
                    continue
                if earlier.included_in is None:
                    raise ProtocolViolationError(
                        f"transaction with nonce {pending.nonce} of account "
                        f"{pending.account} included before nonce {earlier.nonce}",
                        expected=f"nonce {earlier.nonce} included first",
                        actual=f"payload {payload.number} includes nonce {pending.nonce}",
                    )
            self.pool.mark_included(tx.hash, int(payload.number))

    def cross_check(
        self, client: "EngineClient", payload: ExecutionPayload, parent_beacon_root: Hash | None
    ):
        """Read the promoted block back through the data API and compare it with the payload."""
        block = client.get_block_by_number(int(payload.number))
        if block is None:
            raise ProtocolViolationError(
                f"{client.name} does not serve block {payload.number} after promotion"
            )
        comparisons = [
            ("hash", block.hash, payload.block_hash),
            ("blobGasUsed", block.blob_gas_used, payload.blob_gas_used),
            ("excessBlobGas", block.excess_blob_gas, payload.excess_blob_gas),
            ("parentBeaconBlockRoot", block.parent_beacon_block_root, parent_beacon_root),
        ]
        for name, actual, expected in comparisons:
            if actual != expected:
                raise ProtocolViolationError(
                    f"eth_getBlockByNumber({payload.number}) on {client.name} has an "
                    f"unexpected {name}",
                    expected=expected,
                    actual=actual,
                )
        for tx in payload.decoded_transactions():
            pending = self.pool.lookup(tx.hash)
            if pending is None:
                continue
            served = client.get_transaction_by_hash(tx.hash)
            if served is None or served.block_hash != payload.block_hash:
                raise ProtocolViolationError(
                    f"transaction {tx.hash} is not served as part of block {payload.number}",
                    expected=payload.block_hash,
                    actual=served.block_hash if served is not None else None,
                )
            if served.nonce != pending.nonce:
                raise ProtocolViolationError(
                    f"transaction {tx.hash} is served with an unexpected nonce",
                    expected=pending.nonce,
                    actual=served.nonce,
                )
