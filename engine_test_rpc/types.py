"""Types used in the RPC module for `eth` and `engine` namespaces' requests."""

from enum import Enum
from typing import Any, List

from pydantic import AliasChoices, Field

from engine_test_base_types import Address, Bytes, CamelModel, Hash, HexNumber
from engine_test_types import ExecutionPayload, Withdrawal, kzg_to_versioned_hash


class JSONRPCError(Exception):
    """Model to parse a JSON RPC error response."""

    code: int
    message: str
    data: Any

    def __init__(self, code: int | str, message: str, data: Any = None, **kwargs):
        """Initialize the JSONRPCError."""
        super().__init__(code, message)
        self.code = int(code)
        self.message = message
        self.data = data

    def __str__(self) -> str:
        """Return string representation of the JSONRPCError."""
        return f"JSONRPCError(code={self.code}, message={self.message})"


class ForkchoiceState(CamelModel):
    """Represents the forkchoice state of the beacon chain."""

    head_block_hash: Hash = Field(Hash(0))
    safe_block_hash: Hash = Field(Hash(0))
    finalized_block_hash: Hash = Field(Hash(0))


class PayloadStatusEnum(str, Enum):
    """Represents the status of a payload after execution."""

    VALID = "VALID"
    INVALID = "INVALID"
    SYNCING = "SYNCING"
    ACCEPTED = "ACCEPTED"
    INVALID_BLOCK_HASH = "INVALID_BLOCK_HASH"


class PayloadStatus(CamelModel):
    """Represents the status of a payload after execution."""

    status: PayloadStatusEnum
    latest_valid_hash: Hash | None = None
    validation_error: str | None = None


class ForkchoiceUpdateResponse(CamelModel):
    """Represents the response of a forkchoice update."""

    payload_status: PayloadStatus
    payload_id: Bytes | None = None


class PayloadAttributes(CamelModel):
    """Represents the attributes of a payload."""

    timestamp: HexNumber
    prev_randao: Hash
    suggested_fee_recipient: Address
    withdrawals: List[Withdrawal] | None = None
    parent_beacon_block_root: Hash | None = None


class BlobsBundle(CamelModel):
    """Represents the bundle of blobs."""

    commitments: List[Bytes]
    proofs: List[Bytes]
    blobs: List[Bytes]

    def blob_versioned_hashes(self, versioned_hash_version: int = 1) -> List[Hash]:
        """Return versioned hashes of the blobs."""
        return [
            kzg_to_versioned_hash(commitment, versioned_hash_version)
            for commitment in self.commitments
        ]


class GetPayloadResponse(CamelModel):
    """Represents the response of a get payload request."""

    execution_payload: ExecutionPayload
    block_value: HexNumber | None = None
    blobs_bundle: BlobsBundle | None = None
    should_override_builder: bool | None = None


class BlockResponse(CamelModel):
    """The fields of `eth_getBlockByNumber` that are cross-checked against payloads."""

    number: HexNumber
    hash: Hash
    parent_hash: Hash
    timestamp: HexNumber
    transactions: List[Hash | Any] = Field(default_factory=list)
    blob_gas_used: HexNumber | None = None
    excess_blob_gas: HexNumber | None = None
    parent_beacon_block_root: Hash | None = None


class TransactionByHashResponse(CamelModel):
    """The fields of `eth_getTransactionByHash` that are cross-checked against submissions."""

    transaction_hash: Hash = Field(..., alias="hash")
    sender: Address = Field(..., alias="from")
    nonce: HexNumber
    block_hash: Hash | None = None
    block_number: HexNumber | None = None
    ty: HexNumber = Field(HexNumber(0), validation_alias=AliasChoices("type", "ty"))
    blob_versioned_hashes: List[Hash] | None = None
