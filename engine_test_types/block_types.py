"""Execution payloads, withdrawals and block hash computation."""

from typing import Any, ClassVar, List

import ethereum_rlp as eth_rlp
from ethereum_types.numeric import Uint
from pydantic import Field
from trie import HexaryTrie

from engine_test_base_types import (
    Address,
    Bloom,
    Bytes,
    CamelModel,
    Hash,
    HexNumber,
    RLPSerializable,
)

from .transaction_types import Transaction
from .utils import keccak256

EMPTY_OMMERS_HASH = keccak256(eth_rlp.encode([]))


class Withdrawal(CamelModel, RLPSerializable):
    """Withdrawal type."""

    index: HexNumber
    validator_index: HexNumber
    address: Address = Address(0)
    amount: HexNumber

    rlp_fields: ClassVar[List[str]] = ["index", "validator_index", "address", "amount"]

    @staticmethod
    def list_root(withdrawals: List["Withdrawal"]) -> Hash:
        """Return withdrawals root of a list of withdrawals."""
        t = HexaryTrie(db={})
        for i, w in enumerate(withdrawals):
            t.set(eth_rlp.encode(Uint(i)), eth_rlp.encode(w.to_list()))
        return Hash(t.root_hash)


class ExecutionPayload(CamelModel):
    """
    Execution payload as exchanged through `engine_getPayloadVX` and
    `engine_newPayloadVX`.

    Fork-specific fields are optional: a `None` value is omitted from the JSON
    representation, which is how a field is removed from a payload.
    """

    parent_hash: Hash
    fee_recipient: Address
    state_root: Hash
    receipts_root: Hash
    logs_bloom: Bloom
    number: HexNumber = Field(..., alias="blockNumber")
    gas_limit: HexNumber
    gas_used: HexNumber
    timestamp: HexNumber
    extra_data: Bytes
    prev_randao: Hash
    base_fee_per_gas: HexNumber
    block_hash: Hash
    transactions: List[Bytes]

    withdrawals: List[Withdrawal] | None = None
    blob_gas_used: HexNumber | None = None
    excess_blob_gas: HexNumber | None = None

    def decoded_transactions(self) -> List[Transaction]:
        """Decode the raw transactions of the payload in inclusion order."""
        return [Transaction.from_rlp(tx) for tx in self.transactions]

    def blob_versioned_hashes(self) -> List[Hash]:
        """Return the versioned hashes carried by the payload's transactions, in order."""
        return [
            versioned_hash
            for tx in self.decoded_transactions()
            for versioned_hash in tx.blob_versioned_hashes or []
        ]

    def header_fields(self, parent_beacon_block_root: Hash | None) -> List[Any]:
        """
        Return the RLP list of the header that this payload describes.

        Optional fields are appended up to the last one that is present; a field that is
        absent but followed by a present one is encoded as zero.
        """
        fields: List[Any] = [
            self.parent_hash,
            EMPTY_OMMERS_HASH,
            self.fee_recipient,
            self.state_root,
            Transaction.list_root(self.transactions),
            self.receipts_root,
            self.logs_bloom,
            Uint(0),
            Uint(self.number),
            Uint(self.gas_limit),
            Uint(self.gas_used),
            Uint(self.timestamp),
            bytes(self.extra_data),
            self.prev_randao,
            b"\x00" * 8,
            Uint(self.base_fee_per_gas),
        ]
        optional: List[Any] = [
            Withdrawal.list_root(self.withdrawals) if self.withdrawals is not None else None,
            Uint(self.blob_gas_used) if self.blob_gas_used is not None else None,
            Uint(self.excess_blob_gas) if self.excess_blob_gas is not None else None,
            parent_beacon_block_root,
        ]
        while optional and optional[-1] is None:
            optional.pop()
        for value, zero in zip(optional, [Hash(0), Uint(0), Uint(0), Hash(0)]):
            fields.append(value if value is not None else zero)
        return fields

    def compute_block_hash(self, parent_beacon_block_root: Hash | None = None) -> Hash:
        """Return the hash of the header described by this payload."""
        return keccak256(eth_rlp.encode(self.header_fields(parent_beacon_block_root)))
