"""Fee-market and blob-carrying transaction types."""

from enum import IntEnum
from typing import Any, ClassVar, List, Sequence

import ethereum_rlp as eth_rlp
from coincurve.keys import PrivateKey, PublicKey
from ethereum_types.numeric import Uint
from pydantic import Field
from trie import HexaryTrie

from engine_test_base_types import (
    Address,
    Bytes,
    CamelModel,
    Hash,
    HexNumber,
    RLPSerializable,
)

from .blob_types import Blob
from .utils import bytes_to_int, keccak256


class TransactionType(IntEnum):
    """Transaction types the generator can build."""

    BASE_FEE = 2
    BLOB_TRANSACTION = 3


class AccessList(CamelModel, RLPSerializable):
    """Access List for transactions."""

    address: Address
    storage_keys: List[Hash]

    rlp_fields: ClassVar[List[str]] = ["address", "storage_keys"]


class Transaction(CamelModel, RLPSerializable):
    """EIP-1559 (type 2) or EIP-4844 (type 3) transaction."""

    ty: HexNumber = Field(HexNumber(TransactionType.BASE_FEE), alias="type")
    chain_id: HexNumber = HexNumber(1)
    nonce: HexNumber = HexNumber(0)
    max_priority_fee_per_gas: HexNumber = HexNumber(10**9)
    max_fee_per_gas: HexNumber = HexNumber(30 * 10**9)
    gas_limit: HexNumber = Field(HexNumber(100_000), alias="gas")
    to: Address | None = Address(0x100)
    value: HexNumber = HexNumber(0)
    data: Bytes = Field(Bytes(b""), alias="input")
    access_list: List[AccessList] = Field(default_factory=list)

    max_fee_per_blob_gas: HexNumber | None = None
    blob_versioned_hashes: List[Hash] | None = None

    v: HexNumber = HexNumber(0)
    r: HexNumber = HexNumber(0)
    s: HexNumber = HexNumber(0)

    class UnsupportedTypeError(Exception):
        """The raw transaction is not of a type the simulator generates."""

    def model_post_init(self, __context: Any):
        """Deduce the blob transaction type from its fields."""
        super().model_post_init(__context)
        if "ty" not in self.model_fields_set and (
            self.max_fee_per_blob_gas is not None or self.blob_versioned_hashes is not None
        ):
            self.ty = HexNumber(TransactionType.BLOB_TRANSACTION)
        if self.ty == TransactionType.BLOB_TRANSACTION:
            if self.max_fee_per_blob_gas is None:
                self.max_fee_per_blob_gas = HexNumber(1)
            if self.blob_versioned_hashes is None:
                self.blob_versioned_hashes = []

    def get_rlp_signing_fields(self) -> List[str]:
        """Return the list of values included in the envelope used for signing."""
        field_list = [
            "chain_id",
            "nonce",
            "max_priority_fee_per_gas",
            "max_fee_per_gas",
            "gas_limit",
            "to",
            "value",
            "data",
            "access_list",
        ]
        if self.ty == TransactionType.BLOB_TRANSACTION:
            # EIP-4844: https://eips.ethereum.org/EIPS/eip-4844
            field_list += ["max_fee_per_blob_gas", "blob_versioned_hashes"]
        return field_list

    def get_rlp_fields(self) -> List[str]:
        """Return the signing fields followed by the signature."""
        return self.get_rlp_signing_fields() + ["v", "r", "s"]

    def get_rlp_prefix(self) -> bytes:
        """Typed transactions are prefixed with their type byte."""
        return bytes([self.ty])

    def get_rlp_signing_prefix(self) -> bytes:
        """Typed transactions sign over their type byte."""
        return bytes([self.ty])

    def signed(self, key: Hash) -> "Transaction":
        """Return a copy of the transaction signed with the given private key."""
        signature = PrivateKey(secret=key).sign_recoverable(
            self.rlp_signing_bytes(), hasher=keccak256
        )
        return self.model_copy(
            update={
                "v": HexNumber(signature[64]),
                "r": HexNumber(int.from_bytes(signature[0:32], byteorder="big")),
                "s": HexNumber(int.from_bytes(signature[32:64], byteorder="big")),
            }
        )

    @property
    def hash(self) -> Hash:
        """Return hash of the transaction."""
        return self.rlp().keccak256()

    @property
    def blob_count(self) -> int:
        """Return the number of blobs the transaction carries."""
        return len(self.blob_versioned_hashes or [])

    def recover_sender(self) -> Address:
        """Recover the address that signed the transaction."""
        signature = (
            int(self.r).to_bytes(32, byteorder="big")
            + int(self.s).to_bytes(32, byteorder="big")
            + bytes([self.v])
        )
        public_key = PublicKey.from_signature_and_message(
            signature, self.rlp_signing_bytes().keccak256(), hasher=None
        )
        return Address(keccak256(public_key.format(compressed=False)[1:])[32 - 20 :])

    @classmethod
    def from_rlp_fields(cls, ty: int, items: Sequence[Any]) -> "Transaction":
        """Build a transaction from its decoded RLP field list."""
        (chain_id, nonce, tip, fee, gas, to, value, data, access_list), rest = items[:9], items[9:]
        kwargs: dict[str, Any] = {
            "ty": ty,
            "chain_id": bytes_to_int(chain_id),
            "nonce": bytes_to_int(nonce),
            "max_priority_fee_per_gas": bytes_to_int(tip),
            "max_fee_per_gas": bytes_to_int(fee),
            "gas_limit": bytes_to_int(gas),
            "to": Address(to) if len(to) > 0 else None,
            "value": bytes_to_int(value),
            "data": Bytes(data),
            "access_list": [
                AccessList(address=Address(address), storage_keys=[Hash(k) for k in keys])
                for address, keys in access_list
            ],
        }
        if ty == TransactionType.BLOB_TRANSACTION:
            max_fee_per_blob_gas, hashes, *rest = rest
            kwargs["max_fee_per_blob_gas"] = bytes_to_int(max_fee_per_blob_gas)
            kwargs["blob_versioned_hashes"] = [Hash(h) for h in hashes]
        v, r, s = rest
        kwargs |= {"v": bytes_to_int(v), "r": bytes_to_int(r), "s": bytes_to_int(s)}
        return cls(**kwargs)

    @classmethod
    def from_rlp(cls, raw: bytes) -> "Transaction":
        """
        Decode a typed transaction, either in its canonical form or, for blob
        transactions, in its network form (the blobs are discarded).
        """
        if len(raw) == 0 or raw[0] not in (
            TransactionType.BASE_FEE,
            TransactionType.BLOB_TRANSACTION,
        ):
            raise Transaction.UnsupportedTypeError(
                f"unsupported transaction type {raw[:1].hex() or 'empty'}"
            )
        items = eth_rlp.decode(bytes(raw[1:]))
        if raw[0] == TransactionType.BLOB_TRANSACTION and isinstance(items[0], (list, tuple)):
            items = items[0]
        return cls.from_rlp_fields(raw[0], items)

    @staticmethod
    def list_root(raw_txs: Sequence[bytes]) -> Hash:
        """Return transactions root of a list of raw transactions."""
        t = HexaryTrie(db={})
        for i, tx in enumerate(raw_txs):
            t.set(eth_rlp.encode(Uint(i)), bytes(tx))
        return Hash(t.root_hash)


class NetworkWrappedTransaction(CamelModel, RLPSerializable):
    """
    Network wrapped transaction as defined in
    [EIP-4844](https://eips.ethereum.org/EIPS/eip-4844#networking).
    """

    tx: Transaction
    blobs: List[Blob]

    rlp_fields: ClassVar[List[str]] = ["tx", "blob_data", "commitments", "proofs"]

    @property
    def blob_data(self) -> List[Bytes]:
        """Return a list of blobs as bytes."""
        return [blob.data for blob in self.blobs]

    @property
    def commitments(self) -> List[Bytes]:
        """Return a list of kzg commitments."""
        return [blob.commitment for blob in self.blobs]

    @property
    def proofs(self) -> List[Bytes]:
        """Return a list of kzg proofs."""
        return [blob.proof for blob in self.blobs]

    def get_rlp_prefix(self) -> bytes:
        """Return the transaction type as bytes."""
        return bytes([self.tx.ty])
