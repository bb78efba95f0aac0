"""Common definitions and types."""

from .account_types import EOA, AccountRegistry, deterministic_key
from .blob_types import (
    BLOB_COMMITMENT_VERSION_KZG,
    KZG,
    Blob,
    BlobID,
    clear_blob_cache,
    configure_blob_cache,
    get_blob_list,
    get_blob_list_by_index,
    kzg_to_versioned_hash,
)
from .block_types import ExecutionPayload, Withdrawal
from .transaction_types import (
    AccessList,
    NetworkWrappedTransaction,
    Transaction,
    TransactionType,
)
from .versioned_hashes import HashCorruption, VersionedHashes

__all__ = (
    "BLOB_COMMITMENT_VERSION_KZG",
    "EOA",
    "KZG",
    "AccessList",
    "AccountRegistry",
    "Blob",
    "BlobID",
    "ExecutionPayload",
    "HashCorruption",
    "NetworkWrappedTransaction",
    "Transaction",
    "TransactionType",
    "VersionedHashes",
    "Withdrawal",
    "clear_blob_cache",
    "configure_blob_cache",
    "deterministic_key",
    "get_blob_list",
    "get_blob_list_by_index",
    "kzg_to_versioned_hash",
)
