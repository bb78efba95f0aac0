"""
Versioned hash lists sent alongside `engine_newPayloadV3`.

Two ways of building a list for negative tests are offered:

- `VersionedHashes` builds the list from explicit BlobIDs, optionally overriding the
  version byte of individual entries, and represents a nil list with `blobs=None`.
- `HashCorruption` derives an invalid list from the correct one through a pure function.
"""

from enum import Enum
from hashlib import sha256
from typing import Callable, Dict, List

from pydantic import BaseModel

from engine_test_base_types import Hash

from .blob_types import BLOB_COMMITMENT_VERSION_KZG, Blob, BlobID


class VersionedHashes(BaseModel):
    """Versioned hash list described by the BlobIDs it references."""

    blobs: List[BlobID] | None
    hash_versions: List[int] | None = None

    def hashes(self, default_version: int = BLOB_COMMITMENT_VERSION_KZG) -> List[Hash] | None:
        """Return the list of hashes, or None when the list is nil."""
        if self.blobs is None:
            return None
        versioned_hashes: List[Hash] = []
        for i, blob_id in enumerate(self.blobs):
            version = default_version
            if self.hash_versions is not None and i < len(self.hash_versions):
                version = self.hash_versions[i]
            versioned_hashes.append(Blob.from_id(blob_id).versioned_hash(version))
        return versioned_hashes

    def description(self) -> str:
        """Return a short description used in expectation messages."""
        if self.blobs is None:
            return "nil versioned hashes"
        if self.hash_versions:
            return f"versioned hashes of blobs {self.blobs} with versions {self.hash_versions}"
        return f"versioned hashes of blobs {self.blobs}"


def _missing(hashes: List[Hash] | None) -> List[Hash] | None:
    if not hashes:
        return hashes
    return hashes[:-1]


def _extra(hashes: List[Hash] | None) -> List[Hash] | None:
    if hashes is None:
        return hashes
    version = hashes[0][0] if hashes else BLOB_COMMITMENT_VERSION_KZG
    unknown = sha256(b"extra" + b"".join(hashes)).digest()
    return hashes + [Hash(bytes([version]) + unknown[1:])]


def _reordered(hashes: List[Hash] | None) -> List[Hash] | None:
    # Rotation by one is a no-op on lists with a single element.
    if not hashes:
        return hashes
    return hashes[1:] + hashes[:1]


def _duplicated(hashes: List[Hash] | None) -> List[Hash] | None:
    if not hashes:
        return hashes
    return hashes + [hashes[-1]]


def _wrong_version(hashes: List[Hash] | None) -> List[Hash] | None:
    if not hashes:
        return hashes
    last = hashes[-1]
    return hashes[:-1] + [Hash(bytes([(last[0] + 1) % 256]) + bytes(last[1:]))]


def _nil(hashes: List[Hash] | None) -> List[Hash] | None:
    return None


def _empty(hashes: List[Hash] | None) -> List[Hash] | None:
    return []


class HashCorruption(str, Enum):
    """Deliberate defects applied to a correct versioned hash list."""

    MISSING = "missing"
    EXTRA = "extra"
    REORDERED = "reordered"
    DUPLICATED = "duplicated"
    WRONG_VERSION = "wrong_version"
    NIL = "nil"
    EMPTY = "empty"

    def apply(self, hashes: List[Hash] | None) -> List[Hash] | None:
        """Return a corrupted copy of `hashes`; the input list is never modified."""
        return _CORRUPTIONS[self](list(hashes) if hashes is not None else None)

    def changes(self, hashes: List[Hash] | None) -> bool:
        """Return whether the corruption produces a list different from `hashes`."""
        return self.apply(hashes) != hashes


_CORRUPTIONS: Dict[HashCorruption, Callable[[List[Hash] | None], List[Hash] | None]] = {
    HashCorruption.MISSING: _missing,
    HashCorruption.EXTRA: _extra,
    HashCorruption.REORDERED: _reordered,
    HashCorruption.DUPLICATED: _duplicated,
    HashCorruption.WRONG_VERSION: _wrong_version,
    HashCorruption.NIL: _nil,
    HashCorruption.EMPTY: _empty,
}
