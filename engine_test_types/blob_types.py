"""
Synthetic blobs identified by an integer BlobID.

The content of a blob is a pure function of its BlobID, so the same identifier always
yields the same commitment and versioned hash for the lifetime of a scenario. KZG
commitments and proofs are expensive to compute, so they are cached on disk and shared
across pytest-xdist workers through a file lock.
"""

import json
import os
from functools import lru_cache
from hashlib import sha256
from pathlib import Path
from typing import Any, ClassVar, List

import ckzg  # type: ignore
import platformdirs
from filelock import FileLock

from engine_test_base_types import Bytes, CamelModel, Hash
from pytest_plugins.logging import get_logger

BlobID = int

FIELD_ELEMENTS_PER_BLOB = 4096
BYTES_PER_FIELD_ELEMENT = 32
BYTES_PER_BLOB = FIELD_ELEMENTS_PER_BLOB * BYTES_PER_FIELD_ELEMENT
BLOB_COMMITMENT_VERSION_KZG = 0x01

TRUSTED_SETUP_ENV_VAR = "ENGINE_SIM_TRUSTED_SETUP"

CACHED_BLOBS_DIRECTORY: Path = (
    Path(platformdirs.user_cache_dir("engine-api-simulator")) / "cached_blobs"
)
logger = get_logger(__name__)


def kzg_to_versioned_hash(commitment: bytes, version: int = BLOB_COMMITMENT_VERSION_KZG) -> Hash:
    """Calculate the versioned hash of a KZG commitment."""
    return Hash(bytes([version]) + sha256(commitment).digest()[1:])


def get_blob_list(start: BlobID, count: int) -> List[BlobID]:
    """Return `count` consecutive BlobIDs starting at `start`."""
    return [BlobID(start + i) for i in range(count)]


def get_blob_list_by_index(start: BlobID, end: BlobID) -> List[BlobID]:
    """Return the BlobIDs from `start` to `end`, both inclusive, in either direction."""
    if start <= end:
        return list(range(start, end + 1))
    return list(range(start, end - 1, -1))


class KZG:
    """KZG commitment scheme backed by `ckzg` and an external trusted setup file."""

    trusted_setup_path: ClassVar[Path | None] = None
    _trusted_setup: ClassVar[Any | None] = None

    @classmethod
    def configure(cls, trusted_setup_path: Path | None):
        """Set the trusted setup file used for all later computations."""
        cls.trusted_setup_path = trusted_setup_path
        cls._trusted_setup = None

    @classmethod
    def trusted_setup(cls):
        """Load the trusted setup if it is not already loaded."""
        if cls._trusted_setup is None:
            path = cls.trusted_setup_path
            if path is None and TRUSTED_SETUP_ENV_VAR in os.environ:
                path = Path(os.environ[TRUSTED_SETUP_ENV_VAR])
            if path is None or not path.is_file():
                raise FileNotFoundError(
                    f"KZG trusted setup file not found ({path}); configure "
                    f"`kzg_trusted_setup` or set {TRUSTED_SETUP_ENV_VAR}"
                )
            logger.verbose(f"Loading KZG trusted setup from {path}")
            cls._trusted_setup = ckzg.load_trusted_setup(str(path), 0)
        return cls._trusted_setup

    @classmethod
    def commitment(cls, data: bytes) -> bytes:
        """Return the KZG commitment of a blob."""
        return ckzg.blob_to_kzg_commitment(data, cls.trusted_setup())

    @classmethod
    def proof(cls, data: bytes, commitment: bytes) -> bytes:
        """Return the KZG proof of a blob against its commitment."""
        return ckzg.compute_blob_kzg_proof(data, commitment, cls.trusted_setup())


def blob_data(blob_id: BlobID) -> Bytes:
    """
    Derive the content of a blob from its identifier.

    The blob is filled by chaining sha256 hashes of the big-endian BlobID; the first byte
    of every field element is cleared so each element stays below the BLS modulus.
    """
    chunks = []
    current = blob_id.to_bytes(8, "big")
    for _ in range(FIELD_ELEMENTS_PER_BLOB):
        current = sha256(current).digest()
        chunks.append(b"\x00" + current[1:])
    return Bytes(b"".join(chunks))


class Blob(CamelModel):
    """A synthetic blob with its KZG commitment and proof."""

    blob_id: BlobID
    data: Bytes
    commitment: Bytes
    proof: Bytes

    def versioned_hash(self, version: int = BLOB_COMMITMENT_VERSION_KZG) -> Hash:
        """Return the versioned hash of the blob with the given version byte."""
        return kzg_to_versioned_hash(self.commitment, version)

    @staticmethod
    def get_filepath(blob_id: BlobID) -> Path:
        """Return the cache path of the blob with the given identifier."""
        return CACHED_BLOBS_DIRECTORY / f"blob_{blob_id}.json"

    @classmethod
    def compute(cls, blob_id: BlobID) -> "Blob":
        """Compute the blob without touching the cache."""
        data = blob_data(blob_id)
        commitment = KZG.commitment(data)
        return cls(
            blob_id=blob_id,
            data=data,
            commitment=Bytes(commitment),
            proof=Bytes(KZG.proof(data, commitment)),
        )

    @classmethod
    def from_id(cls, blob_id: BlobID) -> "Blob":
        """Return the blob with the given identifier, reading or filling the disk cache."""
        return _blob_from_id(blob_id)


@lru_cache(maxsize=1024)
def _blob_from_id(blob_id: BlobID) -> Blob:
    path = Blob.get_filepath(blob_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(path.with_suffix(".lock")):
        if path.exists():
            with path.open("r") as f:
                return Blob.model_validate(json.load(f))
        blob = Blob.compute(blob_id)
        with path.open("w") as f:
            json.dump(blob.model_dump(mode="json"), f)
        logger.debug(f"Cached blob {blob_id} at {path}")
        return blob


def configure_blob_cache(directory: Path):
    """Cache computed blobs in the given directory from now on."""
    global CACHED_BLOBS_DIRECTORY
    CACHED_BLOBS_DIRECTORY = directory
    _blob_from_id.cache_clear()


def clear_blob_cache(cached_blobs_folder_path: Path = CACHED_BLOBS_DIRECTORY):
    """Delete all cached blobs."""
    _blob_from_id.cache_clear()
    if not cached_blobs_folder_path.is_dir():
        return
    for f in cached_blobs_folder_path.glob("*.json"):
        with FileLock(f.with_suffix(".lock")):
            f.unlink()
