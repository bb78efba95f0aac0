"""Fixtures shared by the unit tests that compute blobs."""

from hashlib import sha256

import pytest

from engine_test_types import blob_types


def fake_kzg_commitment(data: bytes) -> bytes:
    """Deterministic 48-byte stand-in for a KZG commitment."""
    digest = sha256(b"commitment" + data).digest()
    return digest + sha256(digest).digest()[:16]


def fake_kzg_proof(data: bytes, commitment: bytes) -> bytes:
    """Deterministic 48-byte stand-in for a KZG proof."""
    digest = sha256(b"proof" + commitment).digest()
    return digest + sha256(digest).digest()[:16]


@pytest.fixture(autouse=True)
def deterministic_kzg(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """
    Replace the KZG backend with hash based doubles and isolate the blob cache.

    Framework unit tests never load a trusted setup; the doubles keep commitments unique
    per blob, which is all the versioned-hash logic depends on.
    """
    monkeypatch.setattr(
        blob_types.KZG, "commitment", classmethod(lambda cls, d: fake_kzg_commitment(d))
    )
    monkeypatch.setattr(
        blob_types.KZG, "proof", classmethod(lambda cls, d, c: fake_kzg_proof(d, c))
    )
    monkeypatch.setattr(
        blob_types, "CACHED_BLOBS_DIRECTORY", tmp_path_factory.mktemp("cached_blobs")
    )
    blob_types._blob_from_id.cache_clear()
    yield
    blob_types._blob_from_id.cache_clear()
