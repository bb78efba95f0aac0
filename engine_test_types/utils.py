"""Utility functions used by the Engine API test types."""

from engine_test_base_types import Bytes, Hash


def keccak256(data: bytes) -> Hash:
    """Calculate keccak256 hash of the given data."""
    return Bytes(data).keccak256()


def int_to_bytes(value: int) -> bytes:
    """Convert integer to its big-endian representation."""
    if value == 0:
        return b""
    return value.to_bytes((value.bit_length() + 7) // 8, byteorder="big")


def bytes_to_int(value: bytes) -> int:
    """Convert a big-endian RLP scalar back to an integer."""
    return int.from_bytes(value, byteorder="big")
