"""
Common definitions and types.
"""

from .base_types import (
    Address,
    Bloom,
    Bytes,
    FixedSizeBytes,
    Hash,
    HexNumber,
    Number,
)
from .conversions import to_bytes, to_hex, to_number
from .json import to_json
from .pydantic import CamelModel, EngineTestBaseModel
from .serialization import RLPSerializable

__all__ = (
    "Address",
    "Bloom",
    "Bytes",
    "CamelModel",
    "EngineTestBaseModel",
    "FixedSizeBytes",
    "Hash",
    "HexNumber",
    "Number",
    "RLPSerializable",
    "to_bytes",
    "to_hex",
    "to_json",
    "to_number",
)
