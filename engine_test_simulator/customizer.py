"""
Payload modifications used by negative tests.

Every field of `PayloadCustomizer` distinguishes three cases: `None` keeps the field as the
client built it, `REMOVE` drops it from the payload (a JSON `null` or an absent member),
and any other value replaces it, zero included.
"""

from enum import Enum
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict

from engine_test_base_types import Hash, HexNumber
from engine_test_types import ExecutionPayload


class Removed(Enum):
    """Marker of a field that must be removed from the payload."""

    REMOVE = "remove"

    def __repr__(self) -> str:
        """Print the bare marker name."""
        return "REMOVE"


REMOVE = Removed.REMOVE


class PayloadCustomizer(BaseModel):
    """Field overrides applied to a payload before it is sent with `engine_newPayloadVX`."""

    model_config = ConfigDict(frozen=True)

    blob_gas_used: int | Removed | None = None
    excess_blob_gas: int | Removed | None = None
    parent_beacon_root: Hash | Removed | None = None
    versioned_hashes: List[Hash] | Removed | None = None

    def custom_parent_beacon_root(self, default: Hash | None) -> Hash | None:
        """Return the beacon root to send, given the one the payload was built with."""
        if self.parent_beacon_root is REMOVE:
            return None
        if self.parent_beacon_root is not None:
            return self.parent_beacon_root
        return default

    def custom_versioned_hashes(self, default: List[Hash] | None) -> List[Hash] | None:
        """Return the versioned hashes to send, given the canonical ones."""
        if self.versioned_hashes is REMOVE:
            return None
        if self.versioned_hashes is not None:
            return list(self.versioned_hashes)
        return default

    def apply(
        self, payload: ExecutionPayload, parent_beacon_root: Hash | None
    ) -> Tuple[ExecutionPayload, Hash | None]:
        """
        Return the customized payload and the beacon root to send with it.

        The block hash is recomputed from the customized header so the payload is only
        invalid for the reason under test.
        """
        update = {}
        for name in ("blob_gas_used", "excess_blob_gas"):
            value = getattr(self, name)
            if value is REMOVE:
                update[name] = None
            elif value is not None:
                update[name] = HexNumber(value)
        beacon_root = self.custom_parent_beacon_root(parent_beacon_root)
        customized = payload.model_copy(update=update)
        customized = customized.model_copy(
            update={"block_hash": customized.compute_block_hash(beacon_root)}
        )
        return customized, beacon_root

    def description(self) -> str:
        """Return the overridden fields for expectation messages."""
        changes = [
            f"{name}={getattr(self, name)!r}"
            for name in type(self).model_fields
            if getattr(self, name) is not None
        ]
        return ", ".join(changes) if changes else "no changes"
