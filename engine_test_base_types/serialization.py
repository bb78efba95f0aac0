"""RLP serialization mixin for transactions, withdrawals and headers."""

from typing import Any, ClassVar, List

import ethereum_rlp as eth_rlp
from ethereum_types.numeric import Uint

from .base_types import Bytes


def to_serializable_element(v: Any) -> Any:
    """Return a serializable element that can be passed to `eth_rlp.encode`."""
    if isinstance(v, int):
        return Uint(v)
    elif isinstance(v, bytes):
        return v
    elif isinstance(v, list):
        return [to_serializable_element(v) for v in v]
    elif isinstance(v, RLPSerializable):
        return v.to_list(signing=False)
    elif v is None:
        return b""
    raise TypeError(f"Unable to serialize element {v} of type {type(v)}.")


class RLPSerializable:
    """Class that adds RLP serialization to another class."""

    rlp_fields: ClassVar[List[str]]
    rlp_signing_fields: ClassVar[List[str]] = []

    def get_rlp_fields(self) -> List[str]:
        """
        Return an ordered list of field names to be included in RLP serialization.

        By default, the `rlp_fields` class variable is used.
        """
        return self.rlp_fields

    def get_rlp_signing_fields(self) -> List[str]:
        """Return the ordered list of field names included in the signing envelope."""
        return self.rlp_signing_fields

    def get_rlp_prefix(self) -> bytes:
        """Return the prefix prepended to the serialized object, typically a type byte."""
        return b""

    def get_rlp_signing_prefix(self) -> bytes:
        """Return the prefix prepended to the serialized signing envelope."""
        return b""

    def to_list_from_fields(self, fields: List[str]) -> List[Any]:
        """Return the RLP serializable list of the given fields."""
        values_list: List[Any] = []
        for field in fields:
            if not hasattr(self, field):
                raise AttributeError(
                    f'Unable to rlp serialize field "{field}" '
                    f'in object type "{self.__class__.__name__}"'
                )
            values_list.append(to_serializable_element(getattr(self, field)))
        return values_list

    def to_list(self, signing: bool = False) -> List[Any]:
        """Return an RLP serializable list, either of the signing envelope or the object."""
        if signing:
            return self.to_list_from_fields(self.get_rlp_signing_fields())
        return self.to_list_from_fields(self.get_rlp_fields())

    def rlp_signing_bytes(self) -> Bytes:
        """Return the signing serialized envelope used for signing."""
        return Bytes(self.get_rlp_signing_prefix() + eth_rlp.encode(self.to_list(signing=True)))

    def rlp(self) -> Bytes:
        """Return the serialized object."""
        return Bytes(self.get_rlp_prefix() + eth_rlp.encode(self.to_list(signing=False)))
