"""Messages of the `p2p` base protocol and of the `eth/68` subprotocol used by the probe."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, ClassVar, List, Tuple

import ethereum_rlp as eth_rlp
from ethereum_types.numeric import Uint

P2P_VERSION = 5
ETH_VERSION = 68
CLIENT_ID = b"engine-api-simulator"

# Message codes of the eth subprotocol start after the base protocol's reserved range.
ETH_OFFSET = 0x10


class MessageCode(IntEnum):
    """Wire codes of the messages the probe exchanges."""

    HELLO = 0x00
    DISCONNECT = 0x01
    PING = 0x02
    PONG = 0x03
    STATUS = ETH_OFFSET + 0x00
    NEW_POOLED_TRANSACTION_HASHES = ETH_OFFSET + 0x08
    GET_POOLED_TRANSACTIONS = ETH_OFFSET + 0x09
    POOLED_TRANSACTIONS = ETH_OFFSET + 0x0A


def _uint(value: bytes) -> int:
    return int.from_bytes(value, "big")


def _decode_list(data: bytes) -> List[Any]:
    decoded = eth_rlp.decode(data)
    if isinstance(decoded, bytes):
        raise ValueError("expected an RLP list")
    return list(decoded)


@dataclass
class Hello:
    """First message of every connection, advertising the supported capabilities."""

    code: ClassVar[MessageCode] = MessageCode.HELLO

    node_id: bytes
    p2p_version: int = P2P_VERSION
    client_id: bytes = CLIENT_ID
    capabilities: List[Tuple[bytes, int]] = field(default_factory=lambda: [(b"eth", ETH_VERSION)])
    listen_port: int = 0

    def encode(self) -> bytes:
        """Return the RLP payload."""
        return eth_rlp.encode(
            [
                Uint(self.p2p_version),
                self.client_id,
                [[name, Uint(version)] for name, version in self.capabilities],
                Uint(self.listen_port),
                self.node_id,
            ]
        )

    @classmethod
    def decode(cls, data: bytes) -> "Hello":
        """Parse the RLP payload; trailing fields added by newer versions are ignored."""
        version, client_id, capabilities, port, node_id, *_ = _decode_list(data)
        return cls(
            node_id=node_id,
            p2p_version=_uint(version),
            client_id=client_id,
            capabilities=[(name, _uint(v)) for name, v, *_ in capabilities],
            listen_port=_uint(port),
        )

    def supports(self, name: bytes, version: int) -> bool:
        """Return whether the peer advertises the given capability version."""
        return (name, version) in self.capabilities


@dataclass
class Disconnect:
    """Notice that the peer is closing the connection."""

    code: ClassVar[MessageCode] = MessageCode.DISCONNECT

    reason: int = 0x00

    def encode(self) -> bytes:
        """Return the RLP payload."""
        return eth_rlp.encode([Uint(self.reason)])

    @classmethod
    def decode(cls, data: bytes) -> "Disconnect":
        """Parse the payload, which some clients send as a bare integer."""
        decoded = eth_rlp.decode(data)
        if isinstance(decoded, bytes):
            return cls(reason=_uint(decoded))
        return cls(reason=_uint(decoded[0]) if decoded else 0)


EMPTY_LIST = eth_rlp.encode([])


@dataclass
class Status:
    """`eth/68` status message, checked by both peers before anything else."""

    code: ClassVar[MessageCode] = MessageCode.STATUS

    network_id: int
    total_difficulty: int
    best_hash: bytes
    genesis_hash: bytes
    fork_hash: bytes
    fork_next: int
    version: int = ETH_VERSION

    def encode(self) -> bytes:
        """Return the RLP payload."""
        return eth_rlp.encode(
            [
                Uint(self.version),
                Uint(self.network_id),
                Uint(self.total_difficulty),
                self.best_hash,
                self.genesis_hash,
                [self.fork_hash, Uint(self.fork_next)],
            ]
        )

    @classmethod
    def decode(cls, data: bytes) -> "Status":
        """Parse the RLP payload."""
        version, network_id, td, best_hash, genesis_hash, (fork_hash, fork_next), *_ = (
            _decode_list(data)
        )
        return cls(
            network_id=_uint(network_id),
            total_difficulty=_uint(td),
            best_hash=best_hash,
            genesis_hash=genesis_hash,
            fork_hash=fork_hash,
            fork_next=_uint(fork_next),
            version=_uint(version),
        )


@dataclass
class NewPooledTransactionHashes:
    """Announcement of transactions that entered the peer's pool (`eth/68` layout)."""

    code: ClassVar[MessageCode] = MessageCode.NEW_POOLED_TRANSACTION_HASHES

    types: bytes
    sizes: List[int]
    hashes: List[bytes]

    def encode(self) -> bytes:
        """Return the RLP payload."""
        return eth_rlp.encode([self.types, [Uint(s) for s in self.sizes], self.hashes])

    @classmethod
    def decode(cls, data: bytes) -> "NewPooledTransactionHashes":
        """Parse the RLP payload."""
        types, sizes, hashes = _decode_list(data)[:3]
        return cls(types=types, sizes=[_uint(s) for s in sizes], hashes=list(hashes))


@dataclass
class GetPooledTransactions:
    """Request for the full bodies of pooled transactions."""

    code: ClassVar[MessageCode] = MessageCode.GET_POOLED_TRANSACTIONS

    request_id: int
    hashes: List[bytes]

    def encode(self) -> bytes:
        """Return the RLP payload."""
        return eth_rlp.encode([Uint(self.request_id), self.hashes])

    @classmethod
    def decode(cls, data: bytes) -> "GetPooledTransactions":
        """Parse the RLP payload."""
        request_id, hashes = _decode_list(data)[:2]
        return cls(request_id=_uint(request_id), hashes=list(hashes))


@dataclass
class PooledTransactions:
    """
    Response to `GetPooledTransactions`.

    Typed transactions travel as RLP strings holding their envelope; blob transactions use
    their network form, blobs included.
    """

    code: ClassVar[MessageCode] = MessageCode.POOLED_TRANSACTIONS

    request_id: int
    transactions: List[bytes]

    def encode(self) -> bytes:
        """Return the RLP payload."""
        return eth_rlp.encode([Uint(self.request_id), self.transactions])

    @classmethod
    def decode(cls, data: bytes) -> "PooledTransactions":
        """Parse the RLP payload; legacy transactions are re-encoded to their RLP form."""
        request_id, transactions = _decode_list(data)[:2]
        return cls(
            request_id=_uint(request_id),
            transactions=[
                tx if isinstance(tx, bytes) else eth_rlp.encode(tx) for tx in transactions
            ],
        )
