"""A minimal `eth/68` peer used to inspect what a client exposes over devp2p."""

import socket
import time
from itertools import count
from typing import Callable, Dict, List, Sequence, Tuple, TypeVar
from urllib.parse import urlparse

import snappy  # type: ignore
from coincurve.keys import PrivateKey

from pytest_plugins.logging import get_logger

from ..exceptions import ProtocolViolationError, SequencingError, TransportError
from .forkid import ForkID
from .messages import (
    EMPTY_LIST,
    ETH_VERSION,
    Disconnect,
    GetPooledTransactions,
    Hello,
    MessageCode,
    NewPooledTransactionHashes,
    PooledTransactions,
    Status,
)
from .rlpx import RLPxConnection, RLPxError

logger = get_logger(__name__)

T = TypeVar("T")

DISCONNECT_REASONS: Dict[int, str] = {
    0x00: "disconnect requested",
    0x01: "TCP sub-system error",
    0x02: "breach of protocol",
    0x03: "useless peer",
    0x04: "too many peers",
    0x05: "already connected",
    0x06: "incompatible p2p protocol version",
    0x07: "null node identity received",
    0x08: "client quitting",
    0x09: "unexpected identity in handshake",
    0x0A: "identity is the same as this node",
    0x0B: "ping timeout",
    0x10: "subprotocol error",
}


def parse_enode(enode: str) -> Tuple[bytes, str, int]:
    """Return the uncompressed public key, host and TCP port of an enode URL."""
    url = urlparse(enode)
    if url.scheme != "enode" or url.username is None or url.hostname is None:
        raise ValueError(f"invalid enode URL: {enode}")
    return b"\x04" + bytes.fromhex(url.username), url.hostname, url.port or 30303


class DevP2PProbe:
    """
    Dials a client, completes the `p2p` and `eth` handshakes and exchanges messages with it.

    Pings from the client are answered while waiting for other messages; a disconnect is
    reported as a protocol violation with its reason.
    """

    def __init__(
        self,
        enode: str,
        *,
        network_id: int,
        genesis_hash: bytes,
        fork_id: ForkID,
        best_hash: bytes,
        timeout: float = 10.0,
    ):
        """Initialize the probe; nothing is sent until `connect`."""
        self.enode = enode
        self.network_id = network_id
        self.genesis_hash = genesis_hash
        self.fork_id = fork_id
        self.best_hash = best_hash
        self.timeout = timeout
        self.private_key = PrivateKey()
        self.connection: RLPxConnection | None = None
        self.remote_hello: Hello | None = None
        self.remote_status: Status | None = None
        self.compress = False
        self._request_ids = count(1)

    def __enter__(self) -> "DevP2PProbe":
        """Connect on entering the context."""
        self.connect()
        return self

    def __exit__(self, *args):
        """Disconnect on leaving the context."""
        self.close()

    def connect(self) -> Status:
        """Dial the client and run the handshakes; return the client's status message."""
        remote_public_key, host, port = parse_enode(self.enode)
        try:
            sock = socket.create_connection((host, port), timeout=self.timeout)
            self.connection = RLPxConnection.initiate(sock, self.private_key, remote_public_key)
        except (OSError, RLPxError) as e:
            raise TransportError(self.enode, "RLPx handshake", e) from e
        logger.verbose(f"RLPx session established with {host}:{port}")
        return self.handshake_with_connection(self.connection)

    def handshake_with_connection(self, connection: RLPxConnection) -> Status:
        """Exchange `Hello` and `Status` over an established RLPx connection."""
        self.connection = connection
        node_id = self.private_key.public_key.format(compressed=False)[1:]
        connection.send(MessageCode.HELLO, Hello(node_id=node_id).encode())
        hello = self.expect(MessageCode.HELLO, Hello.decode)
        if not hello.supports(b"eth", ETH_VERSION):
            raise ProtocolViolationError(
                "client does not advertise eth/68",
                expected=f"eth/{ETH_VERSION}",
                actual=hello.capabilities,
            )
        self.remote_hello = hello
        self.compress = hello.p2p_version >= 5
        logger.verbose(f"Hello from {hello.client_id.decode(errors='replace')}")

        self.send(
            MessageCode.STATUS,
            Status(
                network_id=self.network_id,
                total_difficulty=0,
                best_hash=self.best_hash,
                genesis_hash=self.genesis_hash,
                fork_hash=self.fork_id.fork_hash,
                fork_next=self.fork_id.fork_next,
            ).encode(),
        )
        self.remote_status = self.expect(MessageCode.STATUS, Status.decode)
        return self.remote_status

    def _connected(self) -> RLPxConnection:
        if self.connection is None:
            raise SequencingError(f"probe of {self.enode} used before connecting")
        return self.connection

    def send(self, code: int, payload: bytes):
        """Send a message, compressed once the `Hello` exchange negotiated it."""
        connection = self._connected()
        if self.compress:
            payload = snappy.compress(payload)
        try:
            connection.send(code, payload)
        except OSError as e:
            raise TransportError(self.enode, f"send message {code:#x}", e) from e

    def receive(self) -> Tuple[int, bytes]:
        """Return the next message other than ping, answering pings on the way."""
        connection = self._connected()
        while True:
            try:
                code, payload = connection.receive()
            except (OSError, RLPxError) as e:
                raise TransportError(self.enode, "receive message", e) from e
            if self.compress and code != MessageCode.HELLO:
                payload = snappy.decompress(payload)
            if code == MessageCode.PING:
                self.send(MessageCode.PONG, EMPTY_LIST)
                continue
            if code == MessageCode.DISCONNECT:
                reason = Disconnect.decode(payload).reason
                raise ProtocolViolationError(
                    "client disconnected the probe",
                    actual=DISCONNECT_REASONS.get(reason, f"reason {reason:#x}"),
                )
            return code, payload

    def expect(self, code: int, decode: Callable[[bytes], T]) -> T:
        """Skip unrelated messages until one with the given code arrives, within the timeout."""
        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            received, payload = self.receive()
            if received == code:
                return decode(payload)
            logger.debug(f"Ignoring message {received:#x} while waiting for {code:#x}")
        raise ProtocolViolationError(
            f"no message {code:#x} received within {self.timeout}s", expected=hex(code)
        )

    def ping(self):
        """Check that the client keeps the session open by exchanging a ping."""
        self.send(MessageCode.PING, EMPTY_LIST)
        self.expect(MessageCode.PONG, lambda payload: payload)

    def wait_for_announcements(self, hashes: Sequence[bytes]) -> Dict[bytes, int]:
        """Wait until every hash was announced; return the announced type of each one."""
        missing = {bytes(h) for h in hashes}
        announced: Dict[bytes, int] = {}
        while missing:
            announcement = self.expect(
                MessageCode.NEW_POOLED_TRANSACTION_HASHES, NewPooledTransactionHashes.decode
            )
            for tx_type, tx_hash in zip(announcement.types, announcement.hashes):
                if tx_hash in missing:
                    missing.discard(tx_hash)
                    announced[tx_hash] = tx_type
        return announced

    def request_pooled_transactions(self, hashes: Sequence[bytes]) -> List[bytes]:
        """Request transaction bodies by hash and return them in response order."""
        request_id = next(self._request_ids)
        request = GetPooledTransactions(request_id=request_id, hashes=[bytes(h) for h in hashes])
        self.send(MessageCode.GET_POOLED_TRANSACTIONS, request.encode())
        while True:
            response = self.expect(MessageCode.POOLED_TRANSACTIONS, PooledTransactions.decode)
            if response.request_id == request_id:
                return response.transactions

    def close(self):
        """Say goodbye and close the connection."""
        if self.connection is None:
            return
        try:
            self.send(MessageCode.DISCONNECT, Disconnect().encode())
        except TransportError as e:
            logger.debug(f"Disconnect notice not sent: {e}")
        self.connection.close()
        self.connection = None
