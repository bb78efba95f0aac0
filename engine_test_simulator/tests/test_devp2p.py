"""Test the RLPx transport, the devp2p messages and the probe against an in-process peer."""

import socket
import zlib
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterator, List, Tuple

import ethereum_rlp as eth_rlp
import pytest
import snappy  # type: ignore
from coincurve.keys import PrivateKey
from ethereum_types.numeric import Uint

from engine_test_forks import ForkSchedule

from ..devp2p import (
    DevP2PProbe,
    Hello,
    MessageCode,
    NewPooledTransactionHashes,
    PooledTransactions,
    RLPxConnection,
    RLPxError,
    Status,
    compute_fork_id,
    parse_enode,
)
from ..devp2p.messages import EMPTY_LIST, Disconnect, GetPooledTransactions
from ..devp2p.rlpx import decode_padded_list, ecies_decrypt, ecies_encrypt
from ..exceptions import ProtocolViolationError, SequencingError

MAINNET_GENESIS = bytes.fromhex(
    "d4e56740f876aef8c010b86a40d5f56745a118d0906a34e69aec8c0db1cb8fa3"
)
GENESIS = b"\x11" * 32
BEST = b"\x22" * 32
TX_HASH = b"\x33" * 32
RAW_TX = b"\x03" + b"\xc4\x01\x02\x03\x04"

Peer = Callable[[RLPxConnection], None]


def public_key(key: PrivateKey) -> bytes:
    """Return the uncompressed public key of a private key."""
    return key.public_key.format(compressed=False)


@pytest.fixture
def peer() -> Iterator[Callable[[Peer], RLPxConnection]]:
    """
    Return a function that starts a listening peer running the given script and returns
    the dialing side of the session; the script's failures are raised at teardown.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    futures = []
    sockets: List[socket.socket] = []

    def start(script: Peer) -> RLPxConnection:
        dialer, listener = socket.socketpair()
        for sock in (dialer, listener):
            sock.settimeout(5)
            sockets.append(sock)
        key = PrivateKey()

        def serve():
            script(RLPxConnection.accept(listener, key))

        futures.append(executor.submit(serve))
        return RLPxConnection.initiate(dialer, PrivateKey(), public_key(key))

    yield start
    for future in futures:
        future.result(timeout=5)
    executor.shutdown()
    for sock in sockets:
        sock.close()


def test_ecies_round_trip():
    """Only the holder of the private key can decrypt, with the same shared MAC data."""
    key = PrivateKey()
    sealed = ecies_encrypt(public_key(key), b"secret message", b"\x01\x02")
    assert ecies_decrypt(key.secret, sealed, b"\x01\x02") == b"secret message"
    with pytest.raises(RLPxError, match="MAC"):
        ecies_decrypt(key.secret, sealed, b"\x01\x03")
    tampered = sealed[:-40] + bytes([sealed[-40] ^ 1]) + sealed[-39:]
    with pytest.raises(RLPxError, match="MAC"):
        ecies_decrypt(key.secret, tampered, b"\x01\x02")
    with pytest.raises(RLPxError, match="too short"):
        ecies_decrypt(key.secret, sealed[:50], b"\x01\x02")


def test_decode_padded_list():
    """EIP-8 padding after the RLP list is ignored."""
    assert decode_padded_list(b"\xc2\x01\x02" + b"\xff" * 10) == [b"\x01", b"\x02"]
    with pytest.raises(RLPxError):
        decode_padded_list(b"\x83abc")


def test_frames_in_both_directions(peer):
    """Both sides derive the same secrets and exchange authenticated frames."""

    def echo(connection: RLPxConnection):
        for _ in range(3):
            code, payload = connection.receive()
            connection.send(code + 1, payload[::-1])

    connection = peer(echo)
    messages = [(0x00, b""), (0x10, b"status"), (0x19, bytes(range(256)) * 4)]
    for code, payload in messages:
        connection.send(code, payload)
        assert connection.receive() == (code + 1, payload[::-1])


def test_status_message():
    """The status message carries the fork id as a nested list."""
    status = Status(
        network_id=1,
        total_difficulty=0,
        best_hash=BEST,
        genesis_hash=GENESIS,
        fork_hash=b"\xfc\x64\xec\x04",
        fork_next=1150000,
    )
    decoded = Status.decode(status.encode())
    assert decoded == status
    assert decoded.version == 68


def test_hello_ignores_trailing_fields():
    """Fields added by newer protocol versions are ignored."""
    data = eth_rlp.encode(
        [Uint(5), b"geth", [[b"eth", Uint(68)], [b"snap", Uint(1)]], Uint(0), b"\x01" * 64, b"x"]
    )
    hello = Hello.decode(data)
    assert hello.supports(b"eth", 68)
    assert not hello.supports(b"eth", 67)
    assert hello.client_id == b"geth"


def test_disconnect_bare_reason():
    """Some clients send the disconnect reason outside of a list."""
    assert Disconnect.decode(eth_rlp.encode(Uint(4))).reason == 4
    assert Disconnect.decode(Disconnect(reason=8).encode()).reason == 8


@pytest.mark.parametrize(
    "schedule, head_timestamp, expected",
    [
        # All forks at genesis: only the genesis hash is summed.
        (ForkSchedule(), 0, ("fc64ec04", 0)),
        (ForkSchedule(cancun_timestamp=10), 5, ("fc64ec04", 10)),
        (
            ForkSchedule(cancun_timestamp=10),
            10,
            (f"{zlib.crc32((10).to_bytes(8, 'big'), 0xFC64EC04):08x}", 0),
        ),
        # Forks at the genesis timestamp are not part of the checksum.
        (
            ForkSchedule(genesis_timestamp=1, shanghai_timestamp=1, cancun_timestamp=1),
            1,
            ("fc64ec04", 0),
        ),
    ],
)
def test_compute_fork_id(schedule: ForkSchedule, head_timestamp: int, expected: Tuple[str, int]):
    """Fork ids follow EIP-2124 with timestamp scheduled forks."""
    fork_id = compute_fork_id(MAINNET_GENESIS, schedule, head_timestamp)
    assert (fork_id.fork_hash.hex(), fork_id.fork_next) == expected


def test_parse_enode():
    """The node id of an enode URL is the public key without its prefix."""
    node_id = "ab" * 64
    assert parse_enode(f"enode://{node_id}@10.0.0.2:30304") == (
        b"\x04" + bytes.fromhex(node_id),
        "10.0.0.2",
        30304,
    )
    assert parse_enode(f"enode://{node_id}@10.0.0.2")[2] == 30303
    with pytest.raises(ValueError):
        parse_enode("http://10.0.0.2:8545")


def client_handshake(connection: RLPxConnection, status: Status) -> Status:
    """Play the client side of the `Hello` and `Status` exchange; return the probe's status."""
    code, payload = connection.receive()
    assert code == MessageCode.HELLO
    assert Hello.decode(payload).supports(b"eth", 68)
    connection.send(MessageCode.HELLO, Hello(node_id=b"\x01" * 64).encode())
    code, payload = connection.receive()
    assert code == MessageCode.STATUS
    connection.send(MessageCode.STATUS, snappy.compress(status.encode()))
    return Status.decode(snappy.decompress(payload))


def client_status(fork_hash: bytes = b"\xfc\x64\xec\x04") -> Status:
    """Return the status announced by the in-process client."""
    return Status(
        network_id=1,
        total_difficulty=0,
        best_hash=BEST,
        genesis_hash=GENESIS,
        fork_hash=fork_hash,
        fork_next=0,
    )


def probe() -> DevP2PProbe:
    """Return a probe that is not connected yet."""
    return DevP2PProbe(
        "enode://" + "00" * 64 + "@127.0.0.1:30303",
        network_id=1,
        genesis_hash=GENESIS,
        fork_id=compute_fork_id(MAINNET_GENESIS, ForkSchedule(), 0),
        best_hash=BEST,
        timeout=5,
    )


def test_probe_pooled_transactions(peer):
    """The probe answers pings, waits for announcements and requests pooled bodies."""
    received: List[Status] = []

    def client(connection: RLPxConnection):
        received.append(client_handshake(connection, client_status()))
        connection.send(MessageCode.PING, snappy.compress(EMPTY_LIST))
        announcement = NewPooledTransactionHashes(
            types=b"\x03", sizes=[len(RAW_TX)], hashes=[TX_HASH]
        )
        connection.send(
            MessageCode.NEW_POOLED_TRANSACTION_HASHES, snappy.compress(announcement.encode())
        )
        code, _ = connection.receive()
        assert code == MessageCode.PONG
        code, payload = connection.receive()
        assert code == MessageCode.GET_POOLED_TRANSACTIONS
        request = GetPooledTransactions.decode(snappy.decompress(payload))
        assert request.hashes == [TX_HASH]
        # A stale response to another request is skipped.
        for request_id in (request.request_id + 100, request.request_id):
            response = PooledTransactions(request_id=request_id, transactions=[RAW_TX])
            connection.send(MessageCode.POOLED_TRANSACTIONS, snappy.compress(response.encode()))
        code, payload = connection.receive()
        assert code == MessageCode.DISCONNECT

    devp2p = probe()
    status = devp2p.handshake_with_connection(peer(client))
    assert status.fork_hash == b"\xfc\x64\xec\x04"
    assert devp2p.wait_for_announcements([TX_HASH]) == {TX_HASH: 3}
    assert devp2p.request_pooled_transactions([TX_HASH]) == [RAW_TX]
    devp2p.close()
    assert received[0].genesis_hash == GENESIS
    assert received[0].total_difficulty == 0


def test_probe_reports_disconnect(peer):
    """A disconnect is reported with its reason."""

    def client(connection: RLPxConnection):
        client_handshake(connection, client_status())
        connection.send(MessageCode.DISCONNECT, snappy.compress(Disconnect(reason=4).encode()))

    devp2p = probe()
    devp2p.handshake_with_connection(peer(client))
    with pytest.raises(ProtocolViolationError, match="too many peers"):
        devp2p.ping()


def test_probe_requires_eth_68(peer):
    """A client without `eth/68` is rejected after the `Hello` exchange."""

    def client(connection: RLPxConnection):
        connection.receive()
        connection.send(
            MessageCode.HELLO, Hello(node_id=b"\x01" * 64, capabilities=[(b"eth", 67)]).encode()
        )

    with pytest.raises(ProtocolViolationError, match="eth/68"):
        probe().handshake_with_connection(peer(client))


def test_devp2p_session_used_before_connecting():
    """Sending or receiving without a session is reported as a scenario mistake."""
    unconnected = probe()
    with pytest.raises(SequencingError, match="used before connecting"):
        unconnected.send(MessageCode.PING, EMPTY_LIST)
    with pytest.raises(SequencingError, match="used before connecting"):
        unconnected.receive()
