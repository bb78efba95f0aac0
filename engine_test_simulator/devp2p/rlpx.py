"""
RLPx transport: the ECIES handshake (EIP-8 encoding) and the encrypted frame coder.

The implementation is synchronous and works on a connected socket; a probe only ever
talks to a single peer at a time.
"""

import hashlib
import hmac
import os
import socket
from dataclasses import dataclass
from typing import Any, List, Tuple

import ethereum_rlp as eth_rlp
from coincurve.keys import PrivateKey, PublicKey
from Crypto.Cipher import AES
from Crypto.Hash import keccak
from ethereum_types.numeric import Uint

from engine_test_types.utils import keccak256

# Ephemeral public key (65) + IV (16) + HMAC tag (32)
ECIES_OVERHEAD = 65 + 16 + 32
HANDSHAKE_VERSION = 4
FRAME_HEADER_DATA = bytes([0xC2, 0x80, 0x80])


class RLPxError(Exception):
    """The peer sent data that cannot be authenticated or decoded."""


def keccak_state() -> Any:
    """Return a running Keccak-256 hash that can be read without being finalized."""
    return keccak.new(digest_bits=256, update_after_digest=True)


def ecdh_raw(private_key: bytes, public_key: bytes) -> bytes:
    """Return the x coordinate of the shared point, unhashed as RLPx requires."""
    shared_point = PublicKey(public_key).multiply(private_key)
    return shared_point.format(compressed=False)[1:33]


def _concat_kdf(shared_secret: bytes) -> bytes:
    return hashlib.sha256(b"\x00\x00\x00\x01" + shared_secret).digest()


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def ecies_encrypt(recipient_public_key: bytes, plaintext: bytes, shared_mac_data: bytes) -> bytes:
    """Encrypt for the recipient; returns `ephemeral-pubkey || iv || ciphertext || tag`."""
    ephemeral_key = PrivateKey()
    key_material = _concat_kdf(ecdh_raw(ephemeral_key.secret, recipient_public_key))
    mac_key = hashlib.sha256(key_material[16:32]).digest()
    iv = os.urandom(16)
    cipher = AES.new(key_material[:16], AES.MODE_CTR, nonce=b"", initial_value=iv)
    ciphertext = cipher.encrypt(plaintext)
    tag = hmac.new(mac_key, iv + ciphertext + shared_mac_data, hashlib.sha256).digest()
    return ephemeral_key.public_key.format(compressed=False) + iv + ciphertext + tag


def ecies_decrypt(private_key: bytes, data: bytes, shared_mac_data: bytes) -> bytes:
    """Decrypt a message produced by `ecies_encrypt` for our key."""
    if len(data) < ECIES_OVERHEAD:
        raise RLPxError("ECIES message too short")
    ephemeral_public_key, iv, ciphertext, tag = data[:65], data[65:81], data[81:-32], data[-32:]
    key_material = _concat_kdf(ecdh_raw(private_key, ephemeral_public_key))
    mac_key = hashlib.sha256(key_material[16:32]).digest()
    expected = hmac.new(mac_key, iv + ciphertext + shared_mac_data, hashlib.sha256).digest()
    if not hmac.compare_digest(tag, expected):
        raise RLPxError("ECIES MAC mismatch")
    cipher = AES.new(key_material[:16], AES.MODE_CTR, nonce=b"", initial_value=iv)
    return cipher.decrypt(ciphertext)


def decode_padded_list(data: bytes) -> List[Any]:
    """Decode an RLP list followed by EIP-8 padding, ignoring the padding."""
    if not data or data[0] < 0xC0:
        raise RLPxError("handshake message is not an RLP list")
    if data[0] <= 0xF7:
        length = 1 + data[0] - 0xC0
    else:
        size_length = data[0] - 0xF7
        length = 1 + size_length + int.from_bytes(data[1 : 1 + size_length], "big")
    decoded = eth_rlp.decode(bytes(data[:length]))
    if not isinstance(decoded, (list, tuple)):
        raise RLPxError("handshake message is not an RLP list")
    return list(decoded)


def _padded(message: List[Any]) -> bytes:
    return eth_rlp.encode(message) + os.urandom(100 + os.urandom(1)[0] % 200)


@dataclass
class SessionSecrets:
    """Keys and running MACs agreed during the handshake."""

    aes_secret: bytes
    mac_secret: bytes
    egress_mac: Any
    ingress_mac: Any


class Handshake:
    """One side of the RLPx ECIES handshake."""

    def __init__(self, private_key: PrivateKey, *, initiator: bool):
        """Initialize with our static key and fresh ephemeral key and nonce."""
        self.private_key = private_key
        self.initiator = initiator
        self.ephemeral_key = PrivateKey()
        self.nonce = os.urandom(32)
        self.remote_public_key: bytes | None = None
        self.remote_nonce: bytes | None = None
        self.remote_ephemeral_public_key: bytes | None = None
        self.auth_message = b""
        self.ack_message = b""

    def _seal(self, remote_public_key: bytes, message: List[Any]) -> bytes:
        plaintext = _padded(message)
        prefix = (len(plaintext) + ECIES_OVERHEAD).to_bytes(2, "big")
        return prefix + ecies_encrypt(remote_public_key, plaintext, prefix)

    def _open(self, data: bytes) -> List[Any]:
        return decode_padded_list(ecies_decrypt(self.private_key.secret, data[2:], data[:2]))

    def create_auth(self, remote_public_key: bytes) -> bytes:
        """Return the auth message sent by the initiator."""
        self.remote_public_key = remote_public_key
        static_shared = ecdh_raw(self.private_key.secret, remote_public_key)
        signature = self.ephemeral_key.sign_recoverable(
            _xor(static_shared, self.nonce), hasher=None
        )
        public_key = self.private_key.public_key.format(compressed=False)[1:]
        self.auth_message = self._seal(
            remote_public_key, [signature, public_key, self.nonce, Uint(HANDSHAKE_VERSION)]
        )
        return self.auth_message

    def handle_auth(self, data: bytes):
        """Read the initiator's auth message and recover its ephemeral key."""
        self.auth_message = data
        signature, public_key, nonce, *_ = self._open(data)
        self.remote_public_key = b"\x04" + public_key
        self.remote_nonce = nonce
        static_shared = ecdh_raw(self.private_key.secret, self.remote_public_key)
        ephemeral = PublicKey.from_signature_and_message(
            signature, _xor(static_shared, nonce), hasher=None
        )
        self.remote_ephemeral_public_key = ephemeral.format(compressed=False)

    def create_ack(self) -> bytes:
        """Return the ack message sent by the recipient."""
        assert self.remote_public_key is not None, "auth message not handled"
        ephemeral = self.ephemeral_key.public_key.format(compressed=False)[1:]
        self.ack_message = self._seal(
            self.remote_public_key, [ephemeral, self.nonce, Uint(HANDSHAKE_VERSION)]
        )
        return self.ack_message

    def handle_ack(self, data: bytes):
        """Read the recipient's ack message."""
        self.ack_message = data
        ephemeral, nonce, *_ = self._open(data)
        self.remote_ephemeral_public_key = b"\x04" + ephemeral
        self.remote_nonce = nonce

    def secrets(self) -> SessionSecrets:
        """Derive the session secrets once both handshake messages are known."""
        assert self.remote_nonce is not None and self.remote_ephemeral_public_key is not None
        ephemeral_shared = ecdh_raw(self.ephemeral_key.secret, self.remote_ephemeral_public_key)
        if self.initiator:
            nonce_hash = keccak256(self.remote_nonce + self.nonce)
        else:
            nonce_hash = keccak256(self.nonce + self.remote_nonce)
        shared_secret = keccak256(ephemeral_shared + nonce_hash)
        aes_secret = keccak256(ephemeral_shared + shared_secret)
        mac_secret = keccak256(ephemeral_shared + aes_secret)

        egress_mac = keccak_state()
        egress_mac.update(_xor(mac_secret, self.remote_nonce))
        ingress_mac = keccak_state()
        ingress_mac.update(_xor(mac_secret, self.nonce))
        if self.initiator:
            egress_mac.update(self.auth_message)
            ingress_mac.update(self.ack_message)
        else:
            egress_mac.update(self.ack_message)
            ingress_mac.update(self.auth_message)
        return SessionSecrets(bytes(aes_secret), bytes(mac_secret), egress_mac, ingress_mac)


class FrameCoder:
    """Encrypts and authenticates RLPx frames in both directions."""

    def __init__(self, secrets: SessionSecrets):
        """Initialize the ciphers from the session secrets."""
        zero_iv = b"\x00" * 16
        self.egress_cipher = AES.new(
            secrets.aes_secret, AES.MODE_CTR, nonce=b"", initial_value=zero_iv
        )
        self.ingress_cipher = AES.new(
            secrets.aes_secret, AES.MODE_CTR, nonce=b"", initial_value=zero_iv
        )
        self.mac_cipher = AES.new(secrets.mac_secret, AES.MODE_ECB)
        self.egress_mac = secrets.egress_mac
        self.ingress_mac = secrets.ingress_mac

    def _header_mac(self, mac: Any, header_ciphertext: bytes) -> bytes:
        seed = self.mac_cipher.encrypt(mac.digest()[:16])
        mac.update(_xor(seed, header_ciphertext))
        return mac.digest()[:16]

    def _body_mac(self, mac: Any, body_ciphertext: bytes) -> bytes:
        mac.update(body_ciphertext)
        digest = mac.digest()[:16]
        mac.update(_xor(self.mac_cipher.encrypt(digest), digest))
        return mac.digest()[:16]

    def encode_frame(self, code: int, payload: bytes) -> bytes:
        """Return the frame carrying a message; the code is RLP encoded before the payload."""
        frame_data = eth_rlp.encode(Uint(code)) + payload
        header = (len(frame_data).to_bytes(3, "big") + FRAME_HEADER_DATA).ljust(16, b"\x00")
        header_ciphertext = self.egress_cipher.encrypt(header)
        header_mac = self._header_mac(self.egress_mac, header_ciphertext)
        padded = frame_data.ljust(-(-len(frame_data) // 16) * 16, b"\x00")
        body_ciphertext = self.egress_cipher.encrypt(padded)
        body_mac = self._body_mac(self.egress_mac, body_ciphertext)
        return header_ciphertext + header_mac + body_ciphertext + body_mac

    def decode_header(self, data: bytes) -> int:
        """Authenticate and decrypt a 32 byte frame header; return the frame size."""
        header_ciphertext, header_mac = data[:16], data[16:32]
        if self._header_mac(self.ingress_mac, header_ciphertext) != header_mac:
            raise RLPxError("frame header MAC mismatch")
        return int.from_bytes(self.ingress_cipher.decrypt(header_ciphertext)[:3], "big")

    @staticmethod
    def body_length(frame_size: int) -> int:
        """Bytes that follow the header for a frame of the given size."""
        return -(-frame_size // 16) * 16 + 16

    def decode_body(self, data: bytes, frame_size: int) -> Tuple[int, bytes]:
        """Authenticate and decrypt a frame body; return the message code and payload."""
        padded_size = len(data) - 16
        body_ciphertext, body_mac = data[:padded_size], data[padded_size:]
        if self._body_mac(self.ingress_mac, body_ciphertext) != body_mac:
            raise RLPxError("frame body MAC mismatch")
        frame_data = self.ingress_cipher.decrypt(body_ciphertext)[:frame_size]
        first = frame_data[0]
        if first < 0x80:
            return first, frame_data[1:]
        code_length = first - 0x80
        code = int.from_bytes(frame_data[1 : 1 + code_length], "big")
        return code, frame_data[1 + code_length :]


def _receive_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("connection closed by peer")
        data += chunk
    return data


def _receive_handshake_message(sock: socket.socket) -> bytes:
    prefix = _receive_exactly(sock, 2)
    return prefix + _receive_exactly(sock, int.from_bytes(prefix, "big"))


class RLPxConnection:
    """An authenticated, encrypted message stream over a connected socket."""

    def __init__(self, sock: socket.socket, coder: FrameCoder, remote_public_key: bytes):
        """Wrap a socket whose handshake has completed."""
        self.sock = sock
        self.coder = coder
        self.remote_public_key = remote_public_key

    @classmethod
    def initiate(
        cls, sock: socket.socket, private_key: PrivateKey, remote_public_key: bytes
    ) -> "RLPxConnection":
        """Run the handshake as the dialing side."""
        handshake = Handshake(private_key, initiator=True)
        sock.sendall(handshake.create_auth(remote_public_key))
        handshake.handle_ack(_receive_handshake_message(sock))
        return cls(sock, FrameCoder(handshake.secrets()), remote_public_key)

    @classmethod
    def accept(cls, sock: socket.socket, private_key: PrivateKey) -> "RLPxConnection":
        """Run the handshake as the listening side."""
        handshake = Handshake(private_key, initiator=False)
        handshake.handle_auth(_receive_handshake_message(sock))
        sock.sendall(handshake.create_ack())
        assert handshake.remote_public_key is not None
        return cls(sock, FrameCoder(handshake.secrets()), handshake.remote_public_key)

    def send(self, code: int, payload: bytes):
        """Send one message."""
        self.sock.sendall(self.coder.encode_frame(code, payload))

    def receive(self) -> Tuple[int, bytes]:
        """Block until the next message arrives."""
        frame_size = self.coder.decode_header(_receive_exactly(self.sock, 32))
        body = _receive_exactly(self.sock, FrameCoder.body_length(frame_size))
        return self.coder.decode_body(body, frame_size)

    def close(self):
        """Close the underlying socket."""
        self.sock.close()
