"""Account-related types and the per-account nonce registry."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Self

from coincurve.keys import PrivateKey

from engine_test_base_types import Address, Bytes, Hash, Number
from engine_test_base_types.conversions import FixedSizeBytesConvertible, NumberConvertible

from .utils import keccak256


class EOA(Address):
    """
    An Externally Owned Account (EOA) is an account controlled by a private key.

    The EOA is defined by its address and (optionally) by its corresponding private key.
    """

    key: Hash | None
    nonce: Number

    def __new__(
        cls,
        address: "FixedSizeBytesConvertible | Address | EOA | None" = None,
        *,
        key: FixedSizeBytesConvertible | None = None,
        nonce: NumberConvertible = 0,
    ):
        """Init the EOA."""
        if address is None:
            if key is None:
                raise ValueError("impossible to initialize EOA without address")
            public_key = PrivateKey(Hash(key)).public_key
            address = Address(keccak256(public_key.format(compressed=False)[1:])[32 - 20 :])
        elif isinstance(address, EOA):
            return address
        instance = super(EOA, cls).__new__(cls, address)
        instance.key = Hash(key) if key is not None else None
        instance.nonce = Number(nonce)
        return instance

    def copy(self) -> Self:
        """Return copy of the EOA."""
        return self.__class__(Address(self), key=self.key, nonce=self.nonce)


def deterministic_key(index: int) -> Hash:
    """Return the private key of the prefunded test account at the given index."""
    return Hash(keccak256(b"engine-simulator-account" + index.to_bytes(8, "big")))


class AccountRegistry:
    """
    Tracks the signing key and the next nonce of every test account.

    Nonces are issued in two phases: `allocate` returns the nonce a new transaction must
    use without consuming it, and `advance` consumes it once the transaction has been
    accepted by the client. Both must be called while holding `exclusive(index)`, which
    serializes every submission of the same account while leaving different accounts
    free to submit concurrently.
    """

    def __init__(self, accounts: List[EOA]):
        """Initialize the registry with the given accounts."""
        self._accounts = accounts
        self._locks: Dict[int, threading.Lock] = {i: threading.Lock() for i in range(len(accounts))}
        self._owners: Dict[int, int] = {}
        self._submitted: Dict[int, int] = {i: 0 for i in range(len(accounts))}

    @classmethod
    def deterministic(cls, count: int) -> "AccountRegistry":
        """Create a registry of `count` accounts derived from `deterministic_key`."""
        return cls([EOA(key=deterministic_key(i)) for i in range(count)])

    def __len__(self) -> int:
        """Return the number of accounts."""
        return len(self._accounts)

    def __iter__(self) -> Iterator[EOA]:
        """Iterate over the accounts in index order."""
        return iter(self._accounts)

    def __getitem__(self, index: int) -> EOA:
        """Return the account at the given index."""
        return self._accounts[index]

    def index_of(self, address: Address) -> int | None:
        """Return the index of the account with the given address, if it is registered."""
        for i, account in enumerate(self._accounts):
            if account == address:
                return i
        return None

    @contextmanager
    def exclusive(self, index: int) -> Iterator[EOA]:
        """Hold the account lock for the duration of a submission."""
        with self._locks[index]:
            self._owners[index] = threading.get_ident()
            try:
                yield self._accounts[index]
            finally:
                del self._owners[index]

    def _check_owned(self, index: int):
        if self._owners.get(index) != threading.get_ident():
            raise RuntimeError(f"account {index} used without holding its exclusive lock")

    def allocate(self, index: int, *, replace: bool = False) -> Number:
        """
        Return the nonce for the next transaction of the account.

        With `replace`, the nonce of the most recently submitted transaction is returned
        instead, so the new transaction competes with it at the same nonce.
        """
        self._check_owned(index)
        account = self._accounts[index]
        if replace:
            if self._submitted[index] == 0:
                raise ValueError(f"account {index} has no transaction to replace")
            return Number(account.nonce - 1)
        return account.nonce

    def advance(self, index: int):
        """Consume the allocated nonce after the client accepted the transaction."""
        self._check_owned(index)
        account = self._accounts[index]
        account.nonce = Number(account.nonce + 1)
        self._submitted[index] += 1

    def submitted(self, index: int) -> int:
        """Return the number of transactions of the account accepted so far."""
        return self._submitted[index]

    def nonce(self, index: int) -> Number:
        """Return the next unallocated nonce of the account."""
        return self._accounts[index].nonce

    def genesis_alloc(self, balance: int) -> Dict[str, Dict[str, str]]:
        """Return a genesis allocation that funds every account with `balance` wei."""
        return {Bytes(account).hex(): {"balance": hex(balance)} for account in self._accounts}
