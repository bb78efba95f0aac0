"""Registry of the transactions a scenario submitted, used to cross-check produced payloads."""

import threading
from typing import Dict, Iterator, List

from pydantic import BaseModel, ConfigDict

from engine_test_base_types import Bytes, Hash
from engine_test_types import BlobID, Transaction


class PendingTransaction(BaseModel):
    """A transaction submitted to a client, tagged with the BlobIDs it carries."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    account: int
    tx: Transaction
    blob_ids: List[BlobID]
    raw: Bytes
    """Encoding sent to the client; the network wrapper for blob transactions."""
    client: str
    replaces: bool = False
    sequence: int = -1
    superseded: bool = False
    included_in: int | None = None

    @property
    def nonce(self) -> int:
        """Nonce of the transaction."""
        return self.tx.nonce

    @property
    def tip(self) -> int:
        """Maximum priority fee per gas."""
        return self.tx.max_priority_fee_per_gas

    @property
    def max_fee_per_blob_gas(self) -> int:
        """Maximum fee per unit of blob gas; zero for transactions without blobs."""
        return self.tx.max_fee_per_blob_gas or 0

    @property
    def hash(self) -> Hash:
        """Hash of the transaction."""
        return self.tx.hash

    @property
    def resolved(self) -> bool:
        """Whether the transaction was included or superseded by a replacement."""
        return self.superseded or self.included_in is not None


class TransactionPool:
    """
    Every transaction submitted during a scenario, in submission order.

    BlobIDs are handed out from a single counter so that the content of every blob sent
    in a scenario is unique. The pool is shared by concurrently running steps and guards
    its state with a lock.
    """

    def __init__(self):
        """Initialize an empty pool."""
        self._lock = threading.Lock()
        self._transactions: List[PendingTransaction] = []
        self._by_hash: Dict[Hash, PendingTransaction] = {}
        self._next_blob_id: BlobID = 0

    def __len__(self) -> int:
        """Return the number of registered transactions."""
        return len(self._transactions)

    def __getitem__(self, sequence: int) -> PendingTransaction:
        """Return the transaction registered at the given position."""
        return self._transactions[sequence]

    def __iter__(self) -> Iterator[PendingTransaction]:
        """Iterate over a snapshot of the registered transactions."""
        with self._lock:
            return iter(list(self._transactions))

    def reserve_blob_ids(self, count: int) -> List[BlobID]:
        """Return `count` BlobIDs never returned before."""
        with self._lock:
            start = self._next_blob_id
            self._next_blob_id += count
        return list(range(start, start + count))

    def register(self, pending: PendingTransaction) -> PendingTransaction:
        """
        Record a transaction accepted by a client.

        A replacement supersedes every unresolved transaction of the same account at the
        same nonce.
        """
        with self._lock:
            if pending.replaces:
                for previous in self._transactions:
                    if (
                        previous.account == pending.account
                        and previous.nonce == pending.nonce
                        and not previous.resolved
                    ):
                        previous.superseded = True
            pending.sequence = len(self._transactions)
            self._transactions.append(pending)
            self._by_hash[pending.hash] = pending
        return pending

    def lookup(self, tx_hash: Hash) -> PendingTransaction | None:
        """Return the registered transaction with the given hash."""
        return self._by_hash.get(Hash(tx_hash))

    def mark_included(self, tx_hash: Hash, block_number: int):
        """Record the block that included a registered transaction."""
        pending = self.lookup(tx_hash)
        if pending is not None:
            pending.included_in = block_number

    def pending(self) -> List[PendingTransaction]:
        """Return the unresolved transactions in submission order."""
        with self._lock:
            return [p for p in self._transactions if not p.resolved]

    def of_account(self, account: int) -> List[PendingTransaction]:
        """Return every transaction of an account in submission order."""
        with self._lock:
            return [p for p in self._transactions if p.account == account]
