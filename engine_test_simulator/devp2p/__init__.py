"""Devp2p peer used to inspect the transaction pool and fork id of a client."""

from .forkid import ForkID, compute_fork_id
from .messages import (
    Hello,
    MessageCode,
    NewPooledTransactionHashes,
    PooledTransactions,
    Status,
)
from .probe import DevP2PProbe, parse_enode
from .rlpx import RLPxConnection, RLPxError

__all__ = [
    "DevP2PProbe",
    "ForkID",
    "Hello",
    "MessageCode",
    "NewPooledTransactionHashes",
    "PooledTransactions",
    "RLPxConnection",
    "RLPxError",
    "Status",
    "compute_fork_id",
    "parse_enode",
]
