"""
Expected payload contents given the transactions waiting in a client's pool.

The plan is what a conforming builder is expected to include. It is never enforced on the
client and is only reported next to a wrong blob count. Selection follows the policy of the
reference builders: the highest-tip head transaction among all accounts is taken first,
every account is consumed strictly in nonce order, and an account whose next transaction no
longer fits the block's blob gas or cannot pay the block's blob gas price is skipped until
the next block.
"""

from typing import Dict, List, Sequence

from engine_test_forks import BlobGasParameters

from .txpool import PendingTransaction


def blob_gas_price_for_child(
    params: BlobGasParameters, parent_excess_blob_gas: int, parent_blob_gas_used: int
) -> int:
    """Return the blob gas price of the block built on top of the given parent."""
    return params.blob_gas_price(
        params.next_excess_blob_gas(parent_excess_blob_gas, parent_blob_gas_used)
    )


def affordable(pending: PendingTransaction, blob_gas_price: int) -> bool:
    """Return whether the transaction can pay for its blob gas at the given price."""
    blobs = len(pending.blob_ids)
    return pending.max_fee_per_blob_gas * blobs >= blobs * blob_gas_price


def _account_queues(pending: Sequence[PendingTransaction]) -> Dict[int, List[PendingTransaction]]:
    queues: Dict[int, List[PendingTransaction]] = {}
    for p in sorted(pending, key=lambda p: (p.account, p.nonce, p.sequence)):
        if p.resolved:
            continue
        queues.setdefault(p.account, []).append(p)
    return queues


def plan_payload(
    pending: Sequence[PendingTransaction],
    params: BlobGasParameters,
    *,
    parent_excess_blob_gas: int,
    parent_blob_gas_used: int,
) -> List[PendingTransaction]:
    """Return the transactions expected in the next payload, in inclusion order."""
    price = blob_gas_price_for_child(params, parent_excess_blob_gas, parent_blob_gas_used)
    queues = _account_queues(pending)
    remaining = params.max_blob_gas_per_block
    selected: List[PendingTransaction] = []
    while queues:
        account, head = max(
            ((account, queue[0]) for account, queue in queues.items()),
            key=lambda item: (item[1].tip, -item[1].sequence),
        )
        blob_gas = params.blob_gas_used(len(head.blob_ids))
        if blob_gas > remaining or not affordable(head, price):
            del queues[account]
            continue
        selected.append(head)
        remaining -= blob_gas
        queues[account].pop(0)
        if not queues[account]:
            del queues[account]
    return selected


def plan_payloads(
    pending: Sequence[PendingTransaction],
    params: BlobGasParameters,
    count: int,
    *,
    parent_excess_blob_gas: int = 0,
    parent_blob_gas_used: int = 0,
) -> List[List[PendingTransaction]]:
    """
    Return the expected contents of the next `count` payloads.

    The input transactions are not modified; inclusion is tracked on the side.
    """
    remaining = [p for p in pending if not p.resolved]
    plans: List[List[PendingTransaction]] = []
    excess, used = parent_excess_blob_gas, parent_blob_gas_used
    for _ in range(count):
        block = plan_payload(
            remaining, params, parent_excess_blob_gas=excess, parent_blob_gas_used=used
        )
        plans.append(block)
        included = {id(p) for p in block}
        remaining = [p for p in remaining if id(p) not in included]
        excess, used = (
            params.next_excess_blob_gas(excess, used),
            params.blob_gas_used(sum(len(p.blob_ids) for p in block)),
        )
    return plans


def blob_counts(plans: Sequence[Sequence[PendingTransaction]]) -> List[int]:
    """Return the number of blobs of every planned payload."""
    return [sum(len(p.blob_ids) for p in block) for block in plans]


def planned_blob_ids(block: Sequence[PendingTransaction]) -> List[int]:
    """Return the BlobIDs of a planned payload in inclusion order."""
    return [blob_id for p in block for blob_id in p.blob_ids]
