"""Builds, signs and submits the fee-market and blob transactions of a scenario."""

from typing import TYPE_CHECKING, List

from engine_test_base_types import HexNumber
from engine_test_rpc import SendTransactionExceptionError
from engine_test_types import Blob, NetworkWrappedTransaction, Transaction, TransactionType
from pytest_plugins.logging import get_logger

from .exceptions import SequencingError, SubmissionError
from .txpool import PendingTransaction

if TYPE_CHECKING:
    from .client import EngineClient
    from .context import ScenarioContext

logger = get_logger(__name__)

DEFAULT_GAS_TIP_CAP = 10**9
DEFAULT_GAS_FEE_CAP = 30 * 10**9
DEFAULT_MAX_BLOB_GAS_COST = 1


class TransactionGenerator:
    """
    Submits transactions on behalf of the scenario's test accounts.

    Every transaction is built and submitted while holding the exclusive lock of its
    account, so transactions of one account reach the client in nonce order while
    different accounts submit concurrently.
    """

    def __init__(self, context: "ScenarioContext"):
        """Initialize the generator for a scenario."""
        self.context = context

    def build(
        self,
        *,
        account: int,
        nonce: int,
        blob_ids: List[int],
        max_blob_gas_cost: int,
        fee_cap: int,
        tip_cap: int,
    ) -> Transaction:
        """Return a signed transaction; one without blobs is a plain fee-market transaction."""
        tx = Transaction(
            ty=(
                HexNumber(TransactionType.BLOB_TRANSACTION)
                if blob_ids
                else HexNumber(TransactionType.BASE_FEE)
            ),
            chain_id=self.context.chain_id,
            nonce=nonce,
            max_priority_fee_per_gas=tip_cap,
            max_fee_per_gas=fee_cap,
            max_fee_per_blob_gas=max_blob_gas_cost if blob_ids else None,
            blob_versioned_hashes=(
                [
                    Blob.from_id(blob_id).versioned_hash(
                        self.context.blob_params.versioned_hash_version
                    )
                    for blob_id in blob_ids
                ]
                if blob_ids
                else None
            ),
        )
        key = self.context.account(account).key
        if key is None:
            raise SequencingError(f"account {account} has no signing key")
        return tx.signed(key)

    def send_one(
        self,
        *,
        account: int = 0,
        blobs_per_transaction: int = 1,
        max_blob_gas_cost: int = DEFAULT_MAX_BLOB_GAS_COST,
        fee_cap: int = DEFAULT_GAS_FEE_CAP,
        tip_cap: int = DEFAULT_GAS_TIP_CAP,
        client: "EngineClient | None" = None,
        replace: bool = False,
    ) -> PendingTransaction:
        """Submit a single transaction and register it in the scenario's pool."""
        target = client if client is not None else self.context.primary
        self.context.account(account)
        registry = self.context.registry
        with registry.exclusive(account):
            if replace and registry.submitted(account) == 0:
                raise SequencingError(f"account {account} has no transaction to replace")
            nonce = registry.allocate(account, replace=replace)
            blob_ids = self.context.pool.reserve_blob_ids(blobs_per_transaction)
            tx = self.build(
                account=account,
                nonce=nonce,
                blob_ids=blob_ids,
                max_blob_gas_cost=max_blob_gas_cost,
                fee_cap=fee_cap,
                tip_cap=tip_cap,
            )
            raw = (
                NetworkWrappedTransaction(
                    tx=tx, blobs=[Blob.from_id(blob_id) for blob_id in blob_ids]
                ).rlp()
                if blob_ids
                else tx.rlp()
            )
            try:
                target.send_transaction(tx, raw)
            except SendTransactionExceptionError as e:
                logger.fail(f"{target.name} rejected transaction {tx.hash}: {e}")
                raise SubmissionError(tx, str(e), e.code) from e
            if not replace:
                registry.advance(account)
            pending = self.context.pool.register(
                PendingTransaction(
                    account=account,
                    tx=tx,
                    blob_ids=blob_ids,
                    raw=raw,
                    client=target.name,
                    replaces=replace,
                )
            )
        logger.debug(
            f"account {account} sent {tx.hash} nonce={nonce} blobs={blob_ids} to {target.name}"
        )
        return pending

    def send(
        self,
        count: int,
        *,
        blobs_per_transaction: int = 1,
        max_blob_gas_cost: int = DEFAULT_MAX_BLOB_GAS_COST,
        fee_cap: int = DEFAULT_GAS_FEE_CAP,
        tip_cap: int = DEFAULT_GAS_TIP_CAP,
        account: int = 0,
        client: "EngineClient | None" = None,
        replace: bool = False,
    ) -> List[PendingTransaction]:
        """
        Submit `count` transactions from one account.

        With `replace`, each transaction reuses the nonce of the account's latest
        submission, so it competes with (and, with a higher tip, supersedes) it.
        """
        sent = [
            self.send_one(
                account=account,
                blobs_per_transaction=blobs_per_transaction,
                max_blob_gas_cost=max_blob_gas_cost,
                fee_cap=fee_cap,
                tip_cap=tip_cap,
                client=client,
                replace=replace,
            )
            for _ in range(count)
        ]
        logger.info(
            f"Sent {count} transaction(s) with {blobs_per_transaction} blob(s) each from "
            f"account {account}"
        )
        return sent
