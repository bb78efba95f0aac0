"""Cancun scenarios: blob transactions, `engine_newPayloadV3` negatives and devp2p checks."""

from typing import List

from engine_test_base_types import Hash
from engine_test_exceptions import EngineAPIError
from engine_test_forks import BlobGasParameters, ForkSchedule
from engine_test_rpc import PayloadStatusEnum
from engine_test_types import (
    BLOB_COMMITMENT_VERSION_KZG,
    HashCorruption,
    VersionedHashes,
    get_blob_list,
    get_blob_list_by_index,
)

from ..customizer import REMOVE, PayloadCustomizer
from ..scenario import Scenario
from ..steps import (
    DevP2PClientPeering,
    DevP2PRequestPooledTransactionHash,
    LaunchClients,
    NewPayloads,
    ParallelSteps,
    SendBlobTransactions,
    SendModifiedLatestPayload,
    Step,
)

BLOB_PARAMS = BlobGasParameters()
TARGET_BLOBS_PER_BLOCK = BLOB_PARAMS.target_blobs_per_block
MAX_BLOBS_PER_BLOCK = BLOB_PARAMS.max_blobs_per_block
ZERO_HASH = Hash(0)

# Excess blobs needed before the blob gas price reaches 2.
BLOB_GAS_COST_INCREMENT_EXCEED_BLOBS = BLOB_PARAMS.min_excess_blobs_for_price(2)
EXCESS_BLOBS_PER_FULL_BLOCK = MAX_BLOBS_PER_BLOCK - TARGET_BLOBS_PER_BLOCK

INVALID_PARAMS = EngineAPIError.InvalidParams
UNSUPPORTED_FORK = EngineAPIError.UnsupportedFork


def blob_transactions_on_block_1(name: str, cancun_fork_height: int) -> Scenario:
    """Fill blocks until the blob gas price rises and check a priced out transaction waits."""
    full_blocks = BLOB_GAS_COST_INCREMENT_EXCEED_BLOBS // EXCESS_BLOBS_PER_FULL_BLOCK
    return Scenario(
        name=name,
        description="Blob transactions are included from the first block after the fork.",
        cancun_fork_height=cancun_fork_height,
        steps=[
            NewPayloads(),
            SendBlobTransactions(
                transaction_count=TARGET_BLOBS_PER_BLOCK, max_blob_gas_cost=1
            ),
            NewPayloads(
                expected_included_blob_count=TARGET_BLOBS_PER_BLOCK,
                expected_blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK),
            ),
            SendBlobTransactions(
                transaction_count=full_blocks + 1,
                blobs_per_transaction=MAX_BLOBS_PER_BLOCK,
                max_blob_gas_cost=1,
            ),
            NewPayloads(
                payload_count=full_blocks, expected_included_blob_count=MAX_BLOBS_PER_BLOCK
            ),
            # The blob gas price went up, so the last transaction waits one block.
            NewPayloads(expected_included_blob_count=0),
            NewPayloads(expected_included_blob_count=MAX_BLOBS_PER_BLOCK),
        ],
    )


def ordering_scenarios() -> List[Scenario]:
    """Blob transactions from one or more accounts are packed by nonce and tip."""
    return [
        Scenario(
            name="Blob Transaction Ordering, Single Account",
            steps=[
                SendBlobTransactions(
                    transaction_count=5,
                    blobs_per_transaction=MAX_BLOBS_PER_BLOCK - 1,
                    max_blob_gas_cost=100,
                ),
                SendBlobTransactions(
                    transaction_count=MAX_BLOBS_PER_BLOCK + 1,
                    blobs_per_transaction=1,
                    max_blob_gas_cost=100,
                ),
                NewPayloads(
                    payload_count=4, expected_included_blob_count=MAX_BLOBS_PER_BLOCK - 1
                ),
                NewPayloads(payload_count=2, expected_included_blob_count=MAX_BLOBS_PER_BLOCK),
            ],
        ),
        Scenario(
            name="Blob Transaction Ordering, Single Account 2",
            steps=[
                SendBlobTransactions(
                    transaction_count=5,
                    blobs_per_transaction=MAX_BLOBS_PER_BLOCK - 1,
                    max_blob_gas_cost=100,
                ),
                SendBlobTransactions(
                    transaction_count=1, blobs_per_transaction=2, max_blob_gas_cost=100
                ),
                SendBlobTransactions(
                    transaction_count=MAX_BLOBS_PER_BLOCK - 2,
                    blobs_per_transaction=1,
                    max_blob_gas_cost=100,
                ),
                NewPayloads(
                    payload_count=5, expected_included_blob_count=MAX_BLOBS_PER_BLOCK - 1
                ),
                NewPayloads(payload_count=1, expected_included_blob_count=MAX_BLOBS_PER_BLOCK),
            ],
        ),
        Scenario(
            name="Blob Transaction Ordering, Multiple Accounts",
            steps=[
                SendBlobTransactions(
                    transaction_count=5,
                    blobs_per_transaction=MAX_BLOBS_PER_BLOCK - 1,
                    max_blob_gas_cost=100,
                    account_index=0,
                ),
                SendBlobTransactions(
                    transaction_count=5,
                    blobs_per_transaction=1,
                    max_blob_gas_cost=100,
                    account_index=1,
                ),
                NewPayloads(payload_count=5, expected_included_blob_count=MAX_BLOBS_PER_BLOCK),
            ],
        ),
        Scenario(
            name="Blob Transaction Ordering, Multiple Clients",
            steps=[
                # The second client never builds, so it cannot pack the single blob
                # transactions on their own.
                LaunchClients(skip_adding_to_clmock=True),
                NewPayloads(payload_count=1, expected_included_blob_count=0),
                SendBlobTransactions(
                    transaction_count=5,
                    blobs_per_transaction=MAX_BLOBS_PER_BLOCK - 1,
                    max_blob_gas_cost=120,
                    account_index=0,
                    client_index=0,
                ),
                SendBlobTransactions(
                    transaction_count=5,
                    blobs_per_transaction=1,
                    max_blob_gas_cost=100,
                    account_index=1,
                    client_index=1,
                ),
                NewPayloads(
                    payload_count=5,
                    expected_included_blob_count=MAX_BLOBS_PER_BLOCK,
                    get_payload_delay=2,
                ),
            ],
        ),
    ]


def replace_blob_transactions() -> Scenario:
    """Each replacement pays more, so only the last one is included."""
    # (max blob gas cost, fee cap and tip) of blobs 0 to 3
    prices = [(1, 10**9), (10**2, 10**10), (10**3, 10**11), (10**4, 10**12)]
    sends: List[Step] = [
        SendBlobTransactions(
            transaction_count=1,
            max_blob_gas_cost=max_blob_gas_cost,
            fee_cap=price,
            tip_cap=price,
            replace_transactions=i > 0,
        )
        for i, (max_blob_gas_cost, price) in enumerate(prices)
    ]
    return Scenario(
        name="Replace Blob Transactions",
        description="Transactions with the same nonce and a higher tip replace each other.",
        steps=[*sends, NewPayloads(expected_included_blob_count=1, expected_blobs=[3])],
    )


def parallel_blob_transactions() -> Scenario:
    """Ten accounts submit at the same time; the first block is full."""
    return Scenario(
        name="Parallel Blob Transactions",
        steps=[
            ParallelSteps(
                steps=[
                    SendBlobTransactions(
                        transaction_count=5,
                        blobs_per_transaction=MAX_BLOBS_PER_BLOCK,
                        max_blob_gas_cost=100,
                        account_index=account,
                    )
                    for account in range(10)
                ]
            ),
            NewPayloads(
                expected_included_blob_count=MAX_BLOBS_PER_BLOCK,
                expected_blobs=get_blob_list(0, MAX_BLOBS_PER_BLOCK),
            ),
        ],
    )


def new_payload_v3_before_cancun() -> List[Scenario]:
    """`engine_newPayloadV3` on a Shanghai payload, with and without blob fields."""
    nil_fields = "NewPayloadV3 before Cancun with any nil field must return INVALID_PARAMS_ERROR"
    cases = [
        (
            "Nil Data Fields, Nil Versioned Hashes, Nil Beacon Root",
            dict(versioned_hashes=VersionedHashes(blobs=None)),
            INVALID_PARAMS,
        ),
        (
            "Nil ExcessBlobGas, 0x00 BlobGasUsed, Nil Versioned Hashes, Nil Beacon Root",
            dict(payload_customizer=PayloadCustomizer(blob_gas_used=0)),
            INVALID_PARAMS,
        ),
        (
            "0x00 ExcessBlobGas, Nil BlobGasUsed, Nil Versioned Hashes, Nil Beacon Root",
            dict(payload_customizer=PayloadCustomizer(excess_blob_gas=0)),
            INVALID_PARAMS,
        ),
        (
            "Nil Data Fields, Empty Array Versioned Hashes, Nil Beacon Root",
            dict(versioned_hashes=VersionedHashes(blobs=[])),
            INVALID_PARAMS,
        ),
        (
            "Nil Data Fields, Nil Versioned Hashes, Zero Beacon Root",
            dict(payload_customizer=PayloadCustomizer(parent_beacon_root=ZERO_HASH)),
            INVALID_PARAMS,
        ),
        (
            "0x00 Data Fields, Empty Array Versioned Hashes, Zero Beacon Root",
            dict(
                versioned_hashes=VersionedHashes(blobs=[]),
                payload_customizer=PayloadCustomizer(
                    excess_blob_gas=0, blob_gas_used=0, parent_beacon_root=ZERO_HASH
                ),
            ),
            UNSUPPORTED_FORK,
        ),
    ]
    return [
        Scenario(
            name=f"NewPayloadV3 Before Cancun, {label}",
            cancun_fork_height=2,
            steps=[
                NewPayloads(
                    expected_included_blob_count=0,
                    version=3,
                    expected_error=error,
                    expectation_description=(
                        nil_fields
                        if error == INVALID_PARAMS
                        else "NewPayloadV3 before Cancun with no nil fields must return "
                        "UNSUPPORTED_FORK_ERROR"
                    ),
                    **modification,
                )
            ],
        )
        for label, modification, error in cases
    ]


def new_payload_v3_after_cancun() -> List[Scenario]:
    """`engine_newPayloadV3` on a Cancun payload with one required field removed."""
    cases = [
        (
            "Nil ExcessBlobGas, 0x00 BlobGasUsed, Empty Array Versioned Hashes, Zero Beacon Root",
            PayloadCustomizer(excess_blob_gas=REMOVE),
            "ExcessBlobGas",
        ),
        (
            "0x00 ExcessBlobGas, Nil BlobGasUsed, Empty Array Versioned Hashes",
            PayloadCustomizer(blob_gas_used=REMOVE),
            "BlobGasUsed",
        ),
        (
            "0x00 Blob Fields, Empty Array Versioned Hashes, Nil Beacon Root",
            PayloadCustomizer(parent_beacon_root=REMOVE),
            "parentBeaconBlockRoot",
        ),
    ]
    return [
        Scenario(
            name=f"NewPayloadV3 After Cancun, {label}",
            cancun_fork_height=1,
            steps=[
                NewPayloads(
                    expected_included_blob_count=0,
                    version=3,
                    payload_customizer=customizer,
                    expected_error=INVALID_PARAMS,
                    expectation_description=(
                        f"NewPayloadV3 after Cancun with nil {field} must return "
                        "INVALID_PARAMS_ERROR"
                    ),
                )
            ],
        )
        for label, customizer, field in cases
    ]


# Versioned hash lists sent in place of the correct one for a payload carrying blobs 0-2.
VERSIONED_HASH_NEGATIVES = [
    ("Missing Hash", VersionedHashes(blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK - 1))),
    ("Extra Hash", VersionedHashes(blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK + 1))),
    (
        "Out of Order",
        VersionedHashes(blobs=get_blob_list_by_index(TARGET_BLOBS_PER_BLOCK - 1, 0)),
    ),
    (
        "Repeated Hash",
        VersionedHashes(
            blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK) + [TARGET_BLOBS_PER_BLOCK - 1]
        ),
    ),
    (
        "Incorrect Hash",
        VersionedHashes(
            blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK - 1) + [TARGET_BLOBS_PER_BLOCK]
        ),
    ),
    (
        "Incorrect Version",
        VersionedHashes(
            blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK),
            hash_versions=[BLOB_COMMITMENT_VERSION_KZG, BLOB_COMMITMENT_VERSION_KZG + 1],
        ),
    ),
    ("Nil Hashes", VersionedHashes(blobs=None)),
    ("Empty Hashes", VersionedHashes(blobs=[])),
]


def _hash_expectation(versioned_hashes: VersionedHashes) -> dict:
    if versioned_hashes.blobs is None:
        return dict(
            expected_error=INVALID_PARAMS,
            expectation_description=(
                "NewPayloadV3 after Cancun with nil VersionedHashes must return "
                "INVALID_PARAMS_ERROR"
            ),
        )
    return dict(
        expected_status=PayloadStatusEnum.INVALID,
        expectation_description=(
            "NewPayloadV3 with incorrect list of versioned hashes must return INVALID status"
        ),
    )


def versioned_hashes_scenarios() -> List[Scenario]:
    """Incorrect versioned hash lists sent to the building client."""
    scenarios = [
        Scenario(
            name=f"NewPayloadV3 Versioned Hashes, {label}",
            steps=[
                SendBlobTransactions(
                    transaction_count=TARGET_BLOBS_PER_BLOCK, max_blob_gas_cost=1
                ),
                NewPayloads(
                    expected_included_blob_count=TARGET_BLOBS_PER_BLOCK,
                    expected_blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK),
                    versioned_hashes=versioned_hashes,
                    **_hash_expectation(versioned_hashes),
                ),
            ],
        )
        for label, versioned_hashes in VERSIONED_HASH_NEGATIVES
    ]
    scenarios.append(
        Scenario(
            name="NewPayloadV3 Versioned Hashes, Non-Empty Hashes",
            steps=[
                NewPayloads(
                    expected_included_blob_count=0,
                    expected_blobs=[],
                    versioned_hashes=VersionedHashes(blobs=[0]),
                    **_hash_expectation(VersionedHashes(blobs=[0])),
                )
            ],
        )
    )
    return scenarios


def corrupted_versioned_hashes_scenarios() -> List[Scenario]:
    """
    The correct versioned hash list of a full block, corrupted before it is sent.

    No expectation is stated: a nil list is rejected as invalid params and every other
    corruption yields an `INVALID` status.
    """
    scenarios = []
    for corruption in HashCorruption:
        label = corruption.value.replace("_", " ").title()
        scenarios.append(
            Scenario(
                name=f"NewPayloadV3 Versioned Hashes, Corrupted, {label}",
                steps=[
                    SendBlobTransactions(
                        transaction_count=TARGET_BLOBS_PER_BLOCK, max_blob_gas_cost=1
                    ),
                    NewPayloads(
                        expected_included_blob_count=TARGET_BLOBS_PER_BLOCK,
                        expected_blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK),
                        versioned_hash_corruption=corruption,
                    ),
                ],
            )
        )
    return scenarios


def versioned_hashes_syncing_scenarios() -> List[Scenario]:
    """Incorrect versioned hash lists sent to a client that cannot know the parent."""
    # A client without the bootnode stays behind and keeps syncing.
    syncing_client = LaunchClients(skip_adding_to_clmock=True, skip_connecting_to_bootnode=True)
    scenarios = [
        Scenario(
            name=f"NewPayloadV3 Versioned Hashes, {label} (Syncing)",
            steps=[
                NewPayloads(),
                SendBlobTransactions(
                    transaction_count=TARGET_BLOBS_PER_BLOCK, max_blob_gas_cost=1
                ),
                NewPayloads(
                    expected_included_blob_count=TARGET_BLOBS_PER_BLOCK,
                    expected_blobs=get_blob_list(0, TARGET_BLOBS_PER_BLOCK),
                ),
                syncing_client,
                SendModifiedLatestPayload(
                    client_index=1,
                    versioned_hashes=versioned_hashes,
                    **_hash_expectation(versioned_hashes),
                ),
            ],
        )
        for label, versioned_hashes in VERSIONED_HASH_NEGATIVES
    ]
    scenarios.append(
        Scenario(
            name="NewPayloadV3 Versioned Hashes, Non-Empty Hashes (Syncing)",
            steps=[
                NewPayloads(),
                NewPayloads(expected_included_blob_count=0, expected_blobs=[]),
                syncing_client,
                SendModifiedLatestPayload(
                    client_index=1,
                    versioned_hashes=VersionedHashes(blobs=[0]),
                    expected_status=PayloadStatusEnum.INVALID,
                ),
            ],
        )
    )
    return scenarios


def incorrect_blob_gas_used_scenarios() -> List[Scenario]:
    """Payloads without blobs that claim to have used blob gas."""
    return [
        Scenario(
            name=f"Incorrect BlobGasUsed: {label} on Zero Blobs",
            steps=[
                NewPayloads(
                    expected_included_blob_count=0,
                    payload_customizer=PayloadCustomizer(blob_gas_used=blob_gas_used),
                )
            ],
        )
        for label, blob_gas_used in (
            ("Non-Zero", 1),
            ("GAS_PER_BLOB", BLOB_PARAMS.gas_per_blob),
        )
    ]


FORK_ID_SCHEDULES = [
    # genesis, shanghai, cancun, blocks produced before peering
    (0, 0, 0, 0),
    (0, 0, 1, 0),
    (1, 0, 1, 0),
    (0, 0, 1, 1),
    (1, 1, 1, 0),
    (1, 1, 2, 0),
    (1, 1, 2, 1),
]


def fork_id_scenarios() -> List[Scenario]:
    """Peer with the client over devp2p and check the fork id it announces."""
    scenarios = []
    for genesis, shanghai, cancun, produce_before in FORK_ID_SCHEDULES:
        name = f"ForkID, genesis at {genesis}, shanghai at {shanghai}, cancun at {cancun}"
        if produce_before:
            name += ", transition"
        steps: List[Step] = [NewPayloads() for _ in range(produce_before)]
        steps.append(DevP2PClientPeering(client_index=0))
        scenarios.append(
            Scenario(
                name=name,
                description=f"Peer with the client at height {produce_before}.",
                genesis_timestamp=genesis,
                fork_schedule=ForkSchedule(
                    genesis_timestamp=genesis,
                    shanghai_timestamp=shanghai,
                    cancun_timestamp=cancun,
                ),
                steps=steps,
            )
        )
    return scenarios


def request_blob_pooled_transactions() -> Scenario:
    """A pooled blob transaction is announced and served in its network form."""
    return Scenario(
        name="Request Blob Pooled Transactions",
        steps=[
            NewPayloads(expected_included_blob_count=0),
            SendBlobTransactions(transaction_count=1, max_blob_gas_cost=1),
            DevP2PRequestPooledTransactionHash(
                client_index=0, transaction_indexes=[0], wait_for_new_pooled_transaction=True
            ),
        ],
    )


def cancun_scenarios() -> List[Scenario]:
    """Return every Cancun scenario, in the order they are reported."""
    return [
        blob_transactions_on_block_1("Blob Transactions On Block 1, Shanghai Genesis", 1),
        blob_transactions_on_block_1("Blob Transactions On Block 1, Cancun Genesis", 0),
        *ordering_scenarios(),
        replace_blob_transactions(),
        parallel_blob_transactions(),
        *new_payload_v3_before_cancun(),
        *new_payload_v3_after_cancun(),
        *versioned_hashes_scenarios(),
        *corrupted_versioned_hashes_scenarios(),
        *versioned_hashes_syncing_scenarios(),
        *incorrect_blob_gas_used_scenarios(),
        *fork_id_scenarios(),
        request_blob_pooled_transactions(),
    ]
