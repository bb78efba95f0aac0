"""Genesis file and hive environment shared by every client of a scenario."""

from typing import Any, Dict

from engine_test_forks import ForkSchedule
from engine_test_types import AccountRegistry

GENESIS_GAS_LIMIT = 30_000_000
GENESIS_BASE_FEE = 10**9
ACCOUNT_BALANCE = 10**26

PRE_MERGE_BLOCK_FIELDS = [
    "homesteadBlock",
    "eip150Block",
    "eip155Block",
    "eip158Block",
    "byzantiumBlock",
    "constantinopleBlock",
    "petersburgBlock",
    "istanbulBlock",
    "berlinBlock",
    "londonBlock",
    "mergeNetsplitBlock",
]


def build_genesis(
    schedule: ForkSchedule, registry: AccountRegistry, chain_id: int
) -> Dict[str, Any]:
    """Return a post-merge genesis that funds every test account of the scenario."""
    config: Dict[str, Any] = {"chainId": chain_id}
    config |= {name: 0 for name in PRE_MERGE_BLOCK_FIELDS}
    config |= {
        "terminalTotalDifficulty": 0,
        "terminalTotalDifficultyPassed": True,
        "shanghaiTime": schedule.shanghai_timestamp,
        "cancunTime": schedule.cancun_timestamp,
    }
    genesis: Dict[str, Any] = {
        "config": config,
        "nonce": "0x0",
        "timestamp": hex(schedule.genesis_timestamp),
        "extraData": "0x",
        "gasLimit": hex(GENESIS_GAS_LIMIT),
        "difficulty": "0x0",
        "mixHash": "0x" + "00" * 32,
        "coinbase": "0x" + "00" * 20,
        "baseFeePerGas": hex(GENESIS_BASE_FEE),
        "alloc": registry.genesis_alloc(ACCOUNT_BALANCE),
    }
    if schedule.fork_at(schedule.genesis_timestamp).header_blob_gas_used_required():
        genesis |= {"blobGasUsed": "0x0", "excessBlobGas": "0x0"}
    return genesis


def client_environment(schedule: ForkSchedule, chain_id: int) -> Dict[str, str]:
    """Return the hive environment variables describing the chain."""
    return {
        "HIVE_CHAIN_ID": str(chain_id),
        "HIVE_NETWORK_ID": str(chain_id),
    } | schedule.hive_environment()
