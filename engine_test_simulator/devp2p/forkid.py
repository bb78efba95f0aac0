"""Fork identifier of EIP-2124, with the timestamp-scheduled forks of EIP-6122."""

import zlib
from typing import List, NamedTuple

from engine_test_forks import ForkSchedule


class ForkID(NamedTuple):
    """CRC32 checksum of the genesis hash and past forks, and the next scheduled fork."""

    fork_hash: bytes
    fork_next: int


def scheduled_fork_timestamps(schedule: ForkSchedule) -> List[int]:
    """Return the distinct fork timestamps after genesis, in ascending order."""
    return sorted(
        {
            timestamp
            for timestamp in schedule.activation_timestamps().values()
            if timestamp > schedule.genesis_timestamp
        }
    )


def compute_fork_id(genesis_hash: bytes, schedule: ForkSchedule, head_timestamp: int) -> ForkID:
    """Return the fork id a node whose head has the given timestamp must announce."""
    checksum = zlib.crc32(bytes(genesis_hash))
    for timestamp in scheduled_fork_timestamps(schedule):
        if timestamp > head_timestamp:
            return ForkID(checksum.to_bytes(4, "big"), timestamp)
        checksum = zlib.crc32(timestamp.to_bytes(8, "big"), checksum)
    return ForkID(checksum.to_bytes(4, "big"), 0)
