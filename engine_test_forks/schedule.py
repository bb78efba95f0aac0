"""Timestamp-based fork schedule of a scenario."""

from typing import Dict

from pydantic import BaseModel, ConfigDict, model_validator

from .base_fork import Fork
from .forks.forks import Cancun, Paris, Shanghai


class ForkSchedule(BaseModel):
    """
    Activation timestamps of the forks a scenario spans.

    Shanghai is expected to be active at or before Cancun; the genesis is a post-merge
    block so every timestamp before Shanghai is served by `Paris` rules.
    """

    model_config = ConfigDict(frozen=True)

    genesis_timestamp: int = 0
    shanghai_timestamp: int = 0
    cancun_timestamp: int = 0

    @model_validator(mode="after")
    def check_order(self) -> "ForkSchedule":
        """Reject schedules where Cancun activates before Shanghai."""
        if self.cancun_timestamp < self.shanghai_timestamp:
            raise ValueError(
                f"cancun timestamp {self.cancun_timestamp} is before shanghai timestamp "
                f"{self.shanghai_timestamp}"
            )
        return self

    @classmethod
    def from_fork_height(
        cls,
        cancun_fork_height: int,
        *,
        genesis_timestamp: int = 0,
        block_timestamp_increment: int = 1,
    ) -> "ForkSchedule":
        """Schedule Cancun at a block height, assuming a constant timestamp increment."""
        return cls(
            genesis_timestamp=genesis_timestamp,
            shanghai_timestamp=0,
            cancun_timestamp=genesis_timestamp + cancun_fork_height * block_timestamp_increment,
        )

    def fork_at(self, timestamp: int) -> Fork:
        """Return the fork whose rules apply to a block with the given timestamp."""
        if timestamp >= self.cancun_timestamp:
            return Cancun
        if timestamp >= self.shanghai_timestamp:
            return Shanghai
        return Paris

    def activation_timestamps(self) -> Dict[Fork, int]:
        """Return the activation timestamp of every scheduled fork."""
        return {Shanghai: self.shanghai_timestamp, Cancun: self.cancun_timestamp}

    def hive_environment(self) -> Dict[str, str]:
        """Return the hive environment variables that configure this schedule on a client."""
        return {
            fork.hive_timestamp_variable: str(timestamp)
            for fork, timestamp in self.activation_timestamps().items()
            if fork.hive_timestamp_variable is not None
        }
