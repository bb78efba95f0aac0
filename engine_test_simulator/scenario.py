"""Declarative description of a scenario: its chain configuration and its steps."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from engine_test_forks import BlobGasParameters, ForkSchedule

from .steps import Step


class Scenario(BaseModel):
    """
    A named list of steps run against a fresh chain.

    Cancun is scheduled `cancun_fork_height` blocks after genesis unless an explicit
    `fork_schedule` is given.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    steps: List[Step]
    cancun_fork_height: int = Field(0, ge=0)
    genesis_timestamp: int = 0
    fork_schedule: ForkSchedule | None = None
    blob_params: BlobGasParameters = BlobGasParameters()
    account_count: int = Field(16, ge=1)

    def schedule(self, block_timestamp_increment: int) -> ForkSchedule:
        """Return the fork schedule of the scenario's chain."""
        if self.fork_schedule is not None:
            return self.fork_schedule
        return ForkSchedule.from_fork_height(
            self.cancun_fork_height,
            genesis_timestamp=self.genesis_timestamp,
            block_timestamp_increment=block_timestamp_increment,
        )
