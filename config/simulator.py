"""
Settings that control how the simulator talks to the clients under test.

Classes:
- SimulatorConfig: Timeouts, readiness retries, CL Mock timing and blob settings.
"""

import os
from pathlib import Path

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt

TRUSTED_SETUP_ENV_VAR = "ENGINE_SIM_TRUSTED_SETUP"


class SimulatorConfig(BaseModel):
    """
    Represents the configuration of a simulator run.

    Attributes:
    - request_timeout (float): Seconds before an Engine API or RPC request is abandoned.
    - readiness_retries (int): Attempts made while waiting for a client to answer.
    - readiness_backoff (float): Initial delay between readiness attempts, doubled each time.
    - get_payload_delay (float): Default seconds between `forkchoiceUpdated` and `getPayload`.
    - block_timestamp_increment (int): Seconds between the timestamps of consecutive blocks.
    - chain_id (int): Chain id of the simulated network.
    - kzg_trusted_setup (Path | None): Trusted setup file used to compute blob commitments.
    - blob_cache_dir (Path): Directory where computed blobs are cached.
    - client_slots (int): Scenarios whose clients may run at the same time, across all
      xdist workers.

    """

    model_config = ConfigDict(extra="forbid")

    request_timeout: PositiveFloat = 10.0
    readiness_retries: PositiveInt = 10
    readiness_backoff: PositiveFloat = 0.5
    get_payload_delay: float = Field(0.0, ge=0)
    block_timestamp_increment: PositiveInt = 1
    chain_id: PositiveInt = 1
    kzg_trusted_setup: Path | None = None
    blob_cache_dir: Path = (
        Path(platformdirs.user_cache_dir("engine-api-simulator")) / "cached_blobs"
    )
    client_slots: PositiveInt = 4

    def with_environment(self) -> "SimulatorConfig":
        """Return a copy where environment variables override the file settings."""
        if TRUSTED_SETUP_ENV_VAR in os.environ:
            return self.model_copy(
                update={"kzg_trusted_setup": Path(os.environ[TRUSTED_SETUP_ENV_VAR])}
            )
        return self
