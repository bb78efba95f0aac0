"""
A module for loading the simulator configuration from the `env.yaml` file.

The file is optional: when it does not exist, every setting takes its default value.
Its content is validated with Pydantic so that typos fail early.

Classes:
- Config: The overall configuration structure.
- EnvConfig: Loads `env.yaml` into a Config.

Usage:
- `EnvConfig().simulator.request_timeout`
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from .simulator import SimulatorConfig

ENV_PATH = Path(__file__).resolve().parent.parent / "env.yaml"


class Config(BaseModel):
    """
    Represents the overall environment configuration.

    Attributes:
    - simulator (SimulatorConfig): Settings of the Engine API simulator.

    """

    model_config = ConfigDict(extra="forbid")

    simulator: SimulatorConfig = SimulatorConfig()


class EnvConfig(Config):
    """
    Loads and validates environment configuration from `env.yaml`.

    This is a wrapper class for the Config model. It reads a config file
    from disk into a Config model and then exposes it.
    """

    def __init__(self, path: Path = ENV_PATH):
        """Init for the EnvConfig class."""
        config_data = {}
        if path.exists():
            with path.open("r") as file:
                config_data = yaml.safe_load(file) or {}
            if not isinstance(config_data, dict):
                raise ValueError(f"Invalid configuration: {path} must contain a mapping")
        try:
            super().__init__(**config_data)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e}") from e
