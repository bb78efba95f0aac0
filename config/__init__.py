"""
Initializes the config package.

The config package is responsible for loading the simulator configuration from
`env.yaml` and the environment, making it accessible throughout the application.
"""

# `from config import EnvConfig` instead of `from config.env import EnvConfig`
from .env import EnvConfig
from .simulator import TRUSTED_SETUP_ENV_VAR, SimulatorConfig

__all__ = ["EnvConfig", "SimulatorConfig", "TRUSTED_SETUP_ENV_VAR"]
