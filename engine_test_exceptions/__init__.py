"""Engine API error definitions."""

from .engine_api import EngineAPIError

__all__ = ["EngineAPIError"]
