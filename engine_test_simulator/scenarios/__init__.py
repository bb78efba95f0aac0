"""Scenario tables run by the simulator."""

from typing import List

from ..scenario import Scenario
from .cancun import cancun_scenarios


def all_scenarios() -> List[Scenario]:
    """Return every known scenario; names are unique."""
    return cancun_scenarios()


__all__ = ["all_scenarios", "cancun_scenarios"]
