"""Post-merge forks, their Engine API versions and the blob gas market."""

from .base_fork import BaseFork, Fork
from .blob_gas import BlobGasParameters
from .forks.forks import Cancun, Paris, Shanghai
from .helpers import ceiling_division, fake_exponential
from .schedule import ForkSchedule

__all__ = [
    "BaseFork",
    "BlobGasParameters",
    "Cancun",
    "Fork",
    "ForkSchedule",
    "Paris",
    "Shanghai",
    "ceiling_division",
    "fake_exponential",
]
