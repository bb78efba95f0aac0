"""Abstract base class for the forks reachable through the Engine API."""

from abc import ABC, ABCMeta, abstractmethod
from typing import ClassVar, Optional


class BaseForkMeta(ABCMeta):
    """Metaclass for BaseFork."""

    def name(cls) -> str:
        """Return the name of the fork (e.g., Cancun)."""
        return cls.__name__

    def __repr__(cls) -> str:
        """Print the name of the fork, instead of the class."""
        return cls.name()

    def __gt__(cls, other: "BaseForkMeta") -> bool:
        """Compare if a fork is newer than some other fork (cls > other)."""
        return cls is not other and issubclass(cls, other)

    def __ge__(cls, other: "BaseForkMeta") -> bool:
        """Compare if a fork is newer than or equal to some other fork (cls >= other)."""
        return cls is other or issubclass(cls, other)

    def __lt__(cls, other: "BaseForkMeta") -> bool:
        """Compare if a fork is older than some other fork (cls < other)."""
        return cls is not other and issubclass(other, cls)

    def __le__(cls, other: "BaseForkMeta") -> bool:
        """Compare if a fork is older than or equal to some other fork (cls <= other)."""
        return cls is other or issubclass(other, cls)


class BaseFork(ABC, metaclass=BaseForkMeta):
    """
    An abstract class representing a post-merge fork.

    Must contain all the methods used by the CL Mock to build and validate payloads.
    """

    hive_timestamp_variable: ClassVar[Optional[str]] = None

    def __init_subclass__(cls, *, hive_timestamp_variable: Optional[str] = None) -> None:
        """Record the hive environment variable that schedules the fork, if any."""
        cls.hive_timestamp_variable = hive_timestamp_variable

    # Header information abstract methods
    @classmethod
    @abstractmethod
    def header_withdrawals_required(cls) -> bool:
        """Return true if the payload must contain withdrawals."""
        pass

    @classmethod
    @abstractmethod
    def header_excess_blob_gas_required(cls) -> bool:
        """Return true if the payload must contain excess blob gas."""
        pass

    @classmethod
    @abstractmethod
    def header_blob_gas_used_required(cls) -> bool:
        """Return true if the payload must contain blob gas used."""
        pass

    @classmethod
    @abstractmethod
    def header_beacon_root_required(cls) -> bool:
        """Return true if the header must contain the parent beacon block root."""
        pass

    # Blob information abstract methods
    @classmethod
    @abstractmethod
    def supports_blobs(cls) -> bool:
        """Return whether the fork supports blob transactions."""
        pass

    # Engine API information abstract methods
    @classmethod
    @abstractmethod
    def engine_new_payload_version(cls) -> int:
        """Return the `engine_newPayloadVX` version to use on this fork."""
        pass

    @classmethod
    @abstractmethod
    def engine_new_payload_blob_hashes(cls) -> bool:
        """Return true if `engine_newPayloadVX` takes the versioned hashes."""
        pass

    @classmethod
    @abstractmethod
    def engine_new_payload_beacon_root(cls) -> bool:
        """Return true if `engine_newPayloadVX` takes the parent beacon block root."""
        pass

    @classmethod
    @abstractmethod
    def engine_forkchoice_updated_version(cls) -> int:
        """Return the `engine_forkchoiceUpdatedVX` version to use on this fork."""
        pass

    @classmethod
    @abstractmethod
    def engine_get_payload_version(cls) -> int:
        """Return the `engine_getPayloadVX` version to use on this fork."""
        pass


Fork = type[BaseFork]
