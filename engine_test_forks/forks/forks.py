"""All post-merge fork definitions."""

from ..base_fork import BaseFork


class Paris(BaseFork):
    """Paris fork, the first fork driven through the Engine API."""

    @classmethod
    def header_withdrawals_required(cls) -> bool:
        """At Paris, payloads do not carry withdrawals."""
        return False

    @classmethod
    def header_excess_blob_gas_required(cls) -> bool:
        """At Paris, payloads do not carry excess blob gas."""
        return False

    @classmethod
    def header_blob_gas_used_required(cls) -> bool:
        """At Paris, payloads do not carry blob gas used."""
        return False

    @classmethod
    def header_beacon_root_required(cls) -> bool:
        """At Paris, headers do not carry a parent beacon block root."""
        return False

    @classmethod
    def supports_blobs(cls) -> bool:
        """At Paris, blob transactions are not supported."""
        return False

    @classmethod
    def engine_new_payload_version(cls) -> int:
        """From Paris, payloads can be sent through the engine API."""
        return 1

    @classmethod
    def engine_new_payload_blob_hashes(cls) -> bool:
        """At Paris, payloads do not have blob hashes."""
        return False

    @classmethod
    def engine_new_payload_beacon_root(cls) -> bool:
        """At Paris, payloads do not have a parent beacon block root."""
        return False

    @classmethod
    def engine_forkchoice_updated_version(cls) -> int:
        """Forkchoice updates share the version of new payload calls."""
        return cls.engine_new_payload_version()

    @classmethod
    def engine_get_payload_version(cls) -> int:
        """Payload retrieval shares the version of new payload calls."""
        return cls.engine_new_payload_version()


class Shanghai(Paris, hive_timestamp_variable="HIVE_SHANGHAI_TIMESTAMP"):
    """Shanghai fork."""

    @classmethod
    def header_withdrawals_required(cls) -> bool:
        """Withdrawals are required starting from Shanghai."""
        return True

    @classmethod
    def engine_new_payload_version(cls) -> int:
        """From Shanghai, new payload calls must use version 2."""
        return 2


class Cancun(Shanghai, hive_timestamp_variable="HIVE_CANCUN_TIMESTAMP"):
    """Cancun fork."""

    @classmethod
    def header_excess_blob_gas_required(cls) -> bool:
        """Excess blob gas is required starting from Cancun."""
        return True

    @classmethod
    def header_blob_gas_used_required(cls) -> bool:
        """Blob gas used is required starting from Cancun."""
        return True

    @classmethod
    def header_beacon_root_required(cls) -> bool:
        """Parent beacon block root is required starting from Cancun."""
        return True

    @classmethod
    def supports_blobs(cls) -> bool:
        """At Cancun, blob transactions are supported."""
        return True

    @classmethod
    def engine_new_payload_version(cls) -> int:
        """From Cancun, new payload calls must use version 3."""
        return 3

    @classmethod
    def engine_new_payload_blob_hashes(cls) -> bool:
        """From Cancun, payloads must have blob hashes."""
        return True

    @classmethod
    def engine_new_payload_beacon_root(cls) -> bool:
        """From Cancun, payloads must have a parent beacon block root."""
        return True
