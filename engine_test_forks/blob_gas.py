"""
EIP-4844 blob gas market parameters.

The values are per-scenario configuration: every scenario context gets its own
`BlobGasParameters` instance, so tests can vary the target or the maximum without touching
any global state.
"""

from pydantic import BaseModel, ConfigDict

from .helpers import fake_exponential


class BlobGasParameters(BaseModel):
    """Blob gas market parameters and the formulas that use them."""

    model_config = ConfigDict(frozen=True)

    gas_per_blob: int = 2**17
    target_blobs_per_block: int = 3
    max_blobs_per_block: int = 6
    update_fraction: int = 3338477
    min_base_fee_per_blob_gas: int = 1
    versioned_hash_version: int = 0x01

    @property
    def target_blob_gas_per_block(self) -> int:
        """Blob gas targeted by every block."""
        return self.target_blobs_per_block * self.gas_per_blob

    @property
    def max_blob_gas_per_block(self) -> int:
        """Maximum blob gas a single block can use."""
        return self.max_blobs_per_block * self.gas_per_blob

    def blob_gas_price(self, excess_blob_gas: int) -> int:
        """Return the price per unit of blob gas for a block with the given excess."""
        return fake_exponential(
            self.min_base_fee_per_blob_gas,
            excess_blob_gas,
            self.update_fraction,
        )

    def next_excess_blob_gas(self, parent_excess_blob_gas: int, parent_blob_gas_used: int) -> int:
        """Return the excess blob gas of the child of a block."""
        total = parent_excess_blob_gas + parent_blob_gas_used
        if total < self.target_blob_gas_per_block:
            return 0
        return total - self.target_blob_gas_per_block

    def blob_gas_used(self, blob_count: int) -> int:
        """Return the blob gas consumed by the given number of blobs."""
        return blob_count * self.gas_per_blob

    def min_excess_blob_gas_for_price(self, blob_gas_price: int) -> int:
        """Get the minimum excess blob gas that produces at least the given price."""
        excess_blob_gas = 0
        current_price = self.blob_gas_price(excess_blob_gas)
        while current_price < blob_gas_price:
            excess_blob_gas += self.gas_per_blob
            current_price = self.blob_gas_price(excess_blob_gas)
        return excess_blob_gas

    def min_excess_blobs_for_price(self, blob_gas_price: int) -> int:
        """Get the minimum excess, in blobs, that produces at least the given price."""
        return self.min_excess_blob_gas_for_price(blob_gas_price) // self.gas_per_blob
