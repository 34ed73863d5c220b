"""
Packing of digest sequences into fixed-width encryption batches.
"""
import math
from typing import Sequence, Tuple, Union

import numpy as np

from blindmatch.shared.params import PADDING_SENTINEL


class SlotBatcher:
    """
    Splits a digest sequence into rows of `capacity` slots.

    Batch i holds digests [i * capacity, min((i + 1) * capacity, n)). The
    last row is padded with a sentinel that cannot equal any 32-bit digest,
    so padding never produces a zero difference against a query.
    """

    def __init__(self, capacity: int, sentinel: int = PADDING_SENTINEL):
        """
        Initialize batcher.

        Args:
            capacity: Slots per batch (the scheme's slot count)
            sentinel: Padding value for the final batch
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.sentinel = sentinel

    def num_batches(self, length: int) -> int:
        return math.ceil(length / self.capacity)

    def batch(self, digests: Union[Sequence[int], np.ndarray]) -> np.ndarray:
        """
        Pack digests into batches.

        Args:
            digests: Ordered digest sequence

        Returns:
            uint64 array of shape (num_batches, capacity)
        """
        values = np.asarray(digests, dtype=np.uint64)
        n_batches = self.num_batches(len(values))

        batches = np.full(n_batches * self.capacity, self.sentinel, dtype=np.uint64)
        batches[:len(values)] = values
        return batches.reshape(n_batches, self.capacity)

    def replicate(self, value: int) -> np.ndarray:
        """Build a batch-shaped vector with `value` in every slot."""
        return np.full(self.capacity, value, dtype=np.uint64)

    def unbatch(self, batches: np.ndarray, length: int) -> np.ndarray:
        """Recover the first `length` digests from packed batches."""
        flat = np.asarray(batches, dtype=np.uint64).reshape(-1)
        if length > len(flat):
            raise ValueError(f"Cannot recover {length} digests from {len(flat)} slots")
        return flat[:length].copy()

    def locate(self, index: int) -> Tuple[int, int]:
        """Map a corpus index to its (batch, slot) position."""
        return divmod(index, self.capacity)

    def corpus_index(self, batch_index: int, slot_index: int) -> int:
        """Map a (batch, slot) position back to a corpus index."""
        return batch_index * self.capacity + slot_index
