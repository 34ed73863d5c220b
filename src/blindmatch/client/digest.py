"""
Word digests using keyed Argon2d.

Each word maps to a 32-bit unsigned integer taken from the first four bytes
(little-endian) of an Argon2d tag computed with a fixed salt. Distinct words
can collide; with 32-bit digests the birthday bound is reached around 2**16
words, which is accepted as a false-positive rate for exact-match search.
"""
from typing import Iterable, Optional

import numpy as np
from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw

from blindmatch.shared.errors import DigestError
from blindmatch.shared.params import DigestParams


class DigestPreprocessor:
    """
    Turns corpus and query words into fixed-width digests.

    The same DigestParams must be used for the corpus and for every query,
    otherwise nothing can ever match.
    """

    def __init__(self, params: Optional[DigestParams] = None):
        self.params = params or DigestParams()
        if self.params.digest_size < 4:
            raise DigestError(
                f"digest_size must be at least 4 bytes, got {self.params.digest_size}"
            )

    def digest(self, word: str) -> int:
        """
        Digest a single word.

        Args:
            word: Word to hash (encoded as UTF-8)

        Returns:
            Unsigned 32-bit digest
        """
        try:
            tag = hash_secret_raw(
                secret=word.encode("utf-8"),
                salt=self.params.salt,
                time_cost=self.params.iterations,
                memory_cost=self.params.memory_cost,
                parallelism=self.params.parallelism,
                hash_len=self.params.digest_size,
                type=Type.D,
            )
        except HashingError as e:
            raise DigestError(f"Argon2d rejected digest parameters: {e}") from e

        return int.from_bytes(tag[:4], "little")

    def digest_many(self, words: Iterable[str], verbose: bool = False) -> np.ndarray:
        """
        Digest a word list in order.

        Args:
            words: Words to hash
            verbose: Print progress

        Returns:
            uint64 array index-aligned with the input
        """
        words = list(words)
        digests = np.empty(len(words), dtype=np.uint64)

        for i, word in enumerate(words):
            digests[i] = self.digest(word)

            if verbose and (i + 1) % 1000 == 0:
                print(f"  Hashed {i+1}/{len(words)} words...")

        return digests
