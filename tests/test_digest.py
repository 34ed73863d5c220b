"""Tests for keyed word digests."""
import pytest
import numpy as np

from blindmatch.client.digest import DigestPreprocessor
from blindmatch.shared.errors import DigestError
from blindmatch.shared.params import DigestParams


class TestDigestPreprocessor:
    """Test Argon2d word digests."""

    def test_deterministic(self):
        """Same word, same digest, across calls and instances."""
        first = DigestPreprocessor()
        second = DigestPreprocessor()

        assert first.digest("banana") == first.digest("banana")
        assert first.digest("banana") == second.digest("banana")

    def test_digest_range(self):
        preprocessor = DigestPreprocessor()
        for word in ["a", "banana", "x" * 10_000, "naïve"]:
            value = preprocessor.digest(word)
            assert 0 <= value < 2**32

    def test_distinct_words(self):
        preprocessor = DigestPreprocessor()
        assert preprocessor.digest("apple") != preprocessor.digest("banana")

    def test_digest_many_aligned(self):
        preprocessor = DigestPreprocessor()
        words = ["apple", "banana", "cherry"]

        digests = preprocessor.digest_many(words)

        assert digests.dtype == np.uint64
        assert digests.tolist() == [preprocessor.digest(w) for w in words]

    def test_salt_changes_digest(self):
        default = DigestPreprocessor()
        salted = DigestPreprocessor(DigestParams(salt=b"othersalt"))
        assert default.digest("banana") != salted.digest("banana")

    def test_longer_tag_uses_first_four_bytes(self):
        """Only the leading four bytes of the tag form the digest."""
        preprocessor = DigestPreprocessor(DigestParams(digest_size=16))
        assert 0 <= preprocessor.digest("banana") < 2**32


class TestDigestErrors:
    """Test failures of the digest primitive."""

    def test_digest_size_too_small(self):
        with pytest.raises(DigestError):
            DigestPreprocessor(DigestParams(digest_size=2))

    def test_rejected_cost_parameters(self):
        """Argon2 needs at least 8 KiB per lane."""
        preprocessor = DigestPreprocessor(DigestParams(memory_cost=1))
        with pytest.raises(DigestError):
            preprocessor.digest("banana")
