"""
Untrusted-side evaluation of compute bundles.

The evaluator receives nothing but bytes: BFV context parameters and two
ciphertexts. It computes batch - query homomorphically and returns the
encrypted difference. It never holds key material, so it learns neither
the query, the corpus digests, nor which slots are zero.
"""
import hashlib
import threading
from collections import OrderedDict

from Pyfhel import Pyfhel, PyCtxt

from blindmatch.shared.errors import CryptoFailure, ProtocolError
from blindmatch.shared.params import CompressionMode
from blindmatch.shared.protocol import (
    BUNDLE_MAGIC,
    BUNDLE_SECTIONS,
    RESULT_MAGIC,
    pack_sections,
    unpack_sections,
)


class RemoteEvaluator:
    """
    Computes encrypted differences without any knowledge of plaintexts.

    Contexts rebuilt from parameter bytes are cached, so repeated bundles
    from the same client skip context generation. The cache only holds
    public parameters and keeps at most `max_contexts` entries, evicting
    the least recently used one.
    """

    DEFAULT_MAX_CONTEXTS = 4

    def __init__(
        self,
        compression: CompressionMode = CompressionMode.ZSTD,
        max_contexts: int = DEFAULT_MAX_CONTEXTS,
    ):
        """
        Initialize evaluator.

        Args:
            compression: Compression used when serializing results
            max_contexts: Number of parameter sets kept in the context cache
        """
        if max_contexts < 1:
            raise ValueError(f"max_contexts must be at least 1, got {max_contexts}")
        self.compression = compression
        self.max_contexts = max_contexts
        self.evaluations = 0
        self._contexts: "OrderedDict[bytes, Pyfhel]" = OrderedDict()
        self._lock = threading.Lock()

    def _context_for(self, parameters: bytes) -> Pyfhel:
        key = hashlib.sha256(parameters).digest()
        with self._lock:
            he = self._contexts.get(key)
            if he is not None:
                self._contexts.move_to_end(key)
                return he

        he = Pyfhel()
        try:
            he.from_bytes_context(parameters)
        except (ValueError, RuntimeError, TypeError) as e:
            raise ProtocolError(f"Could not load encryption parameters: {e}") from e

        with self._lock:
            he = self._contexts.setdefault(key, he)
            self._contexts.move_to_end(key)
            while len(self._contexts) > self.max_contexts:
                self._contexts.popitem(last=False)
            return he

    @staticmethod
    def _load_ciphertext(he: Pyfhel, data: bytes, name: str) -> PyCtxt:
        try:
            return PyCtxt(pyfhel=he, bytestring=data)
        except (ValueError, RuntimeError, TypeError) as e:
            raise ProtocolError(f"Could not load {name} ciphertext: {e}") from e

    def evaluate(self, bundle: bytes) -> bytes:
        """
        Evaluate one compute bundle.

        Args:
            bundle: Framed (parameters, query, batch) buffer

        Returns:
            Framed buffer holding the batch - query ciphertext
        """
        parameters, query_bytes, batch_bytes = unpack_sections(
            bundle, BUNDLE_MAGIC, BUNDLE_SECTIONS
        )

        he = self._context_for(parameters)
        encrypted_query = self._load_ciphertext(he, query_bytes, "query")
        encrypted_batch = self._load_ciphertext(he, batch_bytes, "batch")

        try:
            difference = he.sub(encrypted_batch, encrypted_query, in_new_ctxt=True)
            payload = difference.to_bytes(compr_mode=self.compression.value)
        except (ValueError, RuntimeError) as e:
            raise CryptoFailure(f"Homomorphic subtraction failed: {e}") from e

        with self._lock:
            self.evaluations += 1

        return pack_sections(RESULT_MAGIC, [payload])

    def __call__(self, bundle: bytes) -> bytes:
        return self.evaluate(bundle)

    @property
    def cached_contexts(self) -> int:
        return len(self._contexts)
