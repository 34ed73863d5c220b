"""
Client-side BFV operations using Pyfhel.

The CiphertextStore is the only object that ever holds the secret key.
Everything that leaves it towards the evaluator is ciphertext or the
public context parameters.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np
from Pyfhel import Pyfhel, PyCtxt

from blindmatch.shared.errors import (
    CryptoFailure,
    EmptyCorpusError,
    NotInitializedError,
    ProtocolError,
)
from blindmatch.shared.params import PADDING_SENTINEL, SchemeParams


@dataclass(frozen=True)
class KeyPair:
    """Serialized BFV key material."""
    public_key: bytes
    secret_key: Optional[bytes] = None

    @property
    def has_secret_key(self) -> bool:
        return self.secret_key is not None

    def public_only(self) -> "KeyPair":
        """Copy without the secret key, safe to hand to an encrypt-only party."""
        return KeyPair(public_key=self.public_key)


class CiphertextStore:
    """
    Owns the key pair and the encrypted corpus batches.

    Responsible for:
    - Generating or importing BFV keys
    - Encrypting corpus batches and query vectors
    - Decrypting and decoding difference ciphertexts
    - Loading ciphertext bytes returned by the evaluator
    """

    def __init__(
        self,
        params: Optional[SchemeParams] = None,
        keys: Optional[KeyPair] = None,
        generate_keys: bool = True,
    ):
        """
        Initialize the store.

        Args:
            params: BFV parameters
            keys: Existing key pair to import instead of generating one
            generate_keys: Generate a fresh key pair when none is given
        """
        self.params = params or SchemeParams()
        self._he = self._new_context()
        self._keys: Optional[KeyPair] = None
        self._encrypted: List[PyCtxt] = []

        if keys is not None:
            self.load_keys(keys)
        elif generate_keys:
            self.rotate_keys()

    def _new_context(self) -> Pyfhel:
        he = Pyfhel()
        try:
            he.contextGen(
                scheme=self.params.scheme,
                n=self.params.poly_modulus_degree,
                t_bits=self.params.plain_modulus_bits,
                sec=self.params.security_level,
            )
        except (ValueError, RuntimeError) as e:
            raise CryptoFailure(f"Invalid BFV parameters {self.params}: {e}") from e

        if he.t <= PADDING_SENTINEL:
            raise CryptoFailure(
                f"Plain modulus {he.t} cannot hold the padding sentinel {PADDING_SENTINEL}"
            )
        return he

    @property
    def slot_count(self) -> int:
        return self.params.slot_count

    @property
    def plain_modulus(self) -> int:
        return int(self._he.t)

    @property
    def has_public_key(self) -> bool:
        return self._keys is not None

    @property
    def has_secret_key(self) -> bool:
        return self._keys is not None and self._keys.has_secret_key

    @property
    def key_pair(self) -> KeyPair:
        if self._keys is None:
            raise NotInitializedError("No keys have been generated or loaded")
        return self._keys

    @property
    def encrypted_batches(self) -> List[PyCtxt]:
        return list(self._encrypted)

    def __len__(self) -> int:
        return len(self._encrypted)

    def clear(self) -> None:
        """Drop stored ciphertexts, e.g. after the corpus changed."""
        self._encrypted = []

    def rotate_keys(self) -> KeyPair:
        """
        Generate a new key pair.

        Any previously encrypted batches become undecryptable and are dropped.
        """
        try:
            self._he.keyGen()
        except (ValueError, RuntimeError) as e:
            raise CryptoFailure(f"Key generation failed: {e}") from e

        self._keys = KeyPair(
            public_key=self._he.to_bytes_public_key(),
            secret_key=self._he.to_bytes_secret_key(),
        )
        self._encrypted = []
        return self._keys

    def load_keys(self, keys: KeyPair) -> None:
        """Import a key pair; a public-only pair gives an encrypt-only store."""
        self._he = self._new_context()
        try:
            self._he.from_bytes_public_key(keys.public_key)
            if keys.secret_key is not None:
                self._he.from_bytes_secret_key(keys.secret_key)
        except (ValueError, RuntimeError) as e:
            raise CryptoFailure(f"Could not load key material: {e}") from e

        self._keys = keys
        self._encrypted = []

    def get_context(self) -> Pyfhel:
        """
        Get the underlying Pyfhel object.

        Callers must only serialize its context, never its keys.
        """
        return self._he

    def encrypt_vector(self, values: Union[Sequence[int], np.ndarray]) -> PyCtxt:
        """
        Batch-encode and encrypt one slot vector.

        Args:
            values: Exactly slot_count integers in [0, plain_modulus)

        Returns:
            Ciphertext of the vector
        """
        if not self.has_public_key:
            raise NotInitializedError("Cannot encrypt before keys exist")

        arr = np.asarray(values)
        if arr.shape != (self.slot_count,):
            raise ValueError(
                f"Expected a vector of {self.slot_count} slots, got shape {arr.shape}"
            )
        arr = arr.astype(np.int64)
        if arr.min() < 0 or arr.max() >= self.plain_modulus:
            raise ValueError(f"Slot values must lie in [0, {self.plain_modulus})")

        try:
            ptxt = self._he.encodeInt(arr)
            return self._he.encryptPtxt(ptxt)
        except (ValueError, RuntimeError) as e:
            raise CryptoFailure(f"Encryption failed: {e}") from e

    def encrypt_all(self, batches: Union[Sequence[Sequence[int]], np.ndarray]) -> List[PyCtxt]:
        """
        Encrypt every corpus batch, replacing previously stored ciphertexts.

        Args:
            batches: Rows of slot_count digests

        Returns:
            One ciphertext per batch, same order
        """
        if not self.has_public_key:
            raise NotInitializedError("Cannot encrypt before keys exist")
        if len(batches) == 0:
            raise EmptyCorpusError("No batches to encrypt; load or hash a corpus first")

        self._encrypted = [self.encrypt_vector(batch) for batch in batches]
        return self.encrypted_batches

    def decrypt(self, ciphertext: PyCtxt) -> np.ndarray:
        """
        Decrypt and decode a ciphertext.

        Args:
            ciphertext: Corpus batch or difference ciphertext

        Returns:
            uint64 slot values reduced into [0, plain_modulus)
        """
        if not self.has_secret_key:
            raise NotInitializedError("Cannot decrypt without the secret key")

        try:
            ptxt = self._he.decryptPtxt(ciphertext)
            values = self._he.decodeInt(ptxt)
        except (ValueError, RuntimeError, TypeError) as e:
            raise CryptoFailure(f"Decryption failed: {e}") from e

        # Decoding is centered around zero; bring slots back to [0, t)
        return np.mod(np.asarray(values, dtype=np.int64), self.plain_modulus).astype(np.uint64)

    def load_ciphertext(self, data: bytes) -> PyCtxt:
        """Deserialize ciphertext bytes produced under this store's context."""
        try:
            return PyCtxt(pyfhel=self._he, bytestring=data)
        except (ValueError, RuntimeError, TypeError) as e:
            raise ProtocolError(f"Could not load ciphertext ({len(data)} bytes): {e}") from e
