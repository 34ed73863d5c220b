"""
Configuration for hashing and encryption.

Both parameter sets are frozen: a corpus hashed under one DigestParams can
only be searched with the same DigestParams, and ciphertexts are only valid
under the SchemeParams that produced them.
"""
import struct
from dataclasses import dataclass
from enum import Enum


DIGEST_BITS = 32

# First value outside the 32-bit digest range. Requires plain modulus > 2**32.
PADDING_SENTINEL = 1 << DIGEST_BITS

DEFAULT_HASHED_CORPUS_PATH = "HashedInputData.bin"


class CompressionMode(Enum):
    """Serialization compression modes supported by the BFV backend."""
    NONE = "none"
    ZLIB = "zlib"
    ZSTD = "zstd"


@dataclass(frozen=True)
class SchemeParams:
    """
    BFV encryption parameters.

    The slot count equals poly_modulus_degree. plain_modulus_bits selects a
    batching-friendly prime with that many bits; 33 bits keeps every 32-bit
    digest and the padding sentinel distinct modulo the plain modulus.
    """
    poly_modulus_degree: int = 4096
    plain_modulus_bits: int = 33
    security_level: int = 128
    compression: CompressionMode = CompressionMode.ZSTD
    scheme: str = "bfv"

    def __post_init__(self):
        if self.poly_modulus_degree <= 0 or self.poly_modulus_degree & (self.poly_modulus_degree - 1):
            raise ValueError(
                f"poly_modulus_degree must be a power of two, got {self.poly_modulus_degree}"
            )
        if self.plain_modulus_bits <= DIGEST_BITS:
            raise ValueError(
                f"plain_modulus_bits must exceed {DIGEST_BITS}, got {self.plain_modulus_bits}"
            )

    @property
    def slot_count(self) -> int:
        return self.poly_modulus_degree


@dataclass(frozen=True)
class DigestParams:
    """
    Argon2d settings used to turn a word into a digest.

    memory_cost is in KiB. The salt is fixed so that the same word always
    maps to the same digest; libargon2 requires at least 8 salt bytes.
    """
    salt: bytes = struct.pack("<q", 12345678)
    parallelism: int = 2
    memory_cost: int = 32
    iterations: int = 1
    digest_size: int = 4
