"""
Protocol definitions for client-evaluator communication.

A compute bundle is a self-contained byte buffer:

    magic "BMB1"
    for each section (parameters, query, batch):
        uint32 little-endian length
        section bytes

The evaluator answers with a result buffer of the same shape, magic "BMR1"
and a single section holding the difference ciphertext.
"""
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from blindmatch.shared.errors import ProtocolError


BUNDLE_MAGIC = b"BMB1"
RESULT_MAGIC = b"BMR1"
BUNDLE_SECTIONS = 3
RESULT_SECTIONS = 1

_LENGTH = struct.Struct("<I")


class SearchState(Enum):
    """Lifecycle of a SearchEngine."""
    IDLE = "idle"
    CORPUS_READY = "corpus_ready"
    BATCHES_ENCRYPTED = "batches_encrypted"
    SEARCHING = "searching"
    MATCH_FOUND = "match_found"
    NO_MATCH = "no_match"


@dataclass
class SearchResult:
    """Result of an encrypted word search."""
    matched: bool
    batch_index: Optional[int] = None
    slot_index: Optional[int] = None
    corpus_index: Optional[int] = None
    word: Optional[str] = None
    batches_evaluated: int = 0
    timing: dict = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.matched

    def __str__(self) -> str:
        if not self.matched:
            return f"No match ({self.batches_evaluated} batches searched)"
        location = f"batch {self.batch_index}, slot {self.slot_index}"
        if self.word is not None:
            location += f", word {self.word!r}"
        return f"Match found at {location}"


def pack_sections(magic: bytes, sections: Sequence[bytes]) -> bytes:
    """
    Frame byte sections into one buffer.

    Args:
        magic: 4-byte buffer type marker
        sections: Serialized sections, in protocol order

    Returns:
        Framed buffer
    """
    parts = [magic]
    for section in sections:
        parts.append(_LENGTH.pack(len(section)))
        parts.append(bytes(section))
    return b"".join(parts)


def unpack_sections(buffer: bytes, magic: bytes, count: int) -> List[bytes]:
    """
    Split a framed buffer back into its sections.

    Raises:
        ProtocolError: wrong marker, truncated section or trailing bytes
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        raise ProtocolError(f"Expected a byte buffer, got {type(buffer).__name__}")

    view = memoryview(buffer)
    if bytes(view[:len(magic)]) != magic:
        raise ProtocolError(f"Bad buffer marker, expected {magic!r}")

    offset = len(magic)
    sections = []
    for i in range(count):
        if offset + _LENGTH.size > len(view):
            raise ProtocolError(f"Buffer truncated before section {i} header")
        (length,) = _LENGTH.unpack_from(view, offset)
        offset += _LENGTH.size
        if length == 0 or offset + length > len(view):
            raise ProtocolError(
                f"Section {i} declares {length} bytes, {len(view) - offset} available"
            )
        sections.append(bytes(view[offset:offset + length]))
        offset += length

    if offset != len(view):
        raise ProtocolError(f"{len(view) - offset} trailing bytes after last section")

    return sections
