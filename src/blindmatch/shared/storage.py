"""
On-disk format for hashed corpora.

Hashing is the slow part of setup, so digests are written once and reloaded
on later runs. Layout (little-endian):

    int32   count
    uint64  digest[count]
"""
import os
import struct
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from blindmatch.shared.errors import CorpusFileNotFoundError, CorruptDataError
from blindmatch.shared.params import DEFAULT_HASHED_CORPUS_PATH


_HEADER = struct.Struct("<i")
_DIGEST_DTYPE = np.dtype("<u8")


class HashedCorpusStore:
    """Persists and reloads the digest sequence of a corpus."""

    def __init__(self, path: Union[str, Path] = DEFAULT_HASHED_CORPUS_PATH):
        self.path = Path(path)

    def persist(
        self,
        digests: Union[Sequence[int], np.ndarray],
        path: Optional[Union[str, Path]] = None,
    ) -> Path:
        """
        Write digests to disk, replacing any existing file.

        Args:
            digests: Digest sequence (values must fit in uint64)
            path: Target file (defaults to the store's path)

        Returns:
            Path that was written
        """
        target = Path(path) if path is not None else self.path
        values = np.asarray(digests, dtype=_DIGEST_DTYPE)
        if values.ndim != 1:
            raise ValueError(f"Expected a 1-D digest sequence, got shape {values.shape}")

        # Never append to an old corpus
        if target.exists():
            os.remove(target)

        with open(target, "xb") as f:
            f.write(_HEADER.pack(len(values)))
            f.write(values.tobytes())

        return target

    def load(self, path: Optional[Union[str, Path]] = None) -> np.ndarray:
        """
        Read digests written by persist().

        Args:
            path: Source file (defaults to the store's path)

        Returns:
            uint64 array of digests
        """
        source = Path(path) if path is not None else self.path
        if not source.is_file():
            raise CorpusFileNotFoundError(f"Hashed corpus file does not exist: {source}")

        data = source.read_bytes()
        if len(data) < _HEADER.size:
            raise CorruptDataError(
                f"{source}: file is {len(data)} bytes, too short for the count header"
            )

        (count,) = _HEADER.unpack_from(data)
        payload = data[_HEADER.size:]
        if count < 0 or len(payload) != count * _DIGEST_DTYPE.itemsize:
            raise CorruptDataError(
                f"{source}: header declares {count} digests but "
                f"{len(payload)} payload bytes follow"
            )

        return np.frombuffer(payload, dtype=_DIGEST_DTYPE).astype(np.uint64)

    def exists(self, path: Optional[Union[str, Path]] = None) -> bool:
        return (Path(path) if path is not None else self.path).is_file()
