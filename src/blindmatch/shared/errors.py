"""
Error types raised by blindmatch.

Every error is fatal for the call that raised it. Nothing in the package
retries: hashing, encryption and evaluation are deterministic, so a retry
would only reproduce the failure.
"""


class BlindMatchError(Exception):
    """Base class for all blindmatch errors."""


class InputMissingError(BlindMatchError):
    """No words were loaded before hashing was requested."""


class CorpusFileNotFoundError(BlindMatchError, FileNotFoundError):
    """The persisted hashed corpus file does not exist."""


class CorruptDataError(BlindMatchError):
    """The persisted hashed corpus file does not match its header."""


class NotReadyError(BlindMatchError):
    """An engine operation was invoked out of order."""


class NotInitializedError(BlindMatchError):
    """Key material required by the operation is not available."""


class EmptyCorpusError(BlindMatchError):
    """Encryption was requested for zero batches."""


class ProtocolError(BlindMatchError):
    """A compute bundle or result buffer is malformed or truncated."""


class CryptoFailure(BlindMatchError):
    """The homomorphic encryption backend reported a failure."""


class DigestError(BlindMatchError):
    """The keyed digest primitive failed (bad parameters or backend error)."""
