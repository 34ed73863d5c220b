"""Shared utilities, formats and protocol definitions."""
from blindmatch.shared.batching import SlotBatcher
from blindmatch.shared.errors import (
    BlindMatchError,
    InputMissingError,
    CorpusFileNotFoundError,
    CorruptDataError,
    NotReadyError,
    NotInitializedError,
    EmptyCorpusError,
    ProtocolError,
    CryptoFailure,
    DigestError,
)
from blindmatch.shared.params import (
    CompressionMode,
    DigestParams,
    SchemeParams,
    PADDING_SENTINEL,
    DEFAULT_HASHED_CORPUS_PATH,
)
from blindmatch.shared.protocol import SearchResult, SearchState
from blindmatch.shared.storage import HashedCorpusStore
from blindmatch.shared.utils import Timer, load_word_list

__all__ = [
    "SlotBatcher",
    "BlindMatchError",
    "InputMissingError",
    "CorpusFileNotFoundError",
    "CorruptDataError",
    "NotReadyError",
    "NotInitializedError",
    "EmptyCorpusError",
    "ProtocolError",
    "CryptoFailure",
    "DigestError",
    "CompressionMode",
    "DigestParams",
    "SchemeParams",
    "PADDING_SENTINEL",
    "DEFAULT_HASHED_CORPUS_PATH",
    "SearchResult",
    "SearchState",
    "HashedCorpusStore",
    "Timer",
    "load_word_list",
]
