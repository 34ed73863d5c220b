"""Client-side components for encrypted word search."""
from blindmatch.client.channel import ComputeChannel, HttpTransport, InProcessTransport
from blindmatch.client.crypto import CiphertextStore, KeyPair
from blindmatch.client.digest import DigestPreprocessor
from blindmatch.client.search import SearchEngine

__all__ = [
    "ComputeChannel",
    "HttpTransport",
    "InProcessTransport",
    "CiphertextStore",
    "KeyPair",
    "DigestPreprocessor",
    "SearchEngine",
]
