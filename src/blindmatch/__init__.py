"""
blindmatch: encrypted exact-match word search.

Corpus words are reduced to Argon2d digests, packed into BFV batches and
encrypted. A query digest is replicated across a batch, encrypted, and an
untrusted evaluator subtracts it from every corpus batch. A zero slot in a
decrypted difference means the word is present.

The evaluator NEVER sees a word, a digest or key material.
"""

__version__ = "0.1.0"
