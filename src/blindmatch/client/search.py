"""
Client-side search orchestration.

Coordinates the full search flow:
1. Hash the corpus once (and persist the digests)
2. Pack digests into batches and encrypt them
3. For a query: hash, replicate across a batch, encrypt
4. Send each (query, batch) pair across the channel
5. Decrypt the returned differences and stop at the first zero slot
"""
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import multiprocessing as mp
import numpy as np
from Pyfhel import PyCtxt

from blindmatch.client.channel import ComputeChannel
from blindmatch.client.crypto import CiphertextStore
from blindmatch.client.digest import DigestPreprocessor
from blindmatch.shared.batching import SlotBatcher
from blindmatch.shared.errors import InputMissingError, NotReadyError
from blindmatch.shared.params import DigestParams, SchemeParams
from blindmatch.shared.protocol import SearchResult, SearchState
from blindmatch.shared.storage import HashedCorpusStore
from blindmatch.shared.utils import Timer, load_word_list


_SEARCHABLE_STATES = (
    SearchState.BATCHES_ENCRYPTED,
    SearchState.MATCH_FOUND,
    SearchState.NO_MATCH,
)


class SearchEngine:
    """
    Encrypted exact-match search over a word corpus.

    State machine:
        IDLE -> CORPUS_READY -> BATCHES_ENCRYPTED -> SEARCHING
             -> MATCH_FOUND | NO_MATCH

    A finished search leaves the engine ready for the next one. Searching
    never modifies the corpus or the stored ciphertexts.
    """

    def __init__(
        self,
        scheme_params: Optional[SchemeParams] = None,
        digest_params: Optional[DigestParams] = None,
        store: Optional[CiphertextStore] = None,
        channel: Optional[ComputeChannel] = None,
        corpus_store: Optional[HashedCorpusStore] = None,
        verbose: bool = False,
    ):
        """
        Initialize search engine.

        Args:
            scheme_params: BFV parameters (ignored when `store` is given)
            digest_params: Argon2d parameters for corpus and queries
            store: Ciphertext store holding the key pair
            channel: Channel to the evaluator (in-process by default)
            corpus_store: Location of the persisted hashed corpus
            verbose: Print progress
        """
        self.crypto = store or CiphertextStore(scheme_params)
        self.preprocessor = DigestPreprocessor(digest_params)
        self.batcher = SlotBatcher(self.crypto.slot_count)
        self.channel = channel or ComputeChannel()
        self.corpus_store = corpus_store or HashedCorpusStore()
        self.verbose = verbose

        self.words: Optional[List[str]] = None
        self.digests: Optional[np.ndarray] = None
        self.state = SearchState.IDLE

    @property
    def num_batches(self) -> int:
        return len(self.crypto)

    def load_words(self, words: Iterable[str]) -> None:
        """Load the plaintext corpus; any previous digests are discarded."""
        self.words = list(words)
        self.digests = None
        self.crypto.clear()
        self.state = SearchState.IDLE

    def load_word_file(self, path: Union[str, Path]) -> None:
        """Load a corpus file with one word per line."""
        self.load_words(load_word_list(path))

    def hash_corpus(
        self,
        path: Optional[Union[str, Path]] = None,
        persist: bool = True,
    ) -> np.ndarray:
        """
        Digest every loaded word.

        Args:
            path: Where to persist the digests (defaults to corpus_store.path)
            persist: Write the digests to disk

        Returns:
            uint64 digests, index-aligned with the word list
        """
        if not self.words:
            raise InputMissingError("Load input words before hashing the corpus")

        if self.verbose:
            print(f"Hashing {len(self.words)} words. This may take a while...")
        with Timer() as t:
            digests = self.preprocessor.digest_many(self.words, verbose=self.verbose)
        if self.verbose:
            print(f"  Hashing took {t.elapsed_ms:.0f}ms")

        if persist:
            written = self.corpus_store.persist(digests, path)
            if self.verbose:
                print(f"  Digests written to {written}")

        self._set_corpus(digests)
        return digests

    def load_hashed_corpus(self, path: Optional[Union[str, Path]] = None) -> np.ndarray:
        """
        Reload digests written by a previous hash_corpus() call.

        A loaded word list is kept only if it produced these digests, so
        results never name a word from an unrelated corpus.
        """
        digests = self.corpus_store.load(path)
        if self.words is not None and not self._words_match(digests):
            if self.verbose:
                print("  Loaded words do not match the hashed corpus; dropping them")
            self.words = None
        self._set_corpus(digests)
        return digests

    def _words_match(self, digests: np.ndarray) -> bool:
        if len(self.words) != len(digests):
            return False
        if len(digests) == 0:
            return True
        # Spot check a few positions instead of rehashing the whole corpus
        for i in {0, len(digests) // 2, len(digests) - 1}:
            if self.preprocessor.digest(self.words[i]) != int(digests[i]):
                return False
        return True

    def _set_corpus(self, digests: np.ndarray) -> None:
        self.digests = digests
        self.crypto.clear()
        self.state = SearchState.CORPUS_READY

    def setup_ciphers(self) -> int:
        """
        Batch and encrypt the corpus digests.

        Returns:
            Number of encrypted batches
        """
        if self.digests is None:
            raise NotReadyError("Hash or load a corpus before creating ciphertexts")

        batches = self.batcher.batch(self.digests)
        with Timer() as t:
            self.crypto.encrypt_all(batches)
        if self.verbose:
            print(f"Encrypted {len(batches)} batches in {t.elapsed_ms:.0f}ms")

        self.state = SearchState.BATCHES_ENCRYPTED
        return len(batches)

    def _first_zero_slot(self, encrypted_query: PyCtxt, encrypted_batch: PyCtxt) -> Optional[int]:
        difference = self.channel.round_trip(self.crypto, encrypted_query, encrypted_batch)
        values = self.crypto.decrypt(difference)
        zeros = np.flatnonzero(values == 0)
        return int(zeros[0]) if len(zeros) else None

    def _scan_sequential(
        self,
        encrypted_query: PyCtxt,
        batches: List[PyCtxt],
    ) -> Tuple[Optional[Tuple[int, int]], int]:
        for i, encrypted_batch in enumerate(batches):
            if self.verbose:
                print(f"  Evaluating batch {i+1}/{len(batches)}...")
            slot = self._first_zero_slot(encrypted_query, encrypted_batch)
            if slot is not None:
                return (i, slot), i + 1
        return None, len(batches)

    def _scan_parallel(
        self,
        encrypted_query: PyCtxt,
        batches: List[PyCtxt],
        num_workers: Optional[int],
    ) -> Tuple[Optional[Tuple[int, int]], int]:
        if num_workers is None:
            num_workers = min(mp.cpu_count(), len(batches))

        hit = None
        with ThreadPoolExecutor(max_workers=num_workers) as executor:
            futures = [
                executor.submit(self._first_zero_slot, encrypted_query, b)
                for b in batches
            ]
            try:
                # Collect in index order so the lowest matching batch wins
                for i, future in enumerate(futures):
                    slot = future.result()
                    if slot is not None:
                        hit = (i, slot)
                        break
            finally:
                for future in futures:
                    future.cancel()

        evaluated = sum(1 for f in futures if not f.cancelled())
        return hit, evaluated

    def search_detailed(
        self,
        word: str,
        parallel: bool = False,
        num_workers: Optional[int] = None,
    ) -> SearchResult:
        """
        Search the encrypted corpus for a word.

        Args:
            word: Query word
            parallel: Evaluate batches on a thread pool
            num_workers: Pool size (defaults to CPU count)

        Returns:
            SearchResult with the match location and timing
        """
        if self.state not in _SEARCHABLE_STATES or self.num_batches == 0:
            raise NotReadyError("The ciphertexts must be created before searching them")

        self.state = SearchState.SEARCHING
        timing = {}
        try:
            with Timer() as t:
                query_digest = self.preprocessor.digest(word)
            timing["digest_ms"] = t.elapsed_ms

            with Timer() as t:
                encrypted_query = self.crypto.encrypt_vector(self.batcher.replicate(query_digest))
            timing["encrypt_ms"] = t.elapsed_ms

            batches = self.crypto.encrypted_batches
            with Timer() as t:
                if parallel and len(batches) > 1:
                    hit, evaluated = self._scan_parallel(encrypted_query, batches, num_workers)
                else:
                    hit, evaluated = self._scan_sequential(encrypted_query, batches)
            timing["search_ms"] = t.elapsed_ms
        finally:
            if self.state is SearchState.SEARCHING:
                self.state = SearchState.BATCHES_ENCRYPTED

        timing["total_ms"] = timing["digest_ms"] + timing["encrypt_ms"] + timing["search_ms"]

        if hit is None:
            self.state = SearchState.NO_MATCH
            result = SearchResult(matched=False, batches_evaluated=evaluated, timing=timing)
        else:
            self.state = SearchState.MATCH_FOUND
            batch_index, slot_index = hit
            corpus_index = self.batcher.corpus_index(batch_index, slot_index)
            result = SearchResult(
                matched=True,
                batch_index=batch_index,
                slot_index=slot_index,
                corpus_index=corpus_index,
                word=self.words[corpus_index] if self.words is not None else None,
                batches_evaluated=evaluated,
                timing=timing,
            )

        if self.verbose:
            print(f"{word!r}: {result} in {timing['total_ms']:.0f}ms")

        return result

    def search(self, word: str) -> bool:
        """Return True if the word occurs in the encrypted corpus."""
        return self.search_detailed(word).matched

    def search_many(self, words: Iterable[str], parallel: bool = False) -> List[SearchResult]:
        """Run one independent search per query word."""
        return [self.search_detailed(w, parallel=parallel) for w in words]

    def plaintext_lookup(self, word: str) -> Optional[int]:
        """
        Find a word's corpus index by comparing digests in the clear.

        For testing/validation only - it bypasses encryption entirely.
        """
        if self.digests is None:
            raise NotReadyError("Hash or load a corpus first")
        matches = np.flatnonzero(self.digests == self.preprocessor.digest(word))
        return int(matches[0]) if len(matches) else None

    def verify_result(self, word: str, result: SearchResult) -> bool:
        """
        Check an encrypted search result against a plaintext digest lookup.

        For testing/validation only - it needs the corpus digests in the clear.
        """
        index = self.plaintext_lookup(word)
        if index is None:
            return not result.matched
        return result.matched and self.batcher.locate(index) == (
            result.batch_index,
            result.slot_index,
        )
