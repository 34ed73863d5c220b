"""End-to-end tests for the search engine."""
import pytest
import numpy as np

from blindmatch.client.channel import ComputeChannel, InProcessTransport
from blindmatch.client.search import SearchEngine
from blindmatch.server.compute import RemoteEvaluator
from blindmatch.shared.errors import (
    CorpusFileNotFoundError,
    EmptyCorpusError,
    InputMissingError,
    NotReadyError,
    ProtocolError,
)
from blindmatch.shared.protocol import SearchState
from blindmatch.shared.storage import HashedCorpusStore


SLOTS = 4096


def make_engine(tmp_path, transport=None, verbose=False):
    channel = ComputeChannel(transport or InProcessTransport())
    corpus_store = HashedCorpusStore(tmp_path / "HashedInputData.bin")
    return SearchEngine(channel=channel, corpus_store=corpus_store, verbose=verbose)


def synthetic_corpus(engine, tmp_path, size, needles):
    """
    Persist random digests with given words planted at given indices.

    Args:
        needles: Mapping of word -> list of corpus indices

    Returns:
        Path of the hashed corpus file
    """
    rng = np.random.default_rng(7)
    digests = rng.integers(0, 2**32, size=size, dtype=np.uint64)

    planted = {word: engine.preprocessor.digest(word) for word in needles}
    for value in planted.values():
        digests[digests == value] = (value + 1) % 2**32
    for word, indices in needles.items():
        for index in indices:
            digests[index] = planted[word]

    path = tmp_path / "synthetic.bin"
    HashedCorpusStore(path).persist(digests)
    return path


class TestFruitCorpus:
    """Small corpus that fits into a single padded batch."""

    def test_match_and_no_match(self, tmp_path):
        engine = make_engine(tmp_path)
        engine.load_words(["apple", "banana", "cherry"])
        engine.hash_corpus()

        assert engine.setup_ciphers() == 1

        assert engine.search("banana") is True
        assert engine.state == SearchState.MATCH_FOUND

        assert engine.plaintext_lookup("durian") is None
        assert engine.search("durian") is False
        assert engine.state == SearchState.NO_MATCH

    def test_match_location(self, tmp_path):
        engine = make_engine(tmp_path)
        engine.load_words(["apple", "banana", "cherry"])
        engine.hash_corpus()
        engine.setup_ciphers()

        result = engine.search_detailed("cherry")

        assert result
        assert (result.batch_index, result.slot_index) == (0, 2)
        assert result.corpus_index == 2
        assert result.word == "cherry"
        assert result.batches_evaluated == 1
        for key in ("digest_ms", "encrypt_ms", "search_ms", "total_ms"):
            assert key in result.timing

    def test_hash_persists_digests(self, tmp_path):
        engine = make_engine(tmp_path)
        engine.load_words(["apple", "banana", "cherry"])
        digests = engine.hash_corpus()

        reloaded = HashedCorpusStore(tmp_path / "HashedInputData.bin").load()
        assert np.array_equal(reloaded, digests)

    def test_reload_persisted_corpus(self, tmp_path):
        """A second engine searches the corpus without rehashing."""
        first = make_engine(tmp_path)
        first.load_words(["apple", "banana", "cherry"])
        first.hash_corpus()

        second = make_engine(tmp_path)
        second.load_hashed_corpus()
        second.setup_ciphers()

        result = second.search_detailed("banana")
        assert result.matched
        assert result.corpus_index == 1
        assert result.word is None

    def test_word_file(self, tmp_path):
        words_path = tmp_path / "words.txt"
        words_path.write_text("apple\nbanana\n\ncherry\n", encoding="utf-8")

        engine = make_engine(tmp_path)
        engine.load_word_file(words_path)
        engine.hash_corpus(persist=False)
        engine.setup_ciphers()

        assert engine.words == ["apple", "banana", "cherry"]
        assert engine.search("cherry")
        assert not (tmp_path / "HashedInputData.bin").exists()


class TestEarlyExit:
    """Batches after the first match are never evaluated."""

    def test_stops_after_matching_batch(self, tmp_path):
        transport = InProcessTransport(RemoteEvaluator())
        engine = make_engine(tmp_path, transport)
        path = synthetic_corpus(
            engine, tmp_path, size=2 * SLOTS + 10, needles={"needle": [SLOTS + 17]}
        )
        engine.load_hashed_corpus(path)
        assert engine.setup_ciphers() == 3

        result = engine.search_detailed("needle")

        assert result.matched
        assert (result.batch_index, result.slot_index) == (1, 17)
        assert result.corpus_index == SLOTS + 17
        assert result.batches_evaluated == 2
        assert transport.calls == 2
        assert transport.evaluator.evaluations == 2

    def test_match_in_first_batch(self, tmp_path):
        transport = InProcessTransport()
        engine = make_engine(tmp_path, transport)
        path = synthetic_corpus(engine, tmp_path, size=2 * SLOTS + 10, needles={"needle": [3]})
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()

        assert engine.search("needle")
        assert transport.calls == 1

    def test_first_occurrence_wins(self, tmp_path):
        transport = InProcessTransport()
        engine = make_engine(tmp_path, transport)
        path = synthetic_corpus(
            engine, tmp_path, size=2 * SLOTS + 10, needles={"needle": [2 * SLOTS + 1, SLOTS + 5]}
        )
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()

        result = engine.search_detailed("needle")
        assert result.batch_index == 1
        assert result.slot_index == 5

    def test_no_match_evaluates_all(self, tmp_path):
        transport = InProcessTransport()
        engine = make_engine(tmp_path, transport)
        path = synthetic_corpus(
            engine, tmp_path, size=2 * SLOTS + 10, needles={"needle": [5], "absent": []}
        )
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()

        result = engine.search_detailed("absent")

        assert not result.matched
        assert result.batch_index is None
        assert result.batches_evaluated == 3
        assert transport.calls == 3


class TestParallelSearch:
    """Thread-pool evaluation reports the same results as sequential search."""

    @pytest.fixture
    def engine(self, tmp_path):
        engine = make_engine(tmp_path)
        path = synthetic_corpus(
            engine,
            tmp_path,
            size=3 * SLOTS,
            needles={"needle": [2 * SLOTS + 9, SLOTS + 40], "absent": []},
        )
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()
        return engine

    def test_same_location_as_sequential(self, engine):
        sequential = engine.search_detailed("needle")
        parallel = engine.search_detailed("needle", parallel=True, num_workers=3)

        assert parallel.matched
        assert (parallel.batch_index, parallel.slot_index) == (1, 40)
        assert (parallel.batch_index, parallel.slot_index) == (
            sequential.batch_index,
            sequential.slot_index,
        )
        assert parallel.batches_evaluated >= 2

    def test_no_match(self, engine):
        result = engine.search_detailed("absent", parallel=True, num_workers=2)
        assert not result.matched
        assert result.batches_evaluated == 3

    def test_search_many(self, engine):
        results = engine.search_many(["needle", "absent"], parallel=True)
        assert [r.matched for r in results] == [True, False]


class TestStateMachine:
    """Operations invoked out of order fail loudly."""

    def test_initial_state(self, tmp_path):
        engine = make_engine(tmp_path)
        assert engine.state == SearchState.IDLE

        with pytest.raises(NotReadyError):
            engine.search("banana")
        with pytest.raises(NotReadyError):
            engine.setup_ciphers()

    def test_empty_corpus_before_hashing(self, tmp_path):
        """No hashing happens when there is nothing to hash."""
        engine = make_engine(tmp_path)

        def fail(*args, **kwargs):
            raise AssertionError("hashing must not start")

        engine.preprocessor.digest_many = fail

        with pytest.raises(InputMissingError):
            engine.hash_corpus()

        engine.load_words([])
        with pytest.raises(InputMissingError):
            engine.hash_corpus()

        assert engine.state == SearchState.IDLE
        assert not (tmp_path / "HashedInputData.bin").exists()

    def test_transitions(self, tmp_path):
        engine = make_engine(tmp_path)
        engine.load_words(["apple", "banana"])
        assert engine.state == SearchState.IDLE

        engine.hash_corpus()
        assert engine.state == SearchState.CORPUS_READY
        with pytest.raises(NotReadyError):
            engine.search("apple")

        engine.setup_ciphers()
        assert engine.state == SearchState.BATCHES_ENCRYPTED

        assert engine.search("apple")
        assert not engine.search("grape")
        assert engine.search("banana")
        assert engine.state == SearchState.MATCH_FOUND

    def test_new_words_invalidate_ciphertexts(self, tmp_path):
        engine = make_engine(tmp_path)
        engine.load_words(["apple"])
        engine.hash_corpus()
        engine.setup_ciphers()

        engine.load_words(["banana"])

        assert engine.num_batches == 0
        with pytest.raises(NotReadyError):
            engine.search("apple")

    def test_key_rotation_invalidates_ciphertexts(self, tmp_path):
        engine = make_engine(tmp_path)
        engine.load_words(["apple"])
        engine.hash_corpus()
        engine.setup_ciphers()

        engine.crypto.rotate_keys()

        with pytest.raises(NotReadyError):
            engine.search("apple")

        engine.setup_ciphers()
        assert engine.search("apple")

    def test_missing_hashed_corpus(self, tmp_path):
        engine = make_engine(tmp_path)
        with pytest.raises(CorpusFileNotFoundError):
            engine.load_hashed_corpus(tmp_path / "nope.bin")
        assert engine.state == SearchState.IDLE

    def test_empty_hashed_corpus(self, tmp_path):
        path = tmp_path / "empty.bin"
        HashedCorpusStore(path).persist([])

        engine = make_engine(tmp_path)
        engine.load_hashed_corpus(path)

        with pytest.raises(EmptyCorpusError):
            engine.setup_ciphers()

    def test_mismatched_word_list_dropped(self, tmp_path):
        path = tmp_path / "two.bin"
        HashedCorpusStore(path).persist([1, 2])

        engine = make_engine(tmp_path)
        engine.load_words(["only-one"])
        engine.load_hashed_corpus(path)

        assert engine.words is None

    def test_unrelated_word_list_of_same_length_dropped(self, tmp_path):
        """A stale hashed file never gets names from the current word list."""
        path = tmp_path / "other.bin"
        writer = make_engine(tmp_path)
        writer.load_words(["x", "y", "z"])
        writer.hash_corpus(path)

        engine = make_engine(tmp_path)
        engine.load_words(["apple", "banana", "cherry"])
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()

        assert engine.words is None
        result = engine.search_detailed("y")
        assert result.matched
        assert result.corpus_index == 1
        assert result.word is None
        assert "banana" not in str(result)

    def test_matching_word_list_kept(self, tmp_path):
        path = tmp_path / "fruit.bin"
        writer = make_engine(tmp_path)
        writer.load_words(["apple", "banana", "cherry"])
        writer.hash_corpus(path)

        engine = make_engine(tmp_path)
        engine.load_words(["apple", "banana", "cherry"])
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()

        assert engine.search_detailed("banana").word == "banana"


class TestVerifyResult:
    """Encrypted results agree with a plaintext digest lookup."""

    @pytest.fixture
    def engine(self, tmp_path):
        engine = make_engine(tmp_path)
        path = synthetic_corpus(
            engine, tmp_path, size=SLOTS + 10, needles={"needle": [SLOTS + 3], "absent": []}
        )
        engine.load_hashed_corpus(path)
        engine.setup_ciphers()
        return engine

    def test_match_verified(self, engine):
        result = engine.search_detailed("needle")
        assert engine.batcher.locate(SLOTS + 3) == (1, 3)
        assert engine.verify_result("needle", result)

    def test_no_match_verified(self, engine):
        assert engine.verify_result("absent", engine.search_detailed("absent"))

    def test_wrong_location_rejected(self, engine):
        result = engine.search_detailed("needle")
        result.slot_index += 1
        assert not engine.verify_result("needle", result)


class TestSearchFailures:
    """A failing evaluation never turns into a false NoMatch."""

    def test_protocol_error_aborts_search(self, tmp_path):
        engine = make_engine(tmp_path, transport=lambda bundle: b"BMR1")
        engine.load_words(["apple", "banana"])
        engine.hash_corpus()
        engine.setup_ciphers()

        with pytest.raises(ProtocolError):
            engine.search("apple")

        assert engine.state == SearchState.BATCHES_ENCRYPTED

    def test_recovers_after_failure(self, tmp_path):
        evaluator = RemoteEvaluator()
        calls = []

        def flaky(bundle):
            calls.append(1)
            if len(calls) == 1:
                return b"junk"
            return evaluator.evaluate(bundle)

        engine = make_engine(tmp_path, transport=flaky)
        engine.load_words(["apple", "banana"])
        engine.hash_corpus()
        engine.setup_ciphers()

        with pytest.raises(ProtocolError):
            engine.search("banana")
        assert engine.search("banana")

    def test_verbose_output(self, tmp_path, capsys):
        engine = make_engine(tmp_path, verbose=True)
        engine.load_words(["apple", "banana"])
        engine.hash_corpus()
        engine.setup_ciphers()
        engine.search("banana")

        out = capsys.readouterr().out
        assert "Hashing 2 words" in out
        assert "Match found" in out
