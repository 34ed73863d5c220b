#!/usr/bin/env python3
"""
Encrypted word search demo.

Demonstrates:
1. Client hashes a word list with Argon2d (or reloads persisted digests)
2. Client packs digests into BFV batches and encrypts them
3. Each query word is hashed, replicated and encrypted
4. The evaluator subtracts the query from every batch on ciphertexts only
5. Client decrypts the differences and reports whether a zero slot appeared

The evaluator NEVER sees a word, a digest or the secret key.

Examples:
    python scripts/demo_word_search.py --words words_alpha.txt --search banana
    python scripts/demo_word_search.py --search banana durian      # reuse digests
    python scripts/demo_word_search.py --serve --port 8000
    python scripts/demo_word_search.py --server http://127.0.0.1:8000 --search banana
"""
import sys
import argparse
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from blindmatch.client.channel import ComputeChannel, HttpTransport, InProcessTransport
from blindmatch.client.search import SearchEngine
from blindmatch.shared.errors import BlindMatchError
from blindmatch.shared.params import DEFAULT_HASHED_CORPUS_PATH, SchemeParams
from blindmatch.shared.storage import HashedCorpusStore
from blindmatch.shared.utils import Timer, load_word_list


def build_engine(args, transport) -> SearchEngine:
    """Create the engine and get it to the encrypted-batches state."""
    engine = SearchEngine(
        scheme_params=SchemeParams(poly_modulus_degree=args.poly_degree),
        channel=ComputeChannel(transport),
        corpus_store=HashedCorpusStore(args.hashed),
        verbose=args.verbose,
    )

    corpus_store = engine.corpus_store
    if args.words and (args.rehash or not corpus_store.exists()):
        engine.load_word_file(args.words)
        print(f"Loaded {len(engine.words):,} words from {args.words}")
        with Timer() as t:
            engine.hash_corpus()
        print(f"Hashed and saved to {corpus_store.path} in {t.elapsed_ms:.0f}ms")
    else:
        if args.words:
            engine.load_word_file(args.words)
        with Timer() as t:
            digests = engine.load_hashed_corpus()
        print(f"Loaded {len(digests):,} digests from {corpus_store.path} in {t.elapsed_ms:.0f}ms")

    with Timer() as t:
        num_batches = engine.setup_ciphers()
    print(f"Encrypted {num_batches} batches of {engine.crypto.slot_count} slots in {t.elapsed_ms:.0f}ms")

    return engine


def run_searches(engine: SearchEngine, words, parallel: bool, workers, verify: bool = False) -> int:
    """Search every word and print the verdicts. Returns the number of matches."""
    matches = 0
    for word in words:
        with Timer() as t:
            result = engine.search_detailed(word, parallel=parallel, num_workers=workers)
        matches += int(result.matched)

        print(f"\n{word!r}: {result.matched}")
        print(f"  {result}")
        print(f"  Batches evaluated: {result.batches_evaluated}/{engine.num_batches}")
        print(f"  Total time: {t.elapsed_ms:.0f}ms")
        if verify:
            ok = engine.verify_result(word, result)
            print(f"  Plaintext check: {'OK' if ok else 'MISMATCH'}")

    return matches


def main():
    parser = argparse.ArgumentParser(
        description="Encrypted exact-match word search"
    )
    parser.add_argument(
        "--words", "-w",
        type=Path,
        help="Corpus file with one word per line",
    )
    parser.add_argument(
        "--hashed",
        type=Path,
        default=Path(DEFAULT_HASHED_CORPUS_PATH),
        help="Persisted digest file",
    )
    parser.add_argument(
        "--rehash",
        action="store_true",
        help="Hash --words even if a digest file already exists",
    )
    parser.add_argument(
        "--search", "-s",
        nargs="+",
        default=[],
        help="Words to search for",
    )
    parser.add_argument(
        "--search-file",
        type=Path,
        help="File with query words, one per line",
    )
    parser.add_argument(
        "--poly-degree",
        type=int,
        default=4096,
        help="BFV polynomial modulus degree (= slots per batch)",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Evaluate batches on a thread pool",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Thread pool size for --parallel",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="Compare each result with a plaintext digest lookup",
    )
    parser.add_argument(
        "--server",
        help="Evaluator service URL (default: in-process evaluator)",
    )
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Run the evaluator HTTP service instead of searching",
    )
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--verbose", "-v", action="store_true")

    args = parser.parse_args()

    if args.serve:
        from blindmatch.server.api import run_server
        run_server(host=args.host, port=args.port)
        return

    queries = list(args.search)
    if args.search_file:
        queries.extend(load_word_list(args.search_file))
    if not queries:
        parser.error("nothing to search for: pass --search or --search-file")

    print("=" * 70)
    print("blindmatch - Encrypted Word Search")
    print("=" * 70)

    if args.server:
        transport = HttpTransport(base_url=args.server)
        print(f"Using remote evaluator at {args.server}")
    else:
        transport = InProcessTransport()
        print("Using in-process evaluator")

    try:
        engine = build_engine(args, transport)
        matches = run_searches(engine, queries, args.parallel, args.workers, args.verify)
    except BlindMatchError as e:
        print(f"\nSearch failed ({type(e).__name__}): {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if isinstance(transport, HttpTransport):
            transport.close()

    print(f"\n{matches}/{len(queries)} words found")


if __name__ == "__main__":
    main()
