"""
Shared utility functions.
"""
import time
from pathlib import Path
from typing import List, Optional, Union


def load_word_list(path: Union[str, Path], encoding: str = "utf-8") -> List[str]:
    """
    Read a corpus or query file with one word per line.

    Trailing whitespace is stripped and blank lines are skipped, so the
    returned list index matches the n-th non-empty line.

    Args:
        path: Text file to read
        encoding: File encoding

    Returns:
        List of words in file order
    """
    with open(path, "r", encoding=encoding) as f:
        return [line.strip() for line in f if line.strip()]


class Timer:
    """Context manager measuring wall-clock time of a block."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.perf_counter() - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Elapsed milliseconds; still running timers report time so far."""
        if self.elapsed is not None:
            return self.elapsed * 1000
        if self.start_time is None:
            return 0.0
        return (time.perf_counter() - self.start_time) * 1000

    def __str__(self) -> str:
        return f"{self.name}: {self.elapsed_ms:.2f}ms"
