# stabilization.py
# Majority vote over the last N OCR readings per spatial bucket

from collections import deque
from threading import Lock
from typing import Deque, Dict, Hashable, List

DEFAULT_HISTORY_SIZE = 10


class StabilizationEngine:
    """
    Noisy per-frame readings -> one stable text per bucket.

    History per bucket is a bounded FIFO (oldest evicted first) so the
    vote follows a plate that leaves or changes. Stable text = most
    frequent entry; ties go to the value seen first in the window.
    Buckets live for the engine's lifetime.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        if history_size <= 0:
            raise ValueError("history_size must be positive")
        self.history_size = history_size
        self._history: Dict[Hashable, Deque[str]] = {}
        self._lock = Lock()

    def observe(self, bucket: Hashable, text: str):
        """Append a non-empty reading to the bucket's window."""
        if not text:
            return
        with self._lock:
            history = self._history.get(bucket)
            if history is None:
                history = deque(maxlen=self.history_size)
                self._history[bucket] = history
            history.append(text)

    def stable_text(self, bucket: Hashable) -> str:
        with self._lock:
            history = self._history.get(bucket)
            if not history:
                return ""
            return self._vote(history)

    def observe_and_vote(self, bucket: Hashable, text: str) -> str:
        """observe() + stable_text() as one step (no interleaving from other workers)."""
        with self._lock:
            history = self._history.get(bucket)
            if text:
                if history is None:
                    history = deque(maxlen=self.history_size)
                    self._history[bucket] = history
                history.append(text)
            if not history:
                return ""
            return self._vote(history)

    @staticmethod
    def _vote(history: Deque[str]) -> str:
        counts: Dict[str, int] = {}
        for text in history:
            counts[text] = counts.get(text, 0) + 1
        # max() keeps the first of equal counts (insertion order)
        return max(counts, key=counts.get)

    def history(self, bucket: Hashable) -> List[str]:
        with self._lock:
            return list(self._history.get(bucket, ()))

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._history)
