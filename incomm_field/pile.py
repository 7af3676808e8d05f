from bisect import bisect_right
from threading import Lock
from typing import Any, List, Tuple

import numpy as np

SENTINEL_RANK = -1.0


class ContactPile:
    """
    Bounded nearest-set selector.

    Keeps the `capacity` entries with the smallest rank seen so far, in
    ascending rank order. Among equal ranks the first one inserted wins.
    Each entry carries one payload, so values that must stay aligned with the
    same neighbour (e.g. the cosine and sine contact terms) are stored together.

    `insert` is serialised by a per-instance lock and may be called from
    several threads.
    """

    def __init__(self, capacity: int):
        capacity = int(capacity)
        if capacity < 0:
            raise ValueError(f"Pile capacity must be >= 0, got {capacity}")
        self.capacity = capacity
        self._ranks: List[float] = []
        self._values: List[Any] = []
        self._seen = 0
        self._lock = Lock()

    def insert(self, rank: float, value) -> bool:
        """Offer one candidate; returns True if it is retained (for now)."""
        rank = float(rank)
        with self._lock:
            self._seen += 1
            if self.capacity == 0:
                return False
            pos = bisect_right(self._ranks, rank)
            if pos >= self.capacity:
                return False
            self._ranks.insert(pos, rank)
            self._values.insert(pos, value)
            if len(self._ranks) > self.capacity:
                self._ranks.pop()
                self._values.pop()
            return True

    def __len__(self) -> int:
        return len(self._ranks)

    @property
    def seen(self) -> int:
        return self._seen

    @property
    def ranks(self) -> np.ndarray:
        """Length-`capacity` ranks; empty slots hold SENTINEL_RANK."""
        out = np.full(self.capacity, SENTINEL_RANK, dtype=np.float64)
        out[:len(self._ranks)] = self._ranks
        return out

    def slots(self) -> List[Tuple[float, Any]]:
        """All `capacity` slots in order; empty ones are (SENTINEL_RANK, None)."""
        with self._lock:
            filled = list(zip(self._ranks, self._values))
        return filled + [(SENTINEL_RANK, None)] * (self.capacity - len(filled))

    def entries(self) -> List[Tuple[float, Any]]:
        """Retained (rank, value) pairs, ascending rank."""
        with self._lock:
            return list(zip(self._ranks, self._values))

    def drain(self) -> List[Tuple[float, Any]]:
        """Return the retained entries and empty the pile."""
        with self._lock:
            out = list(zip(self._ranks, self._values))
            self._ranks.clear()
            self._values.clear()
            self._seen = 0
        return out
