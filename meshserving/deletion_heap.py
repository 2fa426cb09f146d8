"""A queue of deleted Predictors ordered by deletion time."""

from __future__ import annotations

import heapq
import itertools

from .predictor import Predictor


class DeletionHeap:
    """Min-heap of Predictors keyed on their deletion timestamp."""

    def __init__(self) -> None:
        self._heap: list[tuple[float, int, Predictor]] = []
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def push(self, predictor: Predictor) -> None:
        """Queue a Predictor; ones without a deletion timestamp are ignored."""
        if predictor.deletion_timestamp is not None:
            heapq.heappush(
                self._heap, (predictor.deletion_timestamp, next(self._counter), predictor)
            )

    def peek(self) -> Predictor | None:
        return self._heap[0][2] if self._heap else None

    def pop_expired(self, cutoff: float) -> Predictor | None:
        """Remove and return the earliest deletion if it is before ``cutoff``."""
        if self._heap and self._heap[0][0] < cutoff:
            return heapq.heappop(self._heap)[2]
        return None