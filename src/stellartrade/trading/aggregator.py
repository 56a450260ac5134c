"""Thread-safe collection and ranking of per-pair trade solutions."""

from __future__ import annotations

import threading

from stellartrade.trading.solver import TradeSolution


class SolutionAggregator:
    """Append-only solution set shared by all solver workers.

    Pushes are serialised with a lock; ``top`` ranks a snapshot and never
    mutates the stored solutions, so repeated calls give the same answer.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._solutions: list[TradeSolution] = []

    def push(self, solution: TradeSolution) -> None:
        with self._lock:
            self._solutions.append(solution)

    def __len__(self) -> int:
        with self._lock:
            return len(self._solutions)

    def top(self, k: int) -> list[TradeSolution]:
        if k <= 0:
            return []
        with self._lock:
            snapshot = list(self._solutions)
        return sorted(snapshot, key=lambda s: s.ranking_key)[:k]
