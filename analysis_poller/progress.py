"""Progress percentage derived from subtool counts."""

import math


def compute_progress(total: int, pending: int) -> int:
    """Return the completed share of ``total`` as an integer in [0, 100].

    Halves round up (``Math.round`` semantics) rather than to even, so
    1 of 8 complete reports 13, not 12.
    """
    if total <= 0:
        return 0
    completed = total - pending
    value = math.floor(100 * completed / total + 0.5)
    return max(0, min(100, value))


class ProgressCalculator:
    """Non-decreasing progress for a single run.

    A fresh calculator is built whenever the active run changes; within a run
    a lower reading (backend anomaly, shrinking denominator) is ignored.
    """

    def __init__(self):
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def update(self, total: int, pending: int) -> int:
        candidate = compute_progress(total, pending)
        if candidate > self._value:
            self._value = candidate
        return self._value
