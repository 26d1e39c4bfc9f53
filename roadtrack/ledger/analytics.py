"""Owner-side statistics over decrypted scores.

Runs after reveal, outside the ledger: the ledger only keeps an encrypted
total and a plaintext count, so averages and extrema are derived here.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .models import ScoreSummary


def summarize_scores(scores: Sequence[int]) -> ScoreSummary:
    """Count, mean, extrema and latest trend of scores in submission order."""
    if len(scores) == 0:
        return ScoreSummary()

    arr = np.asarray(scores, dtype=np.int64)
    trend = int(arr[-1] - arr[-2]) if arr.size >= 2 else None
    return ScoreSummary(
        count=int(arr.size),
        average=float(arr.mean()),
        highest=int(arr.max()),
        lowest=int(arr.min()),
        trend=trend,
    )


def average_from_total(total: int, count: int) -> float | None:
    """Average from a revealed running total (None when count is 0)."""
    if count <= 0:
        return None
    return total / count


__all__ = ["average_from_total", "summarize_scores"]
