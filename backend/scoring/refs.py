from __future__ import annotations

import math
from typing import Iterable, Sequence

from app.domain import NormalizedMarket, ReferenceStats


def percentile(values: Iterable[float], p: float) -> float:
    """Nearest-rank percentile that always returns an observed value (0 if empty)."""

    ordered = sorted(values)
    if not ordered:
        return 0.0
    index = math.floor(p * (len(ordered) - 1))
    index = max(0, min(len(ordered) - 1, index))
    return ordered[index]


def compute_refs(markets: Sequence[NormalizedMarket], p: float) -> ReferenceStats:
    return ReferenceStats(
        liquidity=percentile((m.liquidity for m in markets if m.liquidity > 0), p),
        volume24h=percentile((m.volume24h for m in markets if m.volume24h > 0), p),
        open_interest=percentile(
            (m.open_interest for m in markets if m.open_interest > 0), p
        ),
    )
