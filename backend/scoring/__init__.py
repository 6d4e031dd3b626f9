"""Reference statistics and researchability scoring."""

from .refs import compute_refs, percentile
from .scorer import days_to_expiry, log_score, memo_mode, score_market

__all__ = [
    "compute_refs",
    "days_to_expiry",
    "log_score",
    "memo_mode",
    "percentile",
    "score_market",
]
