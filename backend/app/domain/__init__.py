"""Domain models representing normalized and scored market data."""

from .models import (
    NormalizedMarket,
    OutcomeRef,
    ReferenceStats,
    ScoreResult,
    SyncResult,
    TagRef,
)

__all__ = [
    "NormalizedMarket",
    "OutcomeRef",
    "ReferenceStats",
    "ScoreResult",
    "SyncResult",
    "TagRef",
]
