"""Typed domain representations used across ingestion, scoring, and persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True, frozen=True)
class TagRef:
    slug: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"slug": self.slug, "name": self.name}


@dataclass(slots=True, frozen=True)
class OutcomeRef:
    name: str
    probability: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "probability": self.probability}


@dataclass(slots=True)
class NormalizedMarket:
    """Canonical market snapshot, independent of upstream field naming drift.

    The ``has_*_field`` attributes record whether the upstream payload carried
    the field at all, so a metric that was omitted can be told apart from one
    that was reported as zero.
    """

    market_id: str
    event_id: str | None
    slug: str | None
    event_slug: str | None
    question: str
    description: str | None
    resolution_source: str | None
    end_date: datetime | None
    liquidity: float
    volume24h: float
    open_interest: float
    tags: tuple[TagRef, ...] = ()
    outcomes: tuple[OutcomeRef, ...] = ()
    restricted: bool = False
    has_allowed_tag: bool = False
    is_excluded: bool = False
    market_url: str | None = None
    has_liquidity_field: bool = False
    has_volume24h_field: bool = False
    has_open_interest_field: bool = False
    has_resolution_source_field: bool = False
    has_end_date_field: bool = False
    raw_data: dict[str, Any] | None = None

    @property
    def is_multi_outcome(self) -> bool:
        return len(self.outcomes) > 2


@dataclass(slots=True, frozen=True)
class ReferenceStats:
    """Percentile benchmarks for the heavy-tailed market metrics of one run."""

    liquidity: float = 0.0
    volume24h: float = 0.0
    open_interest: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "liquidity": self.liquidity,
            "volume24h": self.volume24h,
            "open_interest": self.open_interest,
        }


@dataclass(slots=True, frozen=True)
class ScoreResult:
    total_score: float
    components: dict[str, float]
    flags: tuple[str, ...]
    days_to_expiry: int | None = None
    memo_mode: str = "unknown"


@dataclass(slots=True)
class SyncResult:
    run_id: str
    event_count: int
    market_count: int
    refs: ReferenceStats
    started_at: datetime
    finished_at: datetime
    flag_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "event_count": self.event_count,
            "market_count": self.market_count,
            "refs": self.refs.to_dict(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "flag_counts": dict(sorted(self.flag_counts.items())),
        }
