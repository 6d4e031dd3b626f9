"""Researchability score: weighted, log-scaled components plus diagnostic flags."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from app.core.score_config import ScoreConfig
from app.domain import NormalizedMarket, ReferenceStats, ScoreResult

RESOLUTION_SOURCE_SHARE = 0.6
END_DATE_SHARE = 0.4

LIQUIDITY_SHARE = 0.6
VOLUME_SHARE = 0.3
OPEN_INTEREST_SHARE = 0.1

MODELABILITY_TAGS = 0.5
MODELABILITY_RESOLUTION_SOURCE = 0.3
MODELABILITY_END_DATE = 0.2

_SECONDS_PER_DAY = 86_400


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def log_score(value: float, ref: float, max_score: float) -> float:
    """Scale ``value`` against ``ref`` on a log10 curve, capped at ``max_score``."""

    if ref <= 0 or value <= 0 or max_score <= 0:
        return 0.0
    denominator = math.log10(1 + ref)
    # Sub-epsilon references round 1 + ref to exactly 1.
    if denominator <= 0:
        return 0.0
    scaled = math.log10(1 + value) / denominator
    return clamp(max_score * scaled, 0.0, max_score)


def days_to_expiry(end_date: datetime | None, now: datetime) -> int | None:
    if end_date is None:
        return None
    if end_date.tzinfo is None:
        end_date = end_date.replace(tzinfo=timezone.utc)
    return math.ceil((end_date - now).total_seconds() / _SECONDS_PER_DAY)


def memo_mode(days: int | None, memo_max_days: int) -> str:
    if days is None:
        return "unknown"
    return "memo" if days <= memo_max_days else "thesis"


def _add_flag(flags: list[str], code: str) -> None:
    if code not in flags:
        flags.append(code)


def score_market(
    market: NormalizedMarket,
    config: ScoreConfig,
    refs: ReferenceStats,
    *,
    now: datetime | None = None,
) -> ScoreResult:
    now = now or datetime.now(timezone.utc)
    weights = config.weights
    penalties = config.penalties
    thresholds = config.flags_thresholds

    has_resolution_source = bool(market.resolution_source)
    has_end_date = market.end_date is not None
    tags_present = bool(market.tags)
    days = days_to_expiry(market.end_date, now)

    resolution_source = (
        weights.resolution_integrity * RESOLUTION_SOURCE_SHARE if has_resolution_source else 0.0
    )
    end_date = weights.resolution_integrity * END_DATE_SHARE if has_end_date else 0.0

    micro = weights.liquidity_microstructure
    liquidity = log_score(market.liquidity, refs.liquidity, micro * LIQUIDITY_SHARE)
    volume = log_score(market.volume24h, refs.volume24h, micro * VOLUME_SHARE)
    open_interest = log_score(
        market.open_interest, refs.open_interest, micro * OPEN_INTEREST_SHARE
    )
    microstructure = clamp(liquidity + volume + open_interest, 0.0, max(micro, 0.0))

    presence = (
        MODELABILITY_TAGS * tags_present
        + MODELABILITY_RESOLUTION_SOURCE * has_resolution_source
        + MODELABILITY_END_DATE * has_end_date
    )
    modelability = weights.modelability * presence

    if market.open_interest > 0:
        participation = log_score(
            market.open_interest, refs.open_interest, weights.participation_quality
        )
    elif market.volume24h > 0:
        participation = log_score(
            market.volume24h, refs.volume24h, weights.participation_quality
        )
    else:
        participation = 0.0

    strategic_fit = weights.strategic_fit if market.has_allowed_tag else 0.0

    short_horizon = days is not None and days < thresholds.min_days_to_expiry
    penalty = 0.0
    if market.restricted:
        penalty += penalties.restricted
    if not tags_present:
        penalty += penalties.missing_tags
    if short_horizon:
        penalty += penalties.short_horizon

    flags: list[str] = []
    if not has_resolution_source and market.has_resolution_source_field:
        _add_flag(flags, "missing_resolution_source")
    if not has_end_date:
        _add_flag(flags, "missing_end_date")
    if market.has_liquidity_field and market.liquidity < thresholds.min_liquidity:
        _add_flag(flags, "low_liquidity")
    if market.has_volume24h_field and market.volume24h < thresholds.min_volume24h:
        _add_flag(flags, "low_volume24h")
    if market.has_open_interest_field and market.open_interest < thresholds.min_open_interest:
        _add_flag(flags, "weak_open_interest")
    if short_horizon:
        _add_flag(flags, "short_horizon")
    if not tags_present:
        _add_flag(flags, "missing_tags")
    if market.restricted:
        _add_flag(flags, "restricted_market")
    if market.is_excluded:
        _add_flag(flags, "excluded_tag")
    if tags_present and not market.has_allowed_tag:
        _add_flag(flags, "not_in_allowed_sectors")

    positive = (
        resolution_source
        + end_date
        + microstructure
        + modelability
        + participation
        + strategic_fit
    )
    total = clamp(positive + penalty, 0.0, 100.0)

    return ScoreResult(
        total_score=total,
        components={
            "resolution_source": resolution_source,
            "end_date": end_date,
            "resolution_integrity": resolution_source + end_date,
            "liquidity": liquidity,
            "volume24h": volume,
            "open_interest": open_interest,
            "liquidity_microstructure": microstructure,
            "modelability": modelability,
            "participation_quality": participation,
            "strategic_fit": strategic_fit,
            "penalties": penalty,
        },
        flags=tuple(flags),
        days_to_expiry=days,
        memo_mode=memo_mode(days, config.memo_max_days),
    )
