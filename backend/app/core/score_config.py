"""Scoring configuration: file defaults merged with an operator override."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any, Mapping

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_NUMERIC_SECTIONS = ("weights", "penalties", "flags_thresholds")


class ScoreWeights(BaseModel):
    model_config = ConfigDict(extra="ignore")

    resolution_integrity: float = 25.0
    liquidity_microstructure: float = 30.0
    modelability: float = 15.0
    participation_quality: float = 10.0
    strategic_fit: float = 20.0


class ScorePenalties(BaseModel):
    model_config = ConfigDict(extra="ignore")

    restricted: float = -10.0
    missing_tags: float = -5.0
    short_horizon: float = -5.0


class FlagThresholds(BaseModel):
    model_config = ConfigDict(extra="ignore")

    min_liquidity: float = 0.0
    min_volume24h: float = 0.0
    min_open_interest: float = 0.0
    min_days_to_expiry: float = 0.0


class ScoreConfig(BaseModel):
    """Effective configuration threaded through normalization and scoring."""

    model_config = ConfigDict(extra="ignore")

    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    penalties: ScorePenalties = Field(default_factory=ScorePenalties)
    flags_thresholds: FlagThresholds = Field(default_factory=FlagThresholds)
    ref_percentile: float = Field(default=0.9, ge=0.0, le=1.0)
    score_version: str = "v2"
    memo_max_days: int = 30
    allowed_sectors: list[str] = Field(default_factory=list)
    sector_map: dict[str, list[str]] = Field(default_factory=dict)
    exclude_tags: list[str] = Field(default_factory=list)
    batch_size: int = Field(default=25, ge=1)
    max_markets: int | None = Field(default=None, ge=1)

    @field_validator("score_version")
    @classmethod
    def _non_empty_version(cls, value: str) -> str:
        return value.strip() or "v2"

    def allowed_tag_slugs(self) -> frozenset[str]:
        allowed: set[str] = set()
        for sector in self.allowed_sectors:
            for tag in self.sector_map.get(sector, []):
                allowed.add(str(tag).lower())
        return frozenset(allowed)

    def excluded_tag_slugs(self) -> frozenset[str]:
        return frozenset(str(tag).lower() for tag in self.exclude_tags)


def load_default_config(path: str | Path) -> dict[str, Any]:
    """Read the JSON default configuration from disk."""

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Score config at {path} must be a JSON object")
    return raw


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _sanitize_numeric_section(section: str, value: Any) -> dict[str, float]:
    if not isinstance(value, Mapping):
        return {}
    cleaned: dict[str, float] = {}
    for key, raw in value.items():
        number = _finite_number(raw)
        if number is None:
            logger.warning("Ignoring non-numeric override {}.{}={!r}", section, key, raw)
            continue
        cleaned[str(key)] = number
    return cleaned


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base; None in the override never wins."""

    result = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        if isinstance(result.get(key), Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def resolve_config(
    defaults: Mapping[str, Any], override: Mapping[str, Any] | None = None
) -> ScoreConfig:
    """Merge the stored override onto file defaults, field by field.

    Invalid defaults raise. Override values are checked one key at a time (and
    numeric sections one entry at a time); a value that would not validate is
    dropped with a warning and the default for that key is kept.
    """

    ScoreConfig.model_validate(defaults)
    merged: dict[str, Any] = dict(defaults)
    for key, value in (override or {}).items():
        if value is None:
            continue
        if key in _NUMERIC_SECTIONS:
            value = _sanitize_numeric_section(key, value)
        candidate = _deep_merge(merged, {key: value})
        try:
            ScoreConfig.model_validate(candidate)
        except ValidationError:
            logger.warning("Ignoring invalid override {}={!r}", key, value)
            continue
        merged = candidate
    return ScoreConfig.model_validate(merged)
