from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from app.core.score_config import ScoreConfig
from app.domain import NormalizedMarket, ReferenceStats, TagRef
from scoring import compute_refs, days_to_expiry, log_score, memo_mode, score_market

NOW = datetime(2030, 1, 1, tzinfo=timezone.utc)
REFS = ReferenceStats(liquidity=10_000, volume24h=1_000, open_interest=5_000)


def _market(**overrides) -> NormalizedMarket:
    base = NormalizedMarket(
        market_id="m1",
        event_id="e1",
        slug="m1",
        event_slug="e1",
        question="Will it happen?",
        description=None,
        resolution_source="https://example.com/rules",
        end_date=NOW + timedelta(days=60),
        liquidity=10_000,
        volume24h=1_000,
        open_interest=5_000,
        tags=(TagRef("economy", "Economy"),),
        has_allowed_tag=True,
        has_liquidity_field=True,
        has_volume24h_field=True,
        has_open_interest_field=True,
        has_resolution_source_field=True,
        has_end_date_field=True,
    )
    return replace(base, **overrides)


@pytest.mark.parametrize(
    "value,ref,max_score",
    [(0, 100, 10), (-5, 100, 10), (50, 0, 10), (50, -1, 10), (50, 100, 0)],
)
def test_log_score_is_zero_without_data(value, ref, max_score):
    assert log_score(value, ref, max_score) == 0.0


def test_log_score_caps_at_max_for_values_above_reference():
    assert log_score(100, 100, 10) == pytest.approx(10)
    assert log_score(1_000_000, 100, 10) == 10
    assert 0 < log_score(10, 100, 10) < 10


def test_days_to_expiry_rounds_up_and_memo_mode():
    assert days_to_expiry(None, NOW) is None
    assert days_to_expiry(NOW + timedelta(hours=1), NOW) == 1
    assert days_to_expiry(NOW - timedelta(days=2), NOW) == -2
    assert memo_mode(None, 30) == "unknown"
    assert memo_mode(30, 30) == "memo"
    assert memo_mode(31, 30) == "thesis"


def test_well_formed_market_scores_full_marks():
    result = score_market(_market(), ScoreConfig(), REFS, now=NOW)

    assert result.flags == ()
    assert result.total_score == pytest.approx(100)
    assert result.components["resolution_integrity"] == pytest.approx(25)
    assert result.components["liquidity_microstructure"] == pytest.approx(30)
    assert result.components["strategic_fit"] == 20
    assert result.components["penalties"] == 0
    assert result.days_to_expiry == 60
    assert result.memo_mode == "thesis"


def test_restricted_untagged_market_gets_combined_penalty():
    config = ScoreConfig.model_validate(
        {"penalties": {"restricted": -10, "missing_tags": -5, "short_horizon": -5}}
    )
    market = _market(restricted=True, tags=(), has_allowed_tag=False)

    result = score_market(market, config, REFS, now=NOW)

    assert result.components["penalties"] == -15
    assert "restricted_market" in result.flags
    assert "missing_tags" in result.flags
    assert "not_in_allowed_sectors" not in result.flags


def test_total_is_clamped_to_score_range():
    heavy = ScoreConfig.model_validate(
        {"weights": {"resolution_integrity": 500, "strategic_fit": 500}}
    )
    punitive = ScoreConfig.model_validate(
        {"penalties": {"restricted": -1000, "missing_tags": -1000}}
    )

    assert score_market(_market(), heavy, REFS, now=NOW).total_score == 100
    bare = _market(restricted=True, tags=(), has_allowed_tag=False)
    assert score_market(bare, punitive, REFS, now=NOW).total_score == 0


def test_zero_reference_removes_metric_credit():
    result = score_market(_market(), ScoreConfig(), ReferenceStats(), now=NOW)

    assert result.components["liquidity_microstructure"] == 0
    assert result.components["participation_quality"] == 0


def test_threshold_flags_require_field_provenance():
    config = ScoreConfig.model_validate(
        {
            "flags_thresholds": {
                "min_liquidity": 1_000_000,
                "min_volume24h": 1_000_000,
                "min_open_interest": 1_000_000,
            }
        }
    )
    reported = _market(liquidity=0, volume24h=0, open_interest=0)
    omitted = replace(
        reported,
        has_liquidity_field=False,
        has_volume24h_field=False,
        has_open_interest_field=False,
        resolution_source=None,
        has_resolution_source_field=False,
    )

    reported_flags = score_market(reported, config, REFS, now=NOW).flags
    omitted_flags = score_market(omitted, config, REFS, now=NOW).flags

    assert {"low_liquidity", "low_volume24h", "weak_open_interest"} <= set(reported_flags)
    assert omitted_flags == ()


def test_missing_resolution_source_flag_when_field_blank():
    market = _market(resolution_source=None)

    result = score_market(market, ScoreConfig(), REFS, now=NOW)

    assert result.flags == ("missing_resolution_source",)
    assert result.components["resolution_source"] == 0


def test_short_horizon_requires_end_date():
    config = ScoreConfig.model_validate({"flags_thresholds": {"min_days_to_expiry": 7}})

    soon = score_market(_market(end_date=NOW + timedelta(days=2)), config, REFS, now=NOW)
    undated = score_market(_market(end_date=None), config, REFS, now=NOW)

    assert "short_horizon" in soon.flags
    assert soon.components["penalties"] == -5
    assert soon.memo_mode == "memo"
    assert "short_horizon" not in undated.flags
    assert "missing_end_date" in undated.flags
    assert undated.memo_mode == "unknown"


def test_sector_fit_flags():
    outside = _market(has_allowed_tag=False)
    excluded = _market(is_excluded=True)

    outside_result = score_market(outside, ScoreConfig(), REFS, now=NOW)
    excluded_result = score_market(excluded, ScoreConfig(), REFS, now=NOW)

    assert outside_result.flags == ("not_in_allowed_sectors",)
    assert outside_result.components["strategic_fit"] == 0
    assert excluded_result.flags == ("excluded_tag",)


def test_participation_falls_back_to_volume():
    result = score_market(_market(open_interest=0), ScoreConfig(), REFS, now=NOW)

    assert result.components["participation_quality"] == pytest.approx(10)


def test_scoring_is_deterministic(default_score_config):
    market = _market()

    first = score_market(market, default_score_config, REFS, now=NOW)
    second = score_market(market, default_score_config, REFS, now=NOW)

    assert first == second


def test_dust_reference_gives_no_credit_instead_of_failing():
    assert log_score(5000, 1e-17, 10) == 0.0

    markets = [
        _market(market_id="dust", liquidity=1e-17),
        _market(market_id="deep", liquidity=5000),
    ]
    config = ScoreConfig.model_validate({"ref_percentile": 0.0})
    refs = compute_refs(markets, config.ref_percentile)

    result = score_market(markets[1], config, refs, now=NOW)

    assert refs.liquidity == 1e-17
    assert result.components["liquidity"] == 0.0
