from __future__ import annotations

from datetime import datetime, timezone

from app.domain import OutcomeRef, TagRef
from ingestion.normalize import (
    normalize_events,
    normalize_market,
    normalize_outcomes,
    normalize_tags,
    parse_datetime,
)


def _normalize(payload, **kwargs):
    return normalize_events([payload], **kwargs)


def test_normalize_events_handles_real_payload(sample_event_payload):
    markets = _normalize(
        sample_event_payload,
        allowed_tags=frozenset({"economy", "fed"}),
        excluded_tags=frozenset({"sports"}),
    )

    assert [m.market_id for m in markets] == ["512345", "512346"]
    first, second = markets

    assert first.event_id == "16167"
    assert first.liquidity == 120000.25
    assert first.volume24h == 9500.5
    assert first.restricted is True
    assert first.resolution_source == sample_event_payload["resolutionSource"]
    assert first.end_date == datetime(2030, 3, 19, 12, tzinfo=timezone.utc)
    assert first.tags == (TagRef("economy", "Economy"), TagRef("fed", "Fed"))
    assert first.has_allowed_tag is True
    assert first.is_excluded is False
    assert first.outcomes == (OutcomeRef("Yes", 0.62), OutcomeRef("No", 0.38))
    assert first.is_multi_outcome is False
    assert first.market_url == (
        "https://polymarket.com/market/"
        "fed-decreases-interest-rates-by-25-bps-after-march-2030-meeting"
    )
    assert "markets" not in first.raw_data["event"]
    assert first.raw_data["market"]["id"] == "512345"

    # Present-but-zero liquidity is kept; a null market value falls through to the event.
    assert second.liquidity == 0.0
    assert second.has_liquidity_field is True
    assert second.volume24h == 18000
    assert second.open_interest == 90000
    assert second.end_date == datetime.fromtimestamp(1899979200, tz=timezone.utc)
    assert [tag.slug for tag in second.tags] == ["fed", "rates"]
    assert second.description == sample_event_payload["description"]


def test_event_without_markets_contributes_nothing():
    events = [
        {
            "id": "e1",
            "markets": [
                {"id": "m1", "question": "A?", "liquidity": 1000},
                {"id": "m2", "question": "B?", "liquidity": 50},
            ],
        },
        {"id": "e2", "markets": []},
    ]

    markets = normalize_events(events)

    assert [m.market_id for m in markets] == ["m1", "m2"]
    assert [m.liquidity for m in markets] == [1000, 50]


def test_missing_identifier_falls_back_to_event_and_index():
    market = normalize_market({"id": 77}, {"question": "Who wins?"}, 3)

    assert market.market_id == "77:3"
    assert normalize_market({}, {}, 0).market_id == "event:0"


def test_duplicate_market_ids_keep_first_occurrence():
    events = [
        {"id": "e1", "markets": [{"id": "m1", "question": "first"}]},
        {"id": "e2", "markets": [{"id": "m1", "question": "second"}]},
    ]

    markets = normalize_events(events)

    assert len(markets) == 1
    assert markets[0].question == "first"


def test_absent_metrics_are_zero_without_provenance():
    market = normalize_market({"id": "e"}, {"id": "m"}, 0)

    assert market.liquidity == 0.0
    assert market.volume24h == 0.0
    assert market.open_interest == 0.0
    assert market.has_liquidity_field is False
    assert market.has_volume24h_field is False
    assert market.has_open_interest_field is False
    assert market.has_resolution_source_field is False
    assert market.question == "Untitled market"
    assert market.market_url is None


def test_provenance_tracks_key_presence_not_value():
    market = normalize_market(
        {"id": "e", "open_interest": None, "resolutionSource": ""},
        {"id": "m", "liquidity": "not-a-number"},
        0,
    )

    assert market.has_open_interest_field is True
    assert market.open_interest == 0.0
    assert market.has_resolution_source_field is True
    assert market.resolution_source is None
    assert market.has_liquidity_field is True
    assert market.liquidity == 0.0


def test_non_finite_and_negative_metrics_are_not_trusted():
    market = normalize_market(
        {"liquidity": 500},
        {"id": "m", "liquidity": "NaN", "volume24hr": -20},
        0,
    )

    assert market.liquidity == 500
    assert market.volume24h == 0.0


def test_market_url_falls_back_to_event_slug():
    market = normalize_market({"slug": "parent-event"}, {"id": "m"}, 0)

    assert market.market_url == "https://polymarket.com/event/parent-event"


def test_parse_datetime_accepts_epoch_seconds_milliseconds_and_strings():
    expected = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert parse_datetime(1704067200) == expected
    assert parse_datetime(1704067200000) == expected
    assert parse_datetime("1704067200") == expected
    assert parse_datetime("2024-01-01T00:00:00Z") == expected
    assert parse_datetime("2024-01-01") == expected
    assert parse_datetime("not a date") is None
    assert parse_datetime("") is None
    assert parse_datetime(None) is None
    assert parse_datetime(float("inf")) is None


def test_normalize_tags_accepts_all_known_shapes():
    tags = normalize_tags(
        [
            "Politics",
            {"slug": "AI", "name": "Artificial Intelligence"},
            {"tag": {"slug": "world"}},
            {"label": "no slug"},
            None,
            "politics",
        ]
    )

    assert tags == (
        TagRef("politics", "Politics"),
        TagRef("ai", "Artificial Intelligence"),
        TagRef("world", "world"),
    )
    assert normalize_tags("politics") == ()


def test_normalize_outcomes_reconciles_prices_by_index():
    outcomes = normalize_outcomes(
        [{"name": "Alice"}, {"name": "Bob", "probability": 0.2}, "Carol"],
        '["0.5", "0.3", "0.2"]',
    )

    assert outcomes == (
        OutcomeRef("Alice", 0.5),
        OutcomeRef("Bob", 0.2),
        OutcomeRef("Carol", 0.2),
    )


def test_two_unnamed_outcomes_default_to_yes_no():
    assert normalize_outcomes(None, ["0.4", "0.6"]) == (
        OutcomeRef("Yes", 0.4),
        OutcomeRef("No", 0.6),
    )
    assert normalize_outcomes([{}, {}], None) == (OutcomeRef("Yes"), OutcomeRef("No"))


def test_multi_outcome_market_is_flagged():
    market = normalize_market(
        {"id": "e"}, {"id": "m", "outcomes": '["A", "B", "C"]'}, 0
    )

    assert market.is_multi_outcome is True


def test_malformed_payloads_never_raise():
    events = [
        None,
        "garbage",
        {"id": "e", "markets": "not-a-list"},
        {"id": "e2", "markets": [None, 5, {"id": "ok", "tags": {"slug": "x"}, "endDate": []}]},
    ]

    markets = normalize_events(events)

    assert [m.market_id for m in markets] == ["ok"]
    assert markets[0].tags == ()
    assert markets[0].end_date is None


def test_oversized_integers_are_treated_as_absent():
    events = [
        {
            "id": "e1",
            "markets": [
                {"id": "m1", "liquidity": 10**400, "volume24hr": 50, "endDate": 10**400},
                {"id": "m2", "outcomes": ["Yes", "No"], "outcomePrices": [10**400, 0.5]},
            ],
        }
    ]

    markets = normalize_events(events)

    assert [m.market_id for m in markets] == ["m1", "m2"]
    assert markets[0].liquidity == 0.0
    assert markets[0].has_liquidity_field is True
    assert markets[0].volume24h == 50
    assert markets[0].end_date is None
    assert markets[1].outcomes == (OutcomeRef("Yes", None), OutcomeRef("No", 0.5))
    assert parse_datetime(10**400) is None
