from __future__ import annotations

import pytest

from ingestion.client import PolymarketClient, UpstreamError
from ingestion.normalize import normalize_events


@pytest.mark.network
def test_polymarket_client_live_fetches_events():
    client = PolymarketClient(page_size=5, max_retries=1)
    events: list[dict[str, object]] = []
    try:
        for event in client.iter_events():
            events.append(event)
            if len(events) >= 5:
                break
    except UpstreamError as exc:
        pytest.skip(f"Polymarket API unavailable: {exc}")
    finally:
        client.close()

    assert events, "Polymarket API returned no events"
    for event in events:
        assert isinstance(event, dict)
        assert event.get("id"), "event payload missing identifier"

    markets = normalize_events(events)
    for market in markets:
        assert market.market_id
        assert market.liquidity >= 0
