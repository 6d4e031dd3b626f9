"""Fetch, normalize, and score the live catalog without touching the database."""

import argparse
import json
from itertools import islice
from pathlib import Path

from loguru import logger

from app.core.config import get_settings
from app.core.score_config import load_default_config, resolve_config
from ingestion.client import PolymarketClient
from ingestion.normalize import normalize_events
from pipelines.sync_run import select_top_markets
from scoring import compute_refs, score_market


def _parse_filter(raw_filter: str) -> tuple[str, object] | None:
    if not raw_filter or "=" not in raw_filter:
        logger.warning("Ignoring invalid filter argument: {}", raw_filter)
        return None
    key, value = raw_filter.split("=", 1)
    key = key.strip()
    raw_value = value.strip()
    if not key:
        logger.warning("Ignoring filter with empty key: {}", raw_filter)
        return None
    try:
        return key, json.loads(raw_value)
    except json.JSONDecodeError:
        lowered = raw_value.lower()
        if lowered in {"true", "false"}:
            return key, lowered == "true"
        return key, raw_value


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Preview researchability scores for open markets")
    parser.add_argument("--page-size", type=int, default=None, help="Override pagination size")
    parser.add_argument("--limit", type=int, default=None, help="Fetch up to N events")
    parser.add_argument(
        "--filter",
        action="append",
        default=None,
        metavar="KEY=VALUE",
        help="Additional Gamma query parameter (repeatable, e.g. --filter tag_slug=politics)",
    )
    parser.add_argument(
        "--config-path",
        type=Path,
        default=None,
        help="Score config JSON file (defaults to the shipped config)",
    )
    parser.add_argument("--top", type=int, default=20, help="Number of markets to print")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    config = resolve_config(load_default_config(args.config_path or settings.score_config_path))

    client_filters = dict(settings.ingestion_filters)
    for raw_filter in args.filter or []:
        parsed = _parse_filter(raw_filter)
        if parsed is not None:
            client_filters[parsed[0]] = parsed[1]

    with PolymarketClient(
        page_size=args.page_size or settings.ingestion_page_size,
        filters=client_filters,
    ) as client:
        events = list(islice(client.iter_events(), args.limit))

    markets = select_top_markets(
        normalize_events(
            events,
            allowed_tags=config.allowed_tag_slugs(),
            excluded_tags=config.excluded_tag_slugs(),
        ),
        config.max_markets,
    )
    refs = compute_refs(markets, config.ref_percentile)
    logger.info("Scored {} markets from {} events; refs={}", len(markets), len(events), refs.to_dict())

    scored = sorted(
        ((score_market(market, config, refs), market) for market in markets),
        key=lambda pair: (-pair[0].total_score, pair[1].market_id),
    )
    for result, market in scored[: args.top]:
        flags = ",".join(result.flags) or "-"
        print(f"{result.total_score:6.1f}  {market.market_id:<12} {market.question}  [{flags}]")


if __name__ == "__main__":
    main()
