from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping

from dateutil import parser as date_parser
from loguru import logger

from app.domain import NormalizedMarket, OutcomeRef, TagRef

MARKET_URL_BASE = "https://polymarket.com"
_EPOCH_MS_THRESHOLD = 1e12

MARKET = "market"
EVENT = "event"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Ordered ``(source, key)`` candidates for one canonical field."""

    candidates: tuple[tuple[str, str], ...]


def _spec(*candidates: tuple[str, str]) -> FieldSpec:
    return FieldSpec(candidates=candidates)


MARKET_ID = _spec((MARKET, "id"), (MARKET, "marketId"), (MARKET, "slug"))
EVENT_ID = _spec((EVENT, "id"), (EVENT, "eventId"))
SLUG = _spec((MARKET, "slug"), (MARKET, "marketSlug"))
EVENT_SLUG = _spec((EVENT, "slug"), (EVENT, "eventSlug"), (EVENT, "event_slug"))
QUESTION = _spec((MARKET, "question"), (MARKET, "title"), (EVENT, "title"))
DESCRIPTION = _spec((MARKET, "description"), (EVENT, "description"))
RESOLUTION_SOURCE = _spec(
    (MARKET, "resolutionSource"),
    (MARKET, "resolution_source"),
    (EVENT, "resolutionSource"),
    (EVENT, "resolution_source"),
)
END_DATE = _spec(
    (MARKET, "endDate"),
    (MARKET, "endDateIso"),
    (MARKET, "endTime"),
    (MARKET, "end_time"),
    (EVENT, "endDate"),
    (EVENT, "endTime"),
    (EVENT, "end_time"),
    (EVENT, "closeTime"),
    (EVENT, "close_time"),
)
LIQUIDITY = _spec(
    (MARKET, "liquidity"),
    (MARKET, "liquidityNum"),
    (MARKET, "liquidityUsd"),
    (MARKET, "liquidity_usd"),
    (EVENT, "liquidity"),
)
VOLUME_24H = _spec(
    (MARKET, "volume24h"),
    (MARKET, "volume24hr"),
    (MARKET, "volume24Hour"),
    (EVENT, "volume24h"),
    (EVENT, "volume24hr"),
)
OPEN_INTEREST = _spec(
    (MARKET, "openInterest"),
    (MARKET, "open_interest"),
    (MARKET, "openInterestUsd"),
    (MARKET, "open_interest_usd"),
    (MARKET, "openInterestUSD"),
    (EVENT, "openInterest"),
    (EVENT, "open_interest"),
    (EVENT, "openInterestUsd"),
    (EVENT, "open_interest_usd"),
    (EVENT, "openInterestUSD"),
)
RESTRICTED = _spec((MARKET, "restricted"), (EVENT, "restricted"))
TAGS = _spec((MARKET, "tags"), (EVENT, "tags"))
OUTCOMES = _spec((MARKET, "outcomes"), (MARKET, "outcomeNames"), (MARKET, "outcome_names"))
OUTCOME_PRICES = _spec((MARKET, "outcomePrices"), (MARKET, "outcome_prices"))


def resolve_field(
    sources: Mapping[str, Mapping[str, Any]],
    spec: FieldSpec,
    coerce: Callable[[Any], Any] = lambda value: value,
) -> Any:
    """Return the first candidate whose coerced value is not None."""

    for source, key in spec.candidates:
        payload = sources.get(source)
        if not payload or key not in payload:
            continue
        value = coerce(payload[key])
        if value is not None:
            return value
    return None


def has_field(sources: Mapping[str, Mapping[str, Any]], spec: FieldSpec) -> bool:
    """Report raw key presence on any source, regardless of the value."""

    return any(
        key in (sources.get(source) or {}) for source, key in spec.candidates
    )


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _as_metric(value: Any) -> float | None:
    number = _as_float(value)
    if number is None:
        return None
    return max(number, 0.0)


def _as_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no", ""}:
            return False
        return None
    return bool(value)


def _as_list(value: Any) -> list[Any] | None:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, list) else None
    return None


def _non_empty_list(value: Any) -> list[Any] | None:
    return value if isinstance(value, list) and value else None


def _from_epoch(value: float) -> datetime | None:
    seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        numeric = _as_float(value)
        return _from_epoch(numeric) if numeric is not None else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    numeric = _as_float(text)
    if numeric is not None:
        return _from_epoch(numeric)
    try:
        parsed = date_parser.isoparse(text)
    except (ValueError, OverflowError):
        try:
            parsed = date_parser.parse(text)
        except (ValueError, OverflowError, TypeError):
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_tags(raw_tags: Any) -> tuple[TagRef, ...]:
    if not isinstance(raw_tags, list):
        return ()
    tags: dict[str, TagRef] = {}
    for tag in raw_tags:
        if isinstance(tag, str):
            slug, name = tag, tag
        elif isinstance(tag, dict) and tag.get("slug"):
            slug, name = tag["slug"], tag.get("name") or tag.get("label") or tag["slug"]
        elif (
            isinstance(tag, dict)
            and isinstance(tag.get("tag"), dict)
            and tag["tag"].get("slug")
        ):
            inner = tag["tag"]
            slug, name = inner["slug"], inner.get("name") or inner.get("label") or inner["slug"]
        else:
            continue
        normalized_slug = str(slug).strip().lower()
        if normalized_slug and normalized_slug not in tags:
            tags[normalized_slug] = TagRef(slug=normalized_slug, name=str(name))
    return tuple(tags.values())


def _probability(value: Any) -> float | None:
    number = _as_float(value)
    if number is None or number < 0 or number > 1:
        return None
    return number


def normalize_outcomes(raw_outcomes: Any, raw_prices: Any) -> tuple[OutcomeRef, ...]:
    """Reconcile outcome descriptors with the parallel ``outcomePrices`` list."""

    descriptors = _as_list(raw_outcomes) or []
    prices = _as_list(raw_prices) or []
    count = max(len(descriptors), len(prices))

    outcomes: list[OutcomeRef] = []
    for index in range(count):
        descriptor = descriptors[index] if index < len(descriptors) else None
        name: str | None = None
        probability: float | None = None
        if isinstance(descriptor, dict):
            name = _as_text(
                descriptor.get("name") or descriptor.get("title") or descriptor.get("outcome")
            )
            probability = _probability(descriptor.get("probability"))
            if probability is None:
                probability = _probability(descriptor.get("price"))
        else:
            name = _as_text(descriptor)

        if probability is None and index < len(prices):
            probability = _probability(prices[index])

        if name is None:
            name = ("Yes", "No")[index] if count == 2 else f"Outcome {index + 1}"
        outcomes.append(OutcomeRef(name=name, probability=probability))
    return tuple(outcomes)


def build_market_url(slug: str | None, event_slug: str | None) -> str | None:
    if slug:
        return f"{MARKET_URL_BASE}/market/{slug}"
    if event_slug:
        return f"{MARKET_URL_BASE}/event/{event_slug}"
    return None


def slim_event_payload(event: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in event.items() if key != "markets"}


def normalize_market(
    event: Mapping[str, Any],
    market: Mapping[str, Any],
    index: int,
    *,
    allowed_tags: frozenset[str] = frozenset(),
    excluded_tags: frozenset[str] = frozenset(),
) -> NormalizedMarket:
    event = event if isinstance(event, Mapping) else {}
    market = market if isinstance(market, Mapping) else {}
    sources = {MARKET: market, EVENT: event}

    event_id = resolve_field(sources, EVENT_ID, _as_text)
    market_id = resolve_field(sources, MARKET_ID, _as_text) or f"{event_id or 'event'}:{index}"
    slug = resolve_field(sources, SLUG, _as_text)
    event_slug = resolve_field(sources, EVENT_SLUG, _as_text)

    # Market-level tags win; event tags apply only when the market has none.
    tags = normalize_tags(resolve_field(sources, TAGS, _non_empty_list))
    slugs = {tag.slug for tag in tags}

    return NormalizedMarket(
        market_id=market_id,
        event_id=event_id,
        slug=slug,
        event_slug=event_slug,
        question=resolve_field(sources, QUESTION, _as_text) or "Untitled market",
        description=resolve_field(sources, DESCRIPTION, _as_text),
        resolution_source=resolve_field(sources, RESOLUTION_SOURCE, _as_text),
        end_date=resolve_field(sources, END_DATE, parse_datetime),
        liquidity=resolve_field(sources, LIQUIDITY, _as_metric) or 0.0,
        volume24h=resolve_field(sources, VOLUME_24H, _as_metric) or 0.0,
        open_interest=resolve_field(sources, OPEN_INTEREST, _as_metric) or 0.0,
        tags=tags,
        outcomes=normalize_outcomes(
            resolve_field(sources, OUTCOMES, _as_list),
            resolve_field(sources, OUTCOME_PRICES, _as_list),
        ),
        restricted=bool(resolve_field(sources, RESTRICTED, _as_bool)),
        has_allowed_tag=bool(slugs & allowed_tags),
        is_excluded=bool(slugs & excluded_tags),
        market_url=build_market_url(slug, event_slug),
        has_liquidity_field=has_field(sources, LIQUIDITY),
        has_volume24h_field=has_field(sources, VOLUME_24H),
        has_open_interest_field=has_field(sources, OPEN_INTEREST),
        has_resolution_source_field=has_field(sources, RESOLUTION_SOURCE),
        has_end_date_field=has_field(sources, END_DATE),
        raw_data={"event": slim_event_payload(event), "market": dict(market)},
    )


def normalize_events(
    events: Iterable[Any],
    *,
    allowed_tags: frozenset[str] = frozenset(),
    excluded_tags: frozenset[str] = frozenset(),
) -> list[NormalizedMarket]:
    """Flatten events into canonical markets, keeping the first of any duplicate id."""

    markets: list[NormalizedMarket] = []
    seen: set[str] = set()
    for event in events:
        if not isinstance(event, Mapping):
            continue
        raw_markets = event.get("markets")
        if not isinstance(raw_markets, list):
            continue
        for index, raw_market in enumerate(raw_markets):
            if not isinstance(raw_market, Mapping):
                continue
            normalized = normalize_market(
                event,
                raw_market,
                index,
                allowed_tags=allowed_tags,
                excluded_tags=excluded_tags,
            )
            if normalized.market_id in seen:
                logger.warning(
                    "Skipping duplicate market {} from event {}",
                    normalized.market_id,
                    normalized.event_id,
                )
                continue
            seen.add(normalized.market_id)
            markets.append(normalized)
    return markets
