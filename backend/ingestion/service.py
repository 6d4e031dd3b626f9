from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from loguru import logger
from sqlalchemy.orm import Session

from app.core.score_config import ScoreConfig
from app.domain import NormalizedMarket

from .client import PolymarketClient
from .normalize import normalize_events


@contextmanager
def session_scope(session_factory: Callable[[], Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@dataclass(slots=True)
class CatalogSnapshot:
    event_count: int
    markets: list[NormalizedMarket] = field(default_factory=list)


def collect_markets(client: PolymarketClient, config: ScoreConfig) -> CatalogSnapshot:
    """Fetch the full events catalog and normalize every nested market."""

    events = list(client.iter_events())
    markets = normalize_events(
        events,
        allowed_tags=config.allowed_tag_slugs(),
        excluded_tags=config.excluded_tag_slugs(),
    )
    logger.info("Normalized {} markets from {} events", len(markets), len(events))
    return CatalogSnapshot(event_count=len(events), markets=markets)
