"""Market, score, and annotation persistence helpers."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import uuid4

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from app.domain import NormalizedMarket, ReferenceStats, ScoreResult
from app.models import Annotation, Market, Score, ScoreHistory


class MarketRepository:
    """Encapsulate market persistence for the sync pipeline and read paths."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def upsert_market(self, market: NormalizedMarket, *, seen_at: datetime) -> Market:
        existing = self._session.get(Market, market.market_id)
        if existing is None:
            existing = Market(market_id=market.market_id)
            self._session.add(existing)

        existing.event_id = market.event_id
        existing.slug = market.slug
        existing.event_slug = market.event_slug
        existing.question = market.question
        existing.description = market.description
        existing.resolution_source = market.resolution_source
        existing.end_date = market.end_date
        existing.liquidity = market.liquidity
        existing.volume24h = market.volume24h
        existing.open_interest = market.open_interest
        existing.tags = [tag.to_dict() for tag in market.tags]
        existing.outcomes = [outcome.to_dict() for outcome in market.outcomes] or None
        existing.is_multi_outcome = market.is_multi_outcome
        existing.restricted = market.restricted
        existing.has_allowed_tag = market.has_allowed_tag
        existing.is_excluded = market.is_excluded
        existing.market_url = market.market_url
        existing.field_presence = {
            "liquidity": market.has_liquidity_field,
            "volume24h": market.has_volume24h_field,
            "open_interest": market.has_open_interest_field,
            "resolution_source": market.has_resolution_source_field,
            "end_date": market.has_end_date_field,
        }
        existing.raw_data = market.raw_data or {}
        existing.last_seen_at = seen_at
        return existing

    def upsert_score(
        self,
        market_id: str,
        result: ScoreResult,
        *,
        refs: ReferenceStats,
        score_version: str,
        computed_at: datetime,
    ) -> Score:
        existing = self._session.get(Score, market_id)
        if existing is None:
            existing = Score(market_id=market_id)
            self._session.add(existing)

        existing.total_score = result.total_score
        existing.components = dict(result.components)
        existing.flags = list(result.flags)
        existing.score_version = score_version
        existing.refs = refs.to_dict()
        existing.days_to_expiry = result.days_to_expiry
        existing.memo_mode = result.memo_mode
        existing.computed_at = computed_at
        return existing

    def append_score_history(
        self,
        market_id: str,
        result: ScoreResult,
        *,
        refs: ReferenceStats,
        score_version: str,
        computed_at: datetime,
        run_id: str | None = None,
    ) -> ScoreHistory:
        entry = ScoreHistory(
            score_history_id=str(uuid4()),
            market_id=market_id,
            run_id=run_id,
            total_score=result.total_score,
            components=dict(result.components),
            flags=list(result.flags),
            score_version=score_version,
            refs=refs.to_dict(),
            computed_at=computed_at,
        )
        self._session.add(entry)
        return entry

    def ensure_annotation(self, market_id: str) -> Annotation:
        """Create the analyst annotation placeholder without touching existing state."""

        existing = self._session.get(Annotation, market_id)
        if existing is None:
            existing = Annotation(market_id=market_id)
            self._session.add(existing)
        return existing

    # ------------------------------------------------------------------
    # Queries

    def get_market(self, market_id: str) -> Market | None:
        return self._session.get(Market, market_id)

    def list_market_ids(self) -> set[str]:
        return set(self._session.execute(select(Market.market_id)).scalars().all())

    def count_scores(self) -> int:
        return int(self._session.execute(select(func.count()).select_from(Score)).scalar_one())

    def score_history(self, market_id: str, *, limit: int | None = None) -> list[ScoreHistory]:
        query = (
            select(ScoreHistory)
            .where(ScoreHistory.market_id == market_id)
            .order_by(desc(ScoreHistory.computed_at))
        )
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())

    def count_score_history(self, market_ids: Iterable[str] | None = None) -> int:
        query = select(func.count()).select_from(ScoreHistory)
        if market_ids is not None:
            query = query.where(ScoreHistory.market_id.in_(list(market_ids)))
        return int(self._session.execute(query).scalar_one())
