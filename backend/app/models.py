from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

SINGLETON_ID = 1


class MarketState(str, Enum):
    NEW = "NEW"
    ON_DECK = "ON_DECK"
    ACTIVE = "ACTIVE"
    ARCHIVE = "ARCHIVE"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Market(Base):
    __tablename__ = "markets"

    market_id: Mapped[str] = mapped_column(String, primary_key=True)
    event_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    slug: Mapped[str | None] = mapped_column(String, nullable=True)
    event_slug: Mapped[str | None] = mapped_column(String, nullable=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolution_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    liquidity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    volume24h: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    open_interest: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    outcomes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_multi_outcome: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_allowed_tag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    market_url: Mapped[str | None] = mapped_column(String, nullable=True)
    field_presence: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    score: Mapped[Score | None] = relationship(
        "Score", back_populates="market", cascade="all, delete-orphan", uselist=False
    )
    annotation: Mapped[Annotation | None] = relationship(
        "Annotation", back_populates="market", cascade="all, delete-orphan", uselist=False
    )
    score_history: Mapped[list["ScoreHistory"]] = relationship(
        "ScoreHistory", back_populates="market", cascade="all, delete-orphan"
    )


class Score(Base):
    __tablename__ = "scores"

    market_id: Mapped[str] = mapped_column(
        String, ForeignKey("markets.market_id", ondelete="CASCADE"), primary_key=True
    )
    total_score: Mapped[float] = mapped_column(Float, nullable=False)
    components: Mapped[dict] = mapped_column(JSON, nullable=False)
    flags: Mapped[list] = mapped_column(JSON, nullable=False)
    score_version: Mapped[str] = mapped_column(String, nullable=False)
    refs: Mapped[dict] = mapped_column(JSON, nullable=False)
    days_to_expiry: Mapped[int | None] = mapped_column(Integer, nullable=True)
    memo_mode: Mapped[str | None] = mapped_column(String, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    market: Mapped[Market] = relationship("Market", back_populates="score")


class ScoreHistory(Base):
    __tablename__ = "score_history"

    score_history_id: Mapped[str] = mapped_column(String, primary_key=True)
    market_id: Mapped[str] = mapped_column(
        String, ForeignKey("markets.market_id", ondelete="CASCADE"), nullable=False
    )
    run_id: Mapped[str | None] = mapped_column(String, nullable=True)
    total_score: Mapped[float] = mapped_column(Float, nullable=False)
    components: Mapped[dict] = mapped_column(JSON, nullable=False)
    flags: Mapped[list] = mapped_column(JSON, nullable=False)
    score_version: Mapped[str] = mapped_column(String, nullable=False)
    refs: Mapped[dict] = mapped_column(JSON, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    market: Mapped[Market] = relationship("Market", back_populates="score_history")

    __table_args__ = (
        Index("ix_score_history_market_computed", "market_id", "computed_at"),
    )


class Annotation(Base):
    __tablename__ = "annotations"

    market_id: Mapped[str] = mapped_column(
        String, ForeignKey("markets.market_id", ondelete="CASCADE"), primary_key=True
    )
    state: Mapped[str] = mapped_column(String, nullable=False, default=MarketState.NEW.value)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    market: Mapped[Market] = relationship("Market", back_populates="annotation")


class SyncStatus(Base):
    __tablename__ = "sync_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    last_attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_succeeded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_stats: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_refs: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_run_id: Mapped[str | None] = mapped_column(String, nullable=True)


class ScoreConfigRecord(Base):
    """Operator-maintained override merged over the file defaults at run start."""

    __tablename__ = "score_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    weights: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    penalties: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    flags_thresholds: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ref_percentile: Mapped[float | None] = mapped_column(Float, nullable=True)
    memo_max_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_version: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_override(self) -> dict[str, object]:
        return {
            "weights": self.weights,
            "penalties": self.penalties,
            "flags_thresholds": self.flags_thresholds,
            "ref_percentile": self.ref_percentile,
            "memo_max_days": self.memo_max_days,
            "score_version": self.score_version,
        }


class SyncLock(Base):
    __tablename__ = "sync_lock"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    holder: Mapped[str] = mapped_column(String, nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
