"""Run status, lease lock, and score-config override persistence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, or_, update
from sqlalchemy.orm import Session

from app.domain import ReferenceStats
from app.models import SINGLETON_ID, ScoreConfigRecord, SyncLock, SyncStatus


class SyncInProgressError(RuntimeError):
    """Raised when another run still holds an unexpired sync lease."""


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back as naive UTC values.
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SyncRepository:
    """Encapsulate the singleton rows owned by the sync orchestrator."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Run status

    def get_status(self) -> SyncStatus | None:
        return self._session.get(SyncStatus, SINGLETON_ID)

    def _status_row(self) -> SyncStatus:
        status = self.get_status()
        if status is None:
            status = SyncStatus(id=SINGLETON_ID)
            self._session.add(status)
        return status

    def mark_attempted(self, *, attempted_at: datetime, run_id: str) -> SyncStatus:
        status = self._status_row()
        status.last_attempted_at = attempted_at
        status.last_error = None
        status.last_run_id = run_id
        return status

    def mark_succeeded(
        self,
        *,
        succeeded_at: datetime,
        event_count: int,
        market_count: int,
        refs: ReferenceStats,
    ) -> SyncStatus:
        status = self._status_row()
        status.last_succeeded_at = succeeded_at
        status.last_error = None
        status.last_stats = {"events": event_count, "markets": market_count}
        status.last_refs = refs.to_dict()
        return status

    def mark_failed(self, *, error: str) -> SyncStatus:
        status = self._status_row()
        status.last_error = error
        return status

    # ------------------------------------------------------------------
    # Lease lock

    def _claim(self, *condition, holder: str, now: datetime, ttl_seconds: int) -> bool:
        # Single conditional UPDATE so concurrent claimants cannot both win.
        result = self._session.execute(
            update(SyncLock)
            .where(SyncLock.id == SINGLETON_ID, *condition)
            .values(
                holder=holder,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def acquire_lock(self, *, holder: str, now: datetime, ttl_seconds: int) -> None:
        """Take the lease if it is free, expired, or already ours.

        Two runs racing to insert the first lease row surface as an
        ``IntegrityError`` on flush for the loser.
        """

        if self._claim(
            or_(SyncLock.expires_at <= now, SyncLock.holder == holder),
            holder=holder,
            now=now,
            ttl_seconds=ttl_seconds,
        ):
            return

        lock = self._session.get(SyncLock, SINGLETON_ID)
        if lock is None:
            self._session.add(
                SyncLock(
                    id=SINGLETON_ID,
                    holder=holder,
                    acquired_at=now,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                )
            )
            self._session.flush()
            return

        expires_at = _as_utc(lock.expires_at)
        raise SyncInProgressError(
            f"Sync already running (holder {lock.holder}, lease expires {expires_at.isoformat()})"
        )

    def renew_lock(self, *, holder: str, now: datetime, ttl_seconds: int) -> None:
        """Extend our lease; fails if another run has taken it over."""

        if not self._claim(
            SyncLock.holder == holder, holder=holder, now=now, ttl_seconds=ttl_seconds
        ):
            raise SyncInProgressError(f"Sync lease for run {holder} was lost")

    def release_lock(self, *, holder: str) -> bool:
        result = self._session.execute(
            delete(SyncLock).where(SyncLock.id == SINGLETON_ID, SyncLock.holder == holder)
        )
        return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Score config override

    def get_score_config_override(self) -> dict[str, Any] | None:
        record = self._session.get(ScoreConfigRecord, SINGLETON_ID)
        return record.to_override() if record else None
