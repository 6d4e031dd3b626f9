from datetime import datetime

from pydantic import BaseModel, Field

from .domain import SyncResult


class SyncStats(BaseModel):
    events: int = 0
    markets: int = 0


class ReferenceValues(BaseModel):
    liquidity: float = 0.0
    volume24h: float = 0.0
    open_interest: float = 0.0


class SyncStatus(BaseModel):
    last_attempted_at: datetime | None = None
    last_succeeded_at: datetime | None = None
    last_error: str | None = None
    last_stats: SyncStats | None = None
    last_refs: ReferenceValues | None = None
    last_run_id: str | None = None

    model_config = {"from_attributes": True}


class SyncRunResult(BaseModel):
    run_id: str
    event_count: int
    market_count: int
    refs: ReferenceValues
    started_at: datetime
    finished_at: datetime
    flag_counts: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncRunResult":
        return cls(
            run_id=result.run_id,
            event_count=result.event_count,
            market_count=result.market_count,
            refs=ReferenceValues(**result.refs.to_dict()),
            started_at=result.started_at,
            finished_at=result.finished_at,
            flag_counts=dict(result.flag_counts),
        )


class SyncResponse(BaseModel):
    ok: bool
    result: SyncRunResult | None = None
    error: str | None = None
