"""End-to-end sync: fetch, normalize, score, and persist the market catalog."""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence
from uuid import uuid4

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, get_settings
from app.core.score_config import ScoreConfig, load_default_config, resolve_config
from app.db import build_db_components, init_db
from app.domain import NormalizedMarket, ReferenceStats, SyncResult
from app.repositories import MarketRepository, SyncInProgressError, SyncRepository
from ingestion.client import PolymarketClient
from ingestion.service import collect_markets, session_scope
from scoring import compute_refs, score_market

__all__ = [
    "SyncConfigurationError",
    "SyncInProgressError",
    "run_sync",
    "select_top_markets",
]


class SyncConfigurationError(RuntimeError):
    """Raised before any fetch when the run cannot be configured."""


def select_top_markets(
    markets: Sequence[NormalizedMarket], max_markets: int | None
) -> list[NormalizedMarket]:
    """Deterministically keep the top-N markets by liquidity, volume, then open interest."""

    if not max_markets or len(markets) <= max_markets:
        return list(markets)
    ranked = sorted(
        markets,
        key=lambda m: (-m.liquidity, -m.volume24h, -m.open_interest, m.market_id),
    )
    return ranked[:max_markets]


def _default_client(settings: Settings) -> PolymarketClient:
    return PolymarketClient(
        base_url=str(settings.polymarket_base_url),
        events_path=settings.polymarket_events_path,
        page_size=settings.ingestion_page_size,
        filters=settings.ingestion_filters,
        max_retries=settings.ingestion_max_retries,
        retry_base_delay=settings.ingestion_retry_base_delay_seconds,
        page_delay=settings.ingestion_page_delay_seconds,
        timeout=settings.ingestion_timeout_seconds,
    )


def _batches(
    markets: Sequence[NormalizedMarket], size: int
) -> list[Sequence[NormalizedMarket]]:
    return [markets[start : start + size] for start in range(0, len(markets), size)]


def _load_config(
    config_path: Path, session_factory: Callable[[], Session]
) -> ScoreConfig:
    try:
        defaults = load_default_config(config_path)
    except (OSError, ValueError) as exc:
        raise SyncConfigurationError(
            f"Unable to load score config from {config_path}: {exc}"
        ) from exc
    with session_scope(session_factory) as session:
        override = SyncRepository(session).get_score_config_override()
    if override:
        logger.info("Applying stored score config override")
    return resolve_config(defaults, override)


def _persist_market(
    session_factory: Callable[[], Session],
    market: NormalizedMarket,
    *,
    config: ScoreConfig,
    refs: ReferenceStats,
    run_id: str,
    now: datetime,
) -> tuple[str, ...]:
    result = score_market(market, config, refs, now=now)
    with session_scope(session_factory) as session:
        repo = MarketRepository(session)
        repo.upsert_market(market, seen_at=now)
        # Parent row must exist before the dependent rows reference it.
        session.flush()
        repo.upsert_score(
            market.market_id,
            result,
            refs=refs,
            score_version=config.score_version,
            computed_at=now,
        )
        repo.append_score_history(
            market.market_id,
            result,
            refs=refs,
            score_version=config.score_version,
            computed_at=now,
            run_id=run_id,
        )
        repo.ensure_annotation(market.market_id)
    return result.flags


def _write_batches(
    session_factory: Callable[[], Session],
    markets: Sequence[NormalizedMarket],
    *,
    config: ScoreConfig,
    refs: ReferenceStats,
    run_id: str,
    now: datetime,
    renew_lease: Callable[[], None],
) -> Counter[str]:
    flag_counts: Counter[str] = Counter()
    batches = _batches(markets, config.batch_size)
    with ThreadPoolExecutor(
        max_workers=config.batch_size, thread_name_prefix="sync-writer"
    ) as executor:
        for index, batch in enumerate(batches, start=1):
            futures = [
                executor.submit(
                    _persist_market,
                    session_factory,
                    market,
                    config=config,
                    refs=refs,
                    run_id=run_id,
                    now=now,
                )
                for market in batch
            ]
            wait(futures)
            for future in futures:
                flag_counts.update(future.result())
            logger.debug("Wrote batch {}/{} ({} markets)", index, len(batches), len(batch))
            renew_lease()
    return flag_counts


def run_sync(
    settings: Settings | None = None,
    *,
    config_path: Path | None = None,
    max_markets: int | None = None,
    batch_size: int | None = None,
    client_factory: Callable[[], PolymarketClient] | None = None,
    session_factory: sessionmaker[Session] | Callable[[], Session] | None = None,
    now: Callable[[], datetime] | None = None,
) -> SyncResult:
    """Run one sync and return its summary.

    Markets flushed by earlier batches stay committed if a later batch fails;
    re-running the sync converges because every write is keyed by market id.
    """

    settings = settings or get_settings()
    clock = now or (lambda: datetime.now(timezone.utc))
    started_at = clock()
    run_id = str(uuid4())

    engine = None
    if session_factory is None:
        try:
            database_url = settings.resolved_database_url
        except ValueError as exc:
            raise SyncConfigurationError(str(exc)) from exc
        engine, session_factory = build_db_components(database_url)
        init_db(engine)

    try:
        try:
            with session_scope(session_factory) as session:
                SyncRepository(session).acquire_lock(
                    holder=run_id, now=started_at, ttl_seconds=settings.sync_lock_ttl_seconds
                )
        except IntegrityError as exc:
            raise SyncInProgressError("Sync lock was taken by a concurrent run") from exc

        try:
            with session_scope(session_factory) as session:
                SyncRepository(session).mark_attempted(attempted_at=started_at, run_id=run_id)
            logger.info("Starting sync run {}", run_id)
            return _run_locked(
                settings,
                session_factory,
                run_id=run_id,
                started_at=started_at,
                clock=clock,
                config_path=config_path or settings.score_config_path,
                max_markets=max_markets,
                batch_size=batch_size,
                client_factory=client_factory,
            )
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.exception("Sync run {} failed: {}", run_id, message)
            with session_scope(session_factory) as session:
                SyncRepository(session).mark_failed(error=message)
            raise
        finally:
            with session_scope(session_factory) as session:
                SyncRepository(session).release_lock(holder=run_id)
    finally:
        if engine is not None:
            engine.dispose()


def _run_locked(
    settings: Settings,
    session_factory: Callable[[], Session],
    *,
    run_id: str,
    started_at: datetime,
    clock: Callable[[], datetime],
    config_path: Path,
    max_markets: int | None,
    batch_size: int | None,
    client_factory: Callable[[], PolymarketClient] | None,
) -> SyncResult:
    def renew_lease() -> None:
        with session_scope(session_factory) as session:
            SyncRepository(session).renew_lock(
                holder=run_id, now=clock(), ttl_seconds=settings.sync_lock_ttl_seconds
            )

    config = _load_config(config_path, session_factory)
    updates: dict[str, int] = {}
    if max_markets is not None:
        updates["max_markets"] = max_markets
    if batch_size is not None:
        updates["batch_size"] = batch_size
    if updates:
        config = ScoreConfig.model_validate({**config.model_dump(), **updates})

    client = client_factory() if client_factory else _default_client(settings)
    try:
        snapshot = collect_markets(client, config)
    finally:
        client.close()
    renew_lease()

    markets = select_top_markets(snapshot.markets, config.max_markets)
    if len(markets) < len(snapshot.markets):
        logger.info(
            "Trimmed catalog from {} to {} markets", len(snapshot.markets), len(markets)
        )

    refs = compute_refs(markets, config.ref_percentile)
    logger.info("Reference stats: {}", refs.to_dict())

    computed_at = clock()

    flag_counts = _write_batches(
        session_factory,
        markets,
        config=config,
        refs=refs,
        run_id=run_id,
        now=computed_at,
        renew_lease=renew_lease,
    )

    finished_at = clock()
    with session_scope(session_factory) as session:
        SyncRepository(session).mark_succeeded(
            succeeded_at=finished_at,
            event_count=snapshot.event_count,
            market_count=len(markets),
            refs=refs,
        )

    logger.info(
        "Sync run {} complete: {} events, {} markets",
        run_id,
        snapshot.event_count,
        len(markets),
    )
    return SyncResult(
        run_id=run_id,
        event_count=snapshot.event_count,
        market_count=len(markets),
        refs=refs,
        started_at=started_at,
        finished_at=finished_at,
        flag_counts=dict(flag_counts),
    )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync and score the Polymarket catalog")
    parser.add_argument(
        "--max-markets",
        type=int,
        default=None,
        help="Keep only the top N markets by liquidity, volume, and open interest",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Number of markets written concurrently per batch",
    )
    parser.add_argument(
        "--config-path",
        type=Path,
        default=None,
        help="Override the default score config JSON file",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Write the JSON run summary to the specified path",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)

    try:
        result = run_sync(
            settings,
            config_path=args.config_path,
            max_markets=args.max_markets,
            batch_size=args.batch_size,
        )
    except SyncInProgressError as exc:
        logger.warning("{}", exc)
        return 2
    except Exception as exc:  # noqa: BLE001
        logger.error("Sync failed: {}", exc)
        return 1

    summary = result.to_dict()
    if args.summary_path:
        args.summary_path.parent.mkdir(parents=True, exist_ok=True)
        args.summary_path.write_text(
            json.dumps(summary, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )
        logger.info("Wrote sync summary to {}", args.summary_path)
    else:
        print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
