from __future__ import annotations

import secrets
from typing import Annotated, Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from . import schemas
from .core.config import Settings, get_settings, settings
from .core.score_config import ScoreConfig, load_default_config, resolve_config
from .db import get_db, init_db
from .domain import SyncResult
from .repositories import SyncInProgressError, SyncRepository

app = FastAPI(title="Market Screener API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
def on_startup() -> None:
    """Create tables when the API boots."""

    init_db()


def _settings() -> Settings:
    return get_settings()


def _sync_repository(db=Depends(get_db)) -> SyncRepository:
    return SyncRepository(db)


def _sync_runner() -> Callable[[], SyncResult]:
    """Provide the sync entry point; imported lazily to keep API startup light."""

    from pipelines.sync_run import run_sync

    return run_sync


def _require_sync_token(
    authorization: Annotated[str | None, Header()] = None,
    token: Annotated[str | None, Query(description="Sync token")] = None,
    config: Settings = Depends(_settings),
) -> None:
    expected = config.sync_token
    if not expected:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    provided = token
    if authorization and authorization.startswith("Bearer "):
        provided = authorization[len("Bearer ") :]
    if not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Unauthorized.")


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


@app.get("/status", response_model=schemas.SyncStatus, tags=["sync"])
def sync_status(repo: SyncRepository = Depends(_sync_repository)):
    """Return the bookkeeping of the most recent sync attempt."""

    status = repo.get_status()
    if status is None:
        return schemas.SyncStatus()
    return schemas.SyncStatus.model_validate(status)


@app.api_route(
    "/sync",
    methods=["GET", "POST"],
    response_model=schemas.SyncResponse,
    tags=["sync"],
    dependencies=[Depends(_require_sync_token)],
)
def trigger_sync(runner: Callable[[], SyncResult] = Depends(_sync_runner)):
    """Run a full sync synchronously; scheduled triggers and operators share this route."""

    try:
        result = runner()
    except SyncInProgressError as exc:
        return JSONResponse(status_code=409, content={"ok": False, "error": str(exc)})
    except Exception as exc:  # noqa: BLE001
        return JSONResponse(
            status_code=500, content={"ok": False, "error": str(exc) or type(exc).__name__}
        )
    return schemas.SyncResponse(ok=True, result=schemas.SyncRunResult.from_result(result))


@app.get("/score-config", response_model=ScoreConfig, tags=["sync"])
def effective_score_config(
    repo: SyncRepository = Depends(_sync_repository),
    config: Settings = Depends(_settings),
):
    """Return the configuration the next sync will score with."""

    defaults = load_default_config(config.score_config_path)
    return resolve_config(defaults, repo.get_score_config_override())
