from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.domain import ReferenceStats, SyncResult
from app.main import _settings, _sync_repository, _sync_runner, app
from app.repositories import SyncInProgressError

STARTED = datetime(2030, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def client(test_settings):
    """Test client that cleans up dependency overrides after each test."""
    app.dependency_overrides[_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


def _result() -> SyncResult:
    return SyncResult(
        run_id="run-1",
        event_count=3,
        market_count=5,
        refs=ReferenceStats(liquidity=1000.0, volume24h=50.0, open_interest=0.0),
        started_at=STARTED,
        finished_at=STARTED,
        flag_counts={"missing_tags": 2},
    )


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_status_before_first_run(client):
    mock_repo = MagicMock()
    mock_repo.get_status.return_value = None
    app.dependency_overrides[_sync_repository] = lambda: mock_repo

    response = client.get("/status")
    assert response.status_code == 200
    assert response.json()["last_succeeded_at"] is None
    assert response.json()["last_error"] is None


def test_status_reports_last_run(client):
    mock_repo = MagicMock()
    mock_repo.get_status.return_value = {
        "last_attempted_at": STARTED,
        "last_succeeded_at": STARTED,
        "last_error": None,
        "last_stats": {"events": 3, "markets": 5},
        "last_refs": {"liquidity": 1000.0, "volume24h": 50.0, "open_interest": 0.0},
        "last_run_id": "run-1",
    }
    app.dependency_overrides[_sync_repository] = lambda: mock_repo

    response = client.get("/status")
    assert response.status_code == 200
    payload = response.json()
    assert payload["last_stats"] == {"events": 3, "markets": 5}
    assert payload["last_run_id"] == "run-1"


@pytest.mark.parametrize(
    "headers,params",
    [({}, {}), ({"Authorization": "Bearer wrong"}, {}), ({}, {"token": "wrong"})],
)
def test_sync_requires_token(client, headers, params):
    runner = MagicMock()
    app.dependency_overrides[_sync_runner] = lambda: runner

    response = client.post("/sync", headers=headers, params=params)
    assert response.status_code == 401
    runner.assert_not_called()


def test_sync_rejects_when_token_not_configured(client, test_settings):
    runner = MagicMock()
    app.dependency_overrides[_sync_runner] = lambda: runner
    app.dependency_overrides[_settings] = lambda: test_settings.model_copy(
        update={"sync_token": None}
    )

    response = client.get("/sync", params={"token": "secret-token"})
    assert response.status_code == 401
    runner.assert_not_called()


def test_sync_runs_with_bearer_token(client):
    runner = MagicMock(return_value=_result())
    app.dependency_overrides[_sync_runner] = lambda: runner

    response = client.post("/sync", headers={"Authorization": "Bearer secret-token"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["result"]["market_count"] == 5
    assert payload["result"]["flag_counts"] == {"missing_tags": 2}
    runner.assert_called_once_with()


def test_sync_accepts_query_token(client):
    runner = MagicMock(return_value=_result())
    app.dependency_overrides[_sync_runner] = lambda: runner

    response = client.get("/sync", params={"token": "secret-token"})
    assert response.status_code == 200
    assert response.json()["result"]["event_count"] == 3


def test_sync_failure_returns_error(client):
    runner = MagicMock(side_effect=RuntimeError("Gamma API error 503 for https://x"))
    app.dependency_overrides[_sync_runner] = lambda: runner

    response = client.post("/sync", params={"token": "secret-token"})
    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "Gamma API error 503 for https://x"}


def test_sync_conflict_when_locked(client):
    runner = MagicMock(side_effect=SyncInProgressError("Sync already running"))
    app.dependency_overrides[_sync_runner] = lambda: runner

    response = client.post("/sync", params={"token": "secret-token"})
    assert response.status_code == 409
    assert response.json()["ok"] is False


def test_score_config_merges_override(client):
    mock_repo = MagicMock()
    mock_repo.get_score_config_override.return_value = {
        "weights": {"strategic_fit": 5},
        "ref_percentile": None,
    }
    app.dependency_overrides[_sync_repository] = lambda: mock_repo

    response = client.get("/score-config")
    assert response.status_code == 200
    payload = response.json()
    assert payload["weights"]["strategic_fit"] == 5
    assert payload["weights"]["liquidity_microstructure"] == 30
    assert payload["ref_percentile"] == 0.9
