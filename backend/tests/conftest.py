from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import BACKEND_DIR, Settings
from app.core.score_config import load_default_config, resolve_config
from app.db import build_db_components, init_db


@pytest.fixture
def sample_event_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_event.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def default_score_config():
    return resolve_config(load_default_config(BACKEND_DIR / "config" / "app-config.json"))


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        ingestion_page_size=5,
        ingestion_filters={},
        database_url=f"sqlite:///{tmp_path/'screener.db'}",
        sync_token="secret-token",
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(test_settings):
    engine, factory = build_db_components(str(test_settings.database_url))
    init_db(engine)
    yield factory
    engine.dispose()
