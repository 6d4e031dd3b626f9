from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_DIR = Path(__file__).resolve().parents[2]


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str | None = Field(
        default="sqlite:///./data/screener.db",
        description="SQLAlchemy compatible database URL",
    )
    supabase_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Pooled Postgres connection string required for production runs",
    )
    polymarket_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for the Polymarket Gamma API",
    )
    polymarket_events_path: str = Field(
        default="/events",
        description="Relative path for the paginated events endpoint",
    )
    ingestion_page_size: int = Field(
        100, description="Number of events requested per page", ge=1
    )
    ingestion_filters: dict[str, Any] = Field(
        default_factory=lambda: {"active": True, "closed": False},
        description="Additional query parameters applied when fetching events",
    )
    ingestion_max_retries: int = Field(
        3, description="Retries per page after a failed upstream request", ge=0
    )
    ingestion_retry_base_delay_seconds: float = Field(
        0.4, description="Base delay for exponential backoff between page retries", ge=0
    )
    ingestion_page_delay_seconds: float = Field(
        0.2, description="Fixed delay between consecutive page requests", ge=0
    )
    ingestion_timeout_seconds: float = Field(
        30.0, description="HTTP timeout for upstream requests", gt=0
    )
    score_config_path: Path = Field(
        default=BACKEND_DIR / "config" / "app-config.json",
        description="JSON file holding the default scoring configuration",
    )
    sync_lock_ttl_seconds: int = Field(
        default=900,
        description="Lease duration for the sync run lock before another run may take over",
        ge=1,
    )
    sync_token: str | None = Field(
        default=None,
        description="Shared secret required by the HTTP sync trigger",
    )
    log_level: str = Field(default="INFO", description="Minimum loguru level for CLI runs")

    @field_validator("database_url", "supabase_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if not value.strip():
            return None
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.supabase_db_url:
                raise ValueError(
                    "SUPABASE_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.supabase_db_url))
        if not self.database_url:
            raise ValueError("DATABASE_URL is not set")
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
