from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _normalize_database_url(value: str | None, fallback: str) -> str:
    raw = (value or fallback).strip() or fallback
    # Some dashboards accidentally store quoted values.
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1].strip()

    if "://" not in raw:
        return raw

    scheme, suffix = raw.split("://", 1)
    scheme = scheme.lower()

    if scheme in {
        "postgres",
        "postgresql",
        "postgresql+psycopg",
        "postgresql+asyncpg",
        "postgresql+pg8000",
        "postgresql+psycopg2",
    }:
        url = f"postgresql+psycopg2://{suffix}"
        if "sslmode" not in url and "@localhost" not in url and "@127.0.0.1" not in url:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}sslmode=require"
        return url

    return raw


@dataclass(frozen=True)
class Settings:
    env: str
    port: int
    database_url: str
    db_pool_size: int
    db_max_overflow: int
    db_pool_timeout: int
    db_pool_recycle: int
    cors_origins: list[str]
    debug: bool
    default_mode: str
    default_question_count: int
    default_time_limit_seconds: int
    max_time_bonus: int
    prediction_points: int
    max_favorite_movies: int
    content_poll_attempts: int
    content_poll_interval: float
    ws_idle_timeout_seconds: int
    dispatcher_mode: str
    api_base_url: str
    dispatch_timeout: float
    llm_timeout: float
    enable_llm_generation: bool
    gemini_project: str
    gemini_location: str
    gemini_model: str
    gemini_max_output_tokens: int
    gemini_temperature: float
    enable_prometheus_metrics: bool
    session_file: str
    log_level: str

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        return self.env.lower() not in {"development", "dev", "test", "testing"}

    def validate(self) -> None:
        """Raise early on dangerous mis-configurations in non-dev environments."""
        if self.default_mode not in {"trivia", "predictions"}:
            raise RuntimeError(f"DEFAULT_MODE must be 'trivia' or 'predictions', got {self.default_mode!r}")
        if self.dispatcher_mode not in {"local", "http"}:
            raise RuntimeError(f"DISPATCHER_MODE must be 'local' or 'http', got {self.dispatcher_mode!r}")
        if self.is_production and self.is_sqlite:
            raise RuntimeError("DATABASE_URL must point at PostgreSQL in production")


settings = Settings(
    env=os.getenv("ENV", "development"),
    port=_as_int(os.getenv("PORT"), 8000),
    database_url=_normalize_database_url(
        os.getenv("DATABASE_URL"),
        "sqlite:///./movienight.db",
    ),
    db_pool_size=max(1, _as_int(os.getenv("DB_POOL_SIZE"), 5)),
    db_max_overflow=max(0, _as_int(os.getenv("DB_MAX_OVERFLOW"), 10)),
    db_pool_timeout=max(1, _as_int(os.getenv("DB_POOL_TIMEOUT"), 30)),
    db_pool_recycle=max(60, _as_int(os.getenv("DB_POOL_RECYCLE"), 1800)),
    cors_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", os.getenv("FRONTEND_URL", "http://localhost:3000")).split(",")
        if origin.strip()
    ],
    debug=_as_bool(os.getenv("DEBUG"), False),
    default_mode=os.getenv("DEFAULT_MODE", "trivia").strip().lower(),
    default_question_count=max(1, _as_int(os.getenv("DEFAULT_QUESTION_COUNT"), 10)),
    default_time_limit_seconds=max(1, _as_int(os.getenv("DEFAULT_TIME_LIMIT_SECONDS"), 20)),
    max_time_bonus=max(0, _as_int(os.getenv("MAX_TIME_BONUS"), 50)),
    prediction_points=max(1, _as_int(os.getenv("PREDICTION_POINTS"), 10)),
    max_favorite_movies=max(1, _as_int(os.getenv("MAX_FAVORITE_MOVIES"), 5)),
    content_poll_attempts=max(1, _as_int(os.getenv("CONTENT_POLL_ATTEMPTS"), 5)),
    content_poll_interval=max(0.0, _as_float(os.getenv("CONTENT_POLL_INTERVAL"), 1.0)),
    ws_idle_timeout_seconds=max(5, _as_int(os.getenv("WS_IDLE_TIMEOUT_SECONDS"), 45)),
    dispatcher_mode=os.getenv("DISPATCHER_MODE", "local").strip().lower(),
    api_base_url=os.getenv("API_BASE_URL", "http://localhost:8000/api").strip().rstrip("/"),
    dispatch_timeout=max(0.5, _as_float(os.getenv("DISPATCH_TIMEOUT"), 30.0)),
    llm_timeout=max(0.3, _as_float(os.getenv("LLM_TIMEOUT"), 8.0)),
    enable_llm_generation=_as_bool(os.getenv("ENABLE_LLM_GENERATION"), True),
    gemini_project=(
        os.getenv("GEMINI_PROJECT")
        or os.getenv("GOOGLE_CLOUD_PROJECT")
        or os.getenv("GCP_PROJECT")
        or ""
    ).strip(),
    gemini_location=os.getenv("GEMINI_LOCATION", "us-central1").strip(),
    gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash").strip(),
    gemini_max_output_tokens=max(1, _as_int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS"), 512)),
    gemini_temperature=max(0.0, min(2.0, _as_float(os.getenv("GEMINI_TEMPERATURE"), 0.8))),
    enable_prometheus_metrics=_as_bool(os.getenv("ENABLE_PROMETHEUS_METRICS"), True),
    session_file=os.getenv(
        "MOVIENIGHT_SESSION_FILE",
        str(Path.home() / ".movienight" / "session.json"),
    ).strip(),
    log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
)

settings.validate()
