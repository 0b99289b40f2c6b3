from pathlib import Path

import pytest

from movienight.change_feed import ChangeFeed
from movienight.config import settings
from movienight.db import init_db, reset_database_engine
from movienight.gateway import PersistenceGateway
from movienight.services.gemini_service import GeminiRuntimeConfig, GeminiService


def offline_gemini() -> GeminiService:
    return GeminiService(
        GeminiRuntimeConfig(
            project="",
            location="us-central1",
            model="gemini-2.0-flash",
            timeout_seconds=1.0,
            max_output_tokens=64,
            temperature=0.2,
            enabled=False,
        )
    )


@pytest.fixture(autouse=True)
def isolated_db(tmp_path: Path):
    original_db_url = settings.database_url
    test_db = tmp_path / "movienight-test.db"
    test_url = f"sqlite:///{test_db}"

    object.__setattr__(settings, "database_url", test_url)
    reset_database_engine(test_url)
    init_db()

    try:
        yield
    finally:
        object.__setattr__(settings, "database_url", original_db_url)
        reset_database_engine(original_db_url)


@pytest.fixture(autouse=True)
def no_llm(monkeypatch):
    monkeypatch.setattr("movienight.generation.get_gemini_service", offline_gemini)


@pytest.fixture()
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture()
def gateway(feed: ChangeFeed) -> PersistenceGateway:
    return PersistenceGateway(feed)
