import asyncio
import time

import pytest

from movienight.services.gemini_service import (
    GeminiConfigurationError,
    GeminiRuntimeConfig,
    GeminiService,
    GeminiServiceError,
    GeminiServiceTimeoutError,
)


def _service(**overrides) -> GeminiService:
    values = {
        "project": "test-project",
        "location": "us-central1",
        "model": "gemini-2.0-flash",
        "timeout_seconds": 1.0,
        "max_output_tokens": 64,
        "temperature": 0.2,
    }
    values.update(overrides)
    return GeminiService(GeminiRuntimeConfig(**values))


def test_generate_text_returns_content(monkeypatch):
    service = _service()

    def fake_generate_sync(prompt: str, system, as_json: bool) -> str:
        return f"echo:{prompt}"

    monkeypatch.setattr(service, "_generate_sync", fake_generate_sync)
    result = asyncio.run(service.generate_text("hello"))

    assert result == "echo:hello"


def test_generate_json_extracts_array_from_chatty_reply(monkeypatch):
    service = _service()

    def fake_generate_sync(prompt: str, system, as_json: bool) -> str:
        assert as_json is True
        return 'Sure! Here you go:\n[{"question": "Q?"}]\nEnjoy.'

    monkeypatch.setattr(service, "_generate_sync", fake_generate_sync)
    payload = asyncio.run(service.generate_json("questions please"))

    assert payload == [{"question": "Q?"}]


def test_generate_json_rejects_prose(monkeypatch):
    service = _service()
    monkeypatch.setattr(service, "_generate_sync", lambda prompt, system, as_json: "no json here")

    with pytest.raises(GeminiServiceError):
        asyncio.run(service.generate_json("questions please"))


def test_generate_text_timeout(monkeypatch):
    service = _service(timeout_seconds=0.05)

    def slow_generate_sync(prompt: str, system, as_json: bool) -> str:
        time.sleep(0.3)
        return "late"

    monkeypatch.setattr(service, "_generate_sync", slow_generate_sync)

    with pytest.raises(GeminiServiceTimeoutError):
        asyncio.run(service.generate_text("hello"))


def test_generate_text_wraps_unexpected_errors(monkeypatch):
    service = _service()

    def broken_generate_sync(prompt: str, system, as_json: bool) -> str:
        raise RuntimeError("socket closed")

    monkeypatch.setattr(service, "_generate_sync", broken_generate_sync)

    with pytest.raises(GeminiServiceError):
        asyncio.run(service.generate_text("hello"))


def test_empty_prompt_is_rejected():
    with pytest.raises(ValueError):
        asyncio.run(_service().generate_text("   "))


def test_missing_project_is_a_configuration_error():
    service = _service(project="")

    assert service.is_configured is False
    with pytest.raises(GeminiConfigurationError):
        asyncio.run(service.generate_text("hello"))


def test_disabled_service_is_not_configured():
    assert _service(enabled=False).is_configured is False
    assert _service().is_configured is True


def test_generate_json_strips_code_fences(monkeypatch):
    service = _service()
    monkeypatch.setattr(
        service,
        "_generate_sync",
        lambda prompt, system, as_json: '```json\n{"content": "Nice try.", "shame": ["Heat"]}\n```',
    )

    payload = asyncio.run(service.generate_json("burn please"))

    assert payload == {"content": "Nice try.", "shame": ["Heat"]}
