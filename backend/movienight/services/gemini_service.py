from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import lru_cache
import json
import logging
from threading import Lock
from typing import Any

from google import genai
from google.auth.exceptions import DefaultCredentialsError
from google.genai import types as genai_types

from ..config import settings
from ..errors import ExternalServiceError
from ..metrics import LLM_CALLS_TOTAL

logger = logging.getLogger("movienight.gemini")


class GeminiServiceError(ExternalServiceError):
    """Base Gemini service error."""


class GeminiConfigurationError(GeminiServiceError):
    """Raised when Gemini cannot be initialized due to config/credentials issues."""


class GeminiServiceTimeoutError(GeminiServiceError):
    """Raised when Gemini generation exceeds timeout."""


@dataclass(frozen=True)
class GeminiRuntimeConfig:
    project: str
    location: str
    model: str
    timeout_seconds: float
    max_output_tokens: int
    temperature: float
    enabled: bool = True

    @classmethod
    def from_settings(cls) -> "GeminiRuntimeConfig":
        return cls(
            project=settings.gemini_project,
            location=settings.gemini_location,
            model=settings.gemini_model,
            timeout_seconds=settings.llm_timeout,
            max_output_tokens=settings.gemini_max_output_tokens,
            temperature=settings.gemini_temperature,
            enabled=settings.enable_llm_generation,
        )


class GeminiService:
    """Gemini text generation over Vertex AI with ADC auth."""

    def __init__(self, cfg: GeminiRuntimeConfig) -> None:
        self._cfg = cfg
        self._client: Any | None = None
        self._client_lock = Lock()

    @property
    def is_configured(self) -> bool:
        return self._cfg.enabled and bool(self._cfg.project)

    def _build_client(self) -> Any:
        if not self._cfg.enabled:
            raise GeminiConfigurationError("LLM generation is disabled")
        if not self._cfg.project:
            raise GeminiConfigurationError("GEMINI_PROJECT (or GOOGLE_CLOUD_PROJECT) is not set")

        try:
            return genai.Client(
                vertexai=True,
                project=self._cfg.project,
                location=self._cfg.location,
            )
        except DefaultCredentialsError as exc:
            logger.exception(
                "Gemini ADC credentials are unavailable",
                extra={"event": "gemini_adc_missing"},
            )
            raise GeminiConfigurationError("ADC credentials are not configured") from exc
        except Exception as exc:
            logger.exception(
                "Gemini client initialization failed",
                extra={"event": "gemini_client_init_failed"},
            )
            raise GeminiConfigurationError("Failed to initialize Gemini client") from exc

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        with self._client_lock:
            if self._client is None:
                self._client = self._build_client()
        return self._client

    @staticmethod
    def _extract_response_text(response: Any) -> str:
        text_value = (getattr(response, "text", None) or "").strip()
        if text_value:
            return text_value

        candidates = getattr(response, "candidates", None) or []
        for candidate in candidates:
            content = getattr(candidate, "content", None)
            parts = getattr(content, "parts", None) or []
            merged = [str(getattr(part, "text", "")).strip() for part in parts if getattr(part, "text", None)]
            if merged:
                return "\n".join(merged)
        return ""

    def _generate_sync(self, prompt: str, system: str | None, as_json: bool) -> str:
        client = self._get_client()
        config = genai_types.GenerateContentConfig(
            temperature=self._cfg.temperature,
            max_output_tokens=self._cfg.max_output_tokens,
            system_instruction=system,
            response_mime_type="application/json" if as_json else None,
        )
        response = client.models.generate_content(
            model=self._cfg.model,
            contents=prompt,
            config=config,
        )
        text_value = self._extract_response_text(response).strip()
        if not text_value:
            raise GeminiServiceError("Gemini returned an empty response")
        return text_value

    @staticmethod
    def _extract_json_payload(raw_text: str) -> Any:
        """Parse a JSON reply, tolerating code fences and chatter around the payload."""
        text_value = raw_text.strip()
        if text_value.startswith("```"):
            text_value = text_value.strip("`").strip()
            if text_value.lower().startswith("json"):
                text_value = text_value[4:].strip()

        try:
            return json.loads(text_value)
        except json.JSONDecodeError:
            pass

        # Trivia wants an array; burns and roasts want an object.
        for opener, closer in (("[", "]"), ("{", "}")):
            start = text_value.find(opener)
            end = text_value.rfind(closer)
            if start == -1 or end <= start:
                continue
            try:
                return json.loads(text_value[start : end + 1])
            except json.JSONDecodeError:
                continue

        raise GeminiServiceError("Gemini response is not valid JSON")

    async def generate_text(self, prompt: str, *, system: str | None = None, as_json: bool = False) -> str:
        cleaned_prompt = prompt.strip()
        if not cleaned_prompt:
            raise ValueError("Prompt is required")

        LLM_CALLS_TOTAL.labels(kind="json" if as_json else "text").inc()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._generate_sync, cleaned_prompt, system, as_json),
                timeout=self._cfg.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Gemini request timeout",
                extra={"event": "gemini_timeout", "reason": f"{self._cfg.model} after {self._cfg.timeout_seconds}s"},
            )
            raise GeminiServiceTimeoutError("Gemini request timed out") from exc
        except (GeminiServiceError, ValueError):
            raise
        except Exception as exc:
            logger.exception(
                "Gemini generation failed",
                extra={
                    "event": "gemini_generation_failed",
                    "reason": exc.__class__.__name__,
                },
            )
            raise GeminiServiceError("Gemini request failed") from exc

    async def generate_json(self, prompt: str, *, system: str | None = None) -> Any:
        raw_text = await self.generate_text(prompt, system=system, as_json=True)
        return self._extract_json_payload(raw_text)


@lru_cache(maxsize=1)
def get_gemini_service() -> GeminiService:
    return GeminiService(GeminiRuntimeConfig.from_settings())
