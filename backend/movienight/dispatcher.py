from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import aiohttp

from .config import settings
from .errors import (
    AppError,
    ConflictError,
    ExternalServiceError,
    HostOnlyError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .gateway import PersistenceGateway
from .generation import GenerationService, RoastContext

logger = logging.getLogger("movienight.dispatcher")


class Dispatcher(Protocol):
    async def generate_questions(self, lobby_id: str) -> list[dict[str, Any]]: ...

    async def generate_roast(self, context: RoastContext) -> dict[str, Any]: ...

    async def generate_final_burn(self, lobby_id: str) -> dict[str, Any]: ...

    async def update_scores(self, category_id: str, nominee_id: str) -> int: ...


class LocalDispatcher:
    """Runs the generators in-process against the shared gateway."""

    def __init__(self, gateway: PersistenceGateway, service: Optional[GenerationService] = None) -> None:
        self.service = service or GenerationService(gateway)

    async def generate_questions(self, lobby_id: str) -> list[dict[str, Any]]:
        rows = await self.service.generate_questions(lobby_id)
        return [row.model_dump(mode="json") for row in rows]

    async def generate_roast(self, context: RoastContext) -> dict[str, Any]:
        row = await self.service.generate_roast(context)
        return row.model_dump(mode="json")

    async def generate_final_burn(self, lobby_id: str) -> dict[str, Any]:
        row = await self.service.generate_final_burn(lobby_id)
        return row.model_dump(mode="json")

    async def update_scores(self, category_id: str, nominee_id: str) -> int:
        return self.service.update_scores(category_id, nominee_id)


_STATUS_ERRORS: dict[int, type[AppError]] = {
    400: ValidationError,
    403: HostOnlyError,
    404: NotFoundError,
    409: ConflictError,
}


class HttpDispatcher:
    """One POST per call to the generation endpoints of a running server."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout or settings.dispatch_timeout

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload) as response:
                    data = await response.json(content_type=None)
                    status = response.status
        except asyncio.TimeoutError as exc:
            logger.warning("Dispatch timeout", extra={"event": "dispatch_timeout", "path": path})
            raise ExternalServiceError(f"{path} timed out") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            logger.exception("Dispatch failed", extra={"event": "dispatch_failed", "path": path})
            raise ExternalServiceError(f"{path} request failed") from exc

        if status >= 400:
            detail = data.get("detail") if isinstance(data, dict) else None
            message = str(detail or f"{path} failed with status {status}")
            error_type = _STATUS_ERRORS.get(status, PersistenceError if status < 502 else ExternalServiceError)
            logger.warning(
                "Dispatch returned an error",
                extra={"event": "dispatch_error", "path": path, "status": status},
            )
            raise error_type(message)
        if not isinstance(data, dict):
            raise ExternalServiceError(f"{path} returned an unexpected payload")
        return data

    async def generate_questions(self, lobby_id: str) -> list[dict[str, Any]]:
        data = await self._post("trivia/generate", {"lobbyId": lobby_id})
        return list(data.get("questions") or [])

    async def generate_roast(self, context: RoastContext) -> dict[str, Any]:
        data = await self._post(
            "roast/generate",
            {
                "player_id": context.player_id,
                "question_id": context.question_id,
                "player_name": context.player_name,
                "question": context.question,
                "wrong_answer": context.wrong_answer,
                "correct_answer": context.correct_answer,
            },
        )
        return dict(data.get("roast") or {})

    async def generate_final_burn(self, lobby_id: str) -> dict[str, Any]:
        data = await self._post("finalburn/generate", {"lobbyId": lobby_id})
        return dict(data.get("finalBurn") or {})

    async def update_scores(self, category_id: str, nominee_id: str) -> int:
        data = await self._post("update-scores", {"categoryId": category_id, "nomineeId": nominee_id})
        return int(data.get("playersUpdated") or 0)


def build_dispatcher(gateway: PersistenceGateway) -> Dispatcher:
    if settings.dispatcher_mode == "http":
        return HttpDispatcher()
    return LocalDispatcher(gateway)
