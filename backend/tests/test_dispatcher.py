import asyncio

from aiohttp import web
from aiohttp.test_utils import TestServer
import pytest

from movienight.dispatcher import HttpDispatcher, LocalDispatcher
from movienight.errors import (
    ConflictError,
    ExternalServiceError,
    HostOnlyError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from movienight.generation import RoastContext
from movienight.lobby_service import LobbyService


def _generation_app(received: list) -> web.Application:
    async def trivia(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({"questions": [{"id": "q1"}]})

    async def roast(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({"detail": "Player not found"}, status=404)

    async def burn(request: web.Request) -> web.Response:
        return web.json_response({"detail": "upstream down"}, status=503)

    async def scores(request: web.Request) -> web.Response:
        payload = await request.json()
        received.append(payload)
        if not payload.get("nomineeId"):
            return web.json_response({"detail": "nomineeId is required"}, status=400)
        if payload["categoryId"] == "c-other-lobby":
            return web.json_response({"detail": "Only the host can set a winner"}, status=403)
        if payload["nomineeId"] == "n-duplicate":
            return web.json_response({"detail": "row already exists"}, status=409)
        return web.json_response({"detail": "Could not complete award_prediction_points"}, status=500)

    app = web.Application()
    app.router.add_post("/api/trivia/generate", trivia)
    app.router.add_post("/api/roast/generate", roast)
    app.router.add_post("/api/finalburn/generate", burn)
    app.router.add_post("/api/update-scores", scores)
    return app


def test_http_dispatcher_maps_statuses_to_errors():
    received = []

    async def scenario():
        server = TestServer(_generation_app(received))
        await server.start_server()
        try:
            dispatcher = HttpDispatcher(str(server.make_url("/api")), timeout=5)
            questions = await dispatcher.generate_questions("lobby-1")
            assert questions == [{"id": "q1"}]

            with pytest.raises(NotFoundError):
                await dispatcher.generate_roast(RoastContext(player_id="p1", player_name="Bob"))
            with pytest.raises(ExternalServiceError):
                await dispatcher.generate_final_burn("lobby-1")
            with pytest.raises(PersistenceError):
                await dispatcher.update_scores("c1", "n1")
            with pytest.raises(ValidationError):
                await dispatcher.update_scores("c1", "")
            with pytest.raises(HostOnlyError):
                await dispatcher.update_scores("c-other-lobby", "n1")
            with pytest.raises(ConflictError):
                await dispatcher.update_scores("c1", "n-duplicate")
        finally:
            await server.close()

    asyncio.run(scenario())

    assert received[0] == {"lobbyId": "lobby-1"}
    assert received[1]["player_id"] == "p1"
    assert received[1]["player_name"] == "Bob"
    assert received[2] == {"categoryId": "c1", "nomineeId": "n1"}


def test_http_dispatcher_unreachable_server_is_external_error():
    dispatcher = HttpDispatcher("http://127.0.0.1:9/api", timeout=1)

    with pytest.raises(ExternalServiceError):
        asyncio.run(dispatcher.generate_questions("lobby-1"))


def test_local_dispatcher_returns_plain_payloads(gateway):
    host = LobbyService(gateway).create_game("Alice")
    dispatcher = LocalDispatcher(gateway)

    questions = asyncio.run(dispatcher.generate_questions(host.lobby_id))
    burn = asyncio.run(dispatcher.generate_final_burn(host.lobby_id))

    assert isinstance(questions[0], dict)
    assert isinstance(questions[0]["created_at"], str)
    assert burn["lobby_id"] == host.lobby_id
