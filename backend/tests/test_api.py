from fastapi.testclient import TestClient
import pytest
from starlette.websockets import WebSocketDisconnect

from movienight.main import app
from movienight.routers.games import get_gateway


def _create(client: TestClient, name: str = "Alice", mode: str | None = None) -> dict:
    payload = {"hostName": name}
    if mode:
        payload["mode"] = mode
    response = client.post("/api/create-game", json=payload)
    assert response.status_code == 200
    return response.json()


def _join(client: TestClient, code: str, name: str = "Bob") -> dict:
    response = client.post("/api/join-game", json={"gameCode": code, "playerName": name})
    assert response.status_code == 200
    return response.json()


def _receive_until(ws, message_type: str, limit: int = 10) -> dict:
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == message_type:
            return message
    raise AssertionError(f"no {message_type} message received")


def test_health_endpoints():
    client = TestClient(app)
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/health").json()["status"] == "ok"


def test_create_and_join_game():
    client = TestClient(app)
    host = _create(client)

    assert set(host) == {"lobbyId", "playerId", "lobbyCode"}
    assert len(host["lobbyCode"]) == 4

    guest = _join(client, host["lobbyCode"].lower())
    assert guest["lobbyId"] == host["lobbyId"]
    assert guest["playerId"] != host["playerId"]

    overview = client.get(f"/api/lobbies/{host['lobbyCode']}").json()
    assert [player["name"] for player in overview["players"]] == ["Alice", "Bob"]
    assert [player["is_host"] for player in overview["players"]] == [True, False]
    assert overview["started"] is False
    assert overview["mode"] == "trivia"


def test_create_game_requires_host_name():
    client = TestClient(app)

    missing = client.post("/api/create-game", json={})
    blank = client.post("/api/create-game", json={"hostName": "   "})

    assert missing.status_code == 400
    assert blank.status_code == 400
    assert "detail" in blank.json()


def test_create_game_rejects_unknown_mode():
    client = TestClient(app)
    response = client.post("/api/create-game", json={"hostName": "Alice", "mode": "bingo"})
    assert response.status_code == 400


def test_join_invalid_code_is_404():
    client = TestClient(app)
    response = client.post("/api/join-game", json={"gameCode": "ZZZZ", "playerName": "Bob"})
    assert response.status_code == 404
    assert response.json()["detail"] == "No lobby found with code ZZZZ"


def test_trivia_generate_falls_back_without_llm():
    client = TestClient(app)
    host = _create(client)

    response = client.post("/api/trivia/generate", json={"lobbyId": host["lobbyId"]})

    assert response.status_code == 200
    questions = response.json()["questions"]
    assert questions
    for question in questions:
        assert len(question["options"]) == 4
        assert question["correct_answer"] in question["options"]


def test_trivia_generate_unknown_lobby_is_404():
    client = TestClient(app)
    response = client.post("/api/trivia/generate", json={"lobbyId": "missing"})
    assert response.status_code == 404


def test_roast_and_final_burn_endpoints():
    client = TestClient(app)
    host = _create(client)
    guest = _join(client, host["lobbyCode"])
    questions = client.post("/api/trivia/generate", json={"lobbyId": host["lobbyId"]}).json()["questions"]
    question = questions[0]

    roast = client.post(
        "/api/roast/generate",
        json={
            "player_id": guest["playerId"],
            "question_id": question["id"],
            "player_name": "Bob",
            "question": question["question"],
            "wrong_answer": "Nope",
            "correct_answer": question["correct_answer"],
        },
    )
    assert roast.status_code == 200
    assert roast.json()["roast"]["source"] == "fallback"
    assert "Bob" in roast.json()["roast"]["content"]

    burn = client.post("/api/finalburn/generate", json={"lobbyId": host["lobbyId"]})
    assert burn.status_code == 200
    assert burn.json()["finalBurn"]["lobby_id"] == host["lobbyId"]
    assert client.get(f"/api/lobbies/{host['lobbyCode']}").json()["ended"] is True


def test_update_scores_endpoint():
    client = TestClient(app)
    host = _create(client, mode="predictions")
    guest = _join(client, host["lobbyCode"])
    gateway = get_gateway()
    category = gateway.categories_with_nominees(host["lobbyId"]).unwrap()[0]
    winner = category.nominees[0]
    gateway.upsert_prediction(guest["playerId"], category.id, winner.id).unwrap()

    first = client.post("/api/update-scores", json={"categoryId": category.id, "nomineeId": winner.id})
    second = client.post("/api/update-scores", json={"categoryId": category.id, "nomineeId": winner.id})

    assert first.json() == {"playersUpdated": 1}
    assert second.json() == {"playersUpdated": 0}
    assert gateway.player_by_id(guest["playerId"]).unwrap().score == 10


def test_update_scores_rejects_nominee_from_other_category():
    client = TestClient(app)
    host = _create(client, mode="predictions")
    first, second = get_gateway().categories_with_nominees(host["lobbyId"]).unwrap()[:2]

    response = client.post(
        "/api/update-scores",
        json={"categoryId": first.id, "nomineeId": second.nominees[0].id},
    )
    assert response.status_code == 404


def test_metrics_endpoint():
    client = TestClient(app)
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "requests_total" in response.text


def test_websocket_lobby_to_game_flow():
    client = TestClient(app)
    host = _create(client)
    code = host["lobbyCode"]

    with client.websocket_connect(f"/ws/lobbies/{code}?player_id={host['playerId']}") as ws:
        assert ws.receive_json() == {"type": "connected", "lobby_code": code}
        state = ws.receive_json()
        assert state["type"] == "lobby_state"
        assert state["data"]["state"] == "waiting_for_players"
        assert state["data"]["is_host"] is True

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        ws.send_json({"type": "answer", "question_id": "x", "answer": "y"})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["status"] == 400

        ws.send_json({"type": "start_game"})
        game = _receive_until(ws, "game_state")
        assert game["data"]["stage"] == "submitting_data"
        assert game["data"]["mode"] == "trivia"

        ws.send_json({"type": "submit_data", "favorites": ["Heat"]})
        game = _receive_until(ws, "game_state")
        assert game["data"]["favorites"] == ["Heat"]


def test_websocket_rejects_unknown_player():
    client = TestClient(app)
    host = _create(client)

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/lobbies/{host['lobbyCode']}?player_id=nobody") as ws:
            ws.receive_json()
