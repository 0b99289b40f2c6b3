from movienight.errors import ConflictError
from movienight.nominees import category_seeds


def _lobby(gateway, code="ABCD", mode="trivia"):
    return gateway.insert_lobby(f"lobby-{code}", code, "host-1", {"mode": mode}).unwrap()


def test_lobby_round_trip_and_code_lookup(gateway):
    lobby = _lobby(gateway)

    assert gateway.lobby_code_exists("ABCD").unwrap() is True
    assert gateway.lobby_code_exists("ZZZZ").unwrap() is False
    assert gateway.lobby_by_code("ABCD").unwrap().id == lobby.id
    assert gateway.lobby_by_code("ZZZZ").unwrap() is None
    assert lobby.created_at.tzinfo is not None
    assert lobby.mode == "trivia"


def test_duplicate_lobby_code_is_a_conflict_not_an_exception(gateway):
    _lobby(gateway)
    result = gateway.insert_lobby("lobby-other", "ABCD", "host-2", {})

    assert result.ok is False
    assert isinstance(result.error, ConflictError)
    assert result.error.status_code == 409


def test_writes_publish_after_commit(gateway, feed):
    lobby = _lobby(gateway)
    received = []
    feed.subscribe("test", "players", {"lobby_id": lobby.id}, received.append)

    gateway.insert_player("p1", lobby.id, "Alice", True).unwrap()
    gateway.update_player_stats("p1", score_delta=0, streak=0).unwrap()

    # The second write changed nothing, so only the insert is published.
    assert [event.type for event in received] == ["insert"]
    assert received[0].new.is_host is True


def test_start_keeps_first_timestamp(gateway):
    lobby = _lobby(gateway)
    first = gateway.mark_lobby_started(lobby.id).unwrap()
    second = gateway.mark_lobby_started(lobby.id).unwrap()

    assert first.started_at is not None
    assert second.started_at == first.started_at


def test_end_never_precedes_start(gateway):
    lobby = _lobby(gateway)
    ended = gateway.mark_lobby_ended(lobby.id).unwrap()

    assert ended.ended_at is not None
    assert ended.started_at is not None
    assert ended.started_at <= ended.ended_at


def test_duplicate_answer_is_rejected(gateway):
    lobby = _lobby(gateway)
    gateway.insert_player("p1", lobby.id, "Alice", True).unwrap()
    question = gateway.insert_questions(
        lobby.id,
        [{"question": "Q?", "options": ["a", "b", "c", "d"], "correct_answer": "a", "points": 100}],
    ).unwrap()[0]

    assert gateway.insert_answer("p1", question.id, "a", True, 1000, 100).ok
    duplicate = gateway.insert_answer("p1", question.id, "b", False, 1000, 0)

    assert isinstance(duplicate.error, ConflictError)
    assert gateway.answer_for("p1", question.id).unwrap().answer == "a"


def test_award_prediction_points_is_idempotent(gateway):
    lobby = _lobby(gateway, mode="predictions")
    gateway.insert_player("p1", lobby.id, "Alice", True).unwrap()
    gateway.insert_player("p2", lobby.id, "Bob").unwrap()
    assert gateway.seed_categories(lobby.id, category_seeds()).unwrap() == len(category_seeds())

    category = gateway.categories_with_nominees(lobby.id).unwrap()[0]
    winner, loser = category.nominees[0], category.nominees[1]
    gateway.upsert_prediction("p1", category.id, winner.id).unwrap()
    gateway.upsert_prediction("p2", category.id, loser.id).unwrap()

    assert gateway.award_prediction_points(category.id, winner.id, 10).unwrap() == 1
    assert gateway.award_prediction_points(category.id, winner.id, 10).unwrap() == 0

    scores = {player.id: player.score for player in gateway.players_by_lobby(lobby.id).unwrap()}
    assert scores == {"p1": 10, "p2": 0}


def test_upsert_prediction_replaces_pick(gateway):
    lobby = _lobby(gateway, mode="predictions")
    gateway.insert_player("p1", lobby.id, "Alice", True).unwrap()
    gateway.seed_categories(lobby.id, category_seeds()).unwrap()
    category = gateway.categories_with_nominees(lobby.id).unwrap()[0]

    first = gateway.upsert_prediction("p1", category.id, category.nominees[0].id).unwrap()
    second = gateway.upsert_prediction("p1", category.id, category.nominees[1].id).unwrap()

    assert first.id == second.id
    assert [row.nominee_id for row in gateway.predictions_by_player("p1").unwrap()] == [category.nominees[1].id]
    assert gateway.distinct_submitter_count(lobby.id, "predictions").unwrap() == 1
