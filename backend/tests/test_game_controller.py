import asyncio

import pytest

from movienight.dispatcher import LocalDispatcher
from movienight.errors import HostOnlyError, NotFoundError, ValidationError
from movienight.game_controller import GameStageController
from movienight.lobby_service import LobbyService
from movienight.notifications import Toaster
from movienight.stages import GameStage


def _started_lobby(gateway, mode="trivia", guests=("Bob",)):
    lobbies = LobbyService(gateway)
    host = lobbies.create_game("Alice", mode)
    players = [host] + [lobbies.join_game(host.lobby_code, name) for name in guests]
    gateway.mark_lobby_started(host.lobby_id).unwrap()
    return players


def _controller(gateway, identity, toaster=None):
    controller = GameStageController(
        gateway,
        LocalDispatcher(gateway),
        toaster=toaster or Toaster(sink=lambda _toast: None),
    )
    controller.initialize(identity.lobby_id, identity.player_id)
    return controller


def _wrong_option(question):
    return next(option for option in question.options if option != question.correct_answer)


def test_trivia_flow_generates_questions_when_host_submits_last(gateway):
    host, guest = _started_lobby(gateway)
    alice = _controller(gateway, host)
    bob = _controller(gateway, guest)

    assert alice.stage == GameStage.SUBMITTING_DATA
    assert bob.stage == GameStage.SUBMITTING_DATA

    async def scenario():
        await bob.submit_data(["Heat", "Alien", "Up"])
        assert bob.stage == GameStage.WAITING_FOR_CONTENT
        await alice.submit_data(["Big", " Jaws 2 "])
        await alice.drain()
        await bob.drain()

    asyncio.run(scenario())

    assert alice.stage == GameStage.PLAYING
    assert bob.stage == GameStage.PLAYING
    assert gateway.lobby_by_id(host.lobby_id).unwrap().trivia_started is True

    questions = bob.ordered_questions
    assert 0 < len(questions) <= 10
    for question in questions:
        assert len(question.options) == 4
        assert question.correct_answer in question.options
    assert [row.movie_title for row in alice.favorites] == ["Big", "Jaws 2"]


def test_host_waits_when_someone_has_not_submitted(gateway):
    host, guest = _started_lobby(gateway)
    toaster = Toaster(sink=lambda _toast: None)
    alice = _controller(gateway, host, toaster)

    stage = asyncio.run(alice.submit_data(["Heat"]))

    assert stage == GameStage.WAITING_FOR_CONTENT
    assert alice.stage == GameStage.WAITING_FOR_CONTENT
    assert gateway.questions_by_lobby(host.lobby_id).unwrap() == []
    assert "waiting-for-submissions" in [toast.key for toast in toaster.history]


def test_favorites_validation(gateway):
    host, _guest = _started_lobby(gateway)
    alice = _controller(gateway, host)

    with pytest.raises(ValidationError):
        asyncio.run(alice.submit_data([]))
    with pytest.raises(ValidationError):
        asyncio.run(alice.submit_data(["Heat", "heat"]))
    with pytest.raises(ValidationError):
        asyncio.run(alice.submit_data(["A", "B", "C", "D", "E", "F"]))
    with pytest.raises(ValidationError):
        asyncio.run(alice.submit_data({"category": "nominee"}))


def test_resubmitting_favorites_is_a_noop(gateway):
    _host, guest = _started_lobby(gateway)
    bob = _controller(gateway, guest)

    asyncio.run(bob.submit_data(["Heat"]))
    asyncio.run(bob.submit_data(["Alien", "Up"]))

    assert [row.movie_title for row in gateway.favorites_by_player(guest.player_id).unwrap()] == ["Heat"]


def test_non_host_cannot_generate_content(gateway):
    _host, guest = _started_lobby(gateway)
    bob = _controller(gateway, guest)

    with pytest.raises(HostOnlyError):
        asyncio.run(bob.generate_content())


def _playing(gateway):
    host, guest = _started_lobby(gateway)
    alice = _controller(gateway, host)
    bob = _controller(gateway, guest)

    async def setup():
        await bob.submit_data(["Heat"])
        await alice.submit_data(["Big"])

    asyncio.run(setup())
    return host, guest, alice, bob


def test_correct_answer_scores_and_duplicate_returns_recorded_result(gateway):
    _host, guest, _alice, bob = _playing(gateway)
    question = bob.current_question

    first = asyncio.run(bob.answer_question(question.id, question.correct_answer, 0))
    again = asyncio.run(bob.answer_question(question.id, _wrong_option(question), 0))

    assert first.is_correct is True
    assert first.delta == question.points + 50
    assert again.duplicate is True
    assert again.is_correct is True

    player = gateway.player_by_id(guest.player_id).unwrap()
    assert player.score == first.delta
    assert player.streak == 1
    assert player.correct_answers == 1
    assert bob.player.score == first.delta


def test_wrong_answer_resets_streak_and_delivers_roast(gateway):
    _host, guest, alice, bob = _playing(gateway)
    first, second = bob.ordered_questions[:2]

    async def scenario():
        await bob.answer_question(first.id, first.correct_answer, 1000)
        outcome = await bob.answer_question(second.id, _wrong_option(second), 1000)
        await bob.drain()
        return outcome

    outcome = asyncio.run(scenario())

    assert outcome.is_correct is False
    assert outcome.delta == 0
    player = gateway.player_by_id(guest.player_id).unwrap()
    assert player.streak == 0
    assert player.incorrect_answers == 1
    assert player.score == first.points + 48

    roasts = gateway.roasts_by_player(guest.player_id).unwrap()
    assert len(roasts) == 1
    assert roasts[0].source == "fallback"
    assert bob.latest_roast is not None
    assert bob.latest_roast.id == roasts[0].id
    assert "roast" in [toast.level for toast in bob.toaster.history]
    assert alice.roasts == {}


def test_reload_resumes_at_first_unanswered_question(gateway):
    _host, guest, _alice, bob = _playing(gateway)
    questions = bob.ordered_questions
    asyncio.run(bob.answer_question(questions[0].id, questions[0].correct_answer))
    bob.close()

    reloaded = _controller(gateway, guest)
    assert reloaded.stage == GameStage.PLAYING
    assert reloaded.current_index == 1
    assert reloaded.current_question.id == questions[1].id

    again = reloaded.initialize(guest.lobby_id, guest.player_id)
    assert again == GameStage.PLAYING
    assert reloaded.current_index == 1


def test_advance_stops_on_last_question(gateway):
    _host, _guest, _alice, bob = _playing(gateway)
    total = len(bob.ordered_questions)

    for _ in range(total + 2):
        bob.advance_question()

    assert bob.current_index == total - 1
    assert bob.waiting_for_others is True


def test_questions_before_trivia_flag_wait_for_the_flag(gateway):
    host, guest = _started_lobby(gateway)
    bob = _controller(gateway, guest)
    asyncio.run(bob.submit_data(["Heat"]))

    gateway.insert_questions(
        host.lobby_id,
        [{"question": "Q?", "options": ["a", "b", "c", "d"], "correct_answer": "a", "points": 100}],
    ).unwrap()
    assert bob.stage == GameStage.WAITING_FOR_CONTENT

    gateway.mark_trivia_started(host.lobby_id).unwrap()
    assert bob.stage == GameStage.PLAYING


def test_trivia_flag_before_questions_recovers_when_rows_arrive(gateway):
    host, guest = _started_lobby(gateway)
    bob = _controller(gateway, guest)
    asyncio.run(bob.submit_data(["Heat"]))

    gateway.mark_trivia_started(host.lobby_id).unwrap()
    assert bob.stage == GameStage.WAITING_FOR_CONTENT

    gateway.insert_questions(
        host.lobby_id,
        [{"question": "Q?", "options": ["a", "b", "c", "d"], "correct_answer": "a", "points": 100}],
    ).unwrap()
    assert bob.stage == GameStage.PLAYING


def test_poll_for_content_gives_up_after_attempts(gateway):
    host, guest = _started_lobby(gateway)
    bob = _controller(gateway, guest)

    assert asyncio.run(bob.poll_for_content(attempts=2, interval=0)) is False

    gateway.insert_questions(
        host.lobby_id,
        [{"question": "Q?", "options": ["a", "b", "c", "d"], "correct_answer": "a", "points": 100}],
    ).unwrap()
    bob.close()
    assert asyncio.run(bob.poll_for_content(attempts=1, interval=0)) is True
    assert len(bob.questions) == 1


def test_end_game_finishes_players_and_records_burn(gateway):
    host, guest, alice, bob = _playing(gateway)
    question = bob.current_question
    late = LobbyService(gateway).join_game(host.lobby_code, "Carol")
    carol = _controller(gateway, late)

    async def finish():
        await alice.answer_question(question.id, question.correct_answer)
        await bob.answer_question(question.id, _wrong_option(question))
        await bob.drain()
        return await alice.end_game()

    burn = asyncio.run(finish())

    assert burn is not None
    assert burn.player_id == guest.player_id
    assert gateway.shame_movies_by_lobby(host.lobby_id).unwrap()
    assert gateway.lobby_by_id(host.lobby_id).unwrap().ended_at is not None
    assert bob.stage == GameStage.FINISHED
    assert carol.stage == GameStage.ENDED
    assert bob.final_burn is not None
    assert bob.final_burn.id == burn.id

    with pytest.raises(ValidationError):
        asyncio.run(bob.answer_question(question.id, question.correct_answer))


def test_non_host_cannot_end_game(gateway):
    _host, _guest, _alice, bob = _playing(gateway)
    with pytest.raises(HostOnlyError):
        asyncio.run(bob.end_game())


def test_chat_reaches_other_players(gateway):
    _host, _guest, alice, bob = _playing(gateway)

    message = bob.send_chat(" 🍿 ")

    assert message.emoji == "🍿"
    assert message.id in alice.chat
    with pytest.raises(ValidationError):
        bob.send_chat("   ")


def test_predictions_flow(gateway):
    host, guest = _started_lobby(gateway, mode="predictions")
    alice = _controller(gateway, host)
    bob = _controller(gateway, guest)
    category = sorted(bob.categories.values(), key=lambda row: row.sort_order)[0]
    pick, other = category.nominees[0], category.nominees[1]

    asyncio.run(bob.submit_data({category.id: pick.id}))
    assert bob.stage == GameStage.PLAYING

    alice.lock_category(category.id)
    assert bob.categories[category.id].locked is True
    with pytest.raises(ValidationError):
        asyncio.run(bob.submit_data({category.id: other.id}))

    sequence = asyncio.run(alice.set_winner(category.id, pick.id))

    assert sequence.status == "completed"
    assert gateway.player_by_id(guest.player_id).unwrap().score == 10
    assert bob.player.score == 10
    assert bob.categories[category.id].winner.id == pick.id


def test_prediction_for_foreign_nominee_is_rejected(gateway):
    host, guest = _started_lobby(gateway, mode="predictions")
    bob = _controller(gateway, guest)
    first, second = sorted(bob.categories.values(), key=lambda row: row.sort_order)[:2]

    with pytest.raises(ValidationError):
        asyncio.run(bob.submit_data({first.id: second.nominees[0].id}))
    with pytest.raises(NotFoundError):
        asyncio.run(bob.submit_data({"missing": second.nominees[0].id}))


def test_trivia_actions_rejected_in_predictions_mode(gateway):
    host, _guest = _started_lobby(gateway, mode="predictions")
    alice = _controller(gateway, host)

    with pytest.raises(ValidationError):
        asyncio.run(alice.generate_content())
