import asyncio

from movienight.generation import (
    GENERAL_QUESTIONS,
    GenerationService,
    RoastContext,
    fallback_questions,
    fallback_roast,
    pick_favorites,
)
from movienight.lobby_service import LobbyService
from movienight.services.gemini_service import GeminiServiceError, GeminiServiceTimeoutError


class FakeGemini:
    is_configured = True

    def __init__(self, payload=None, text="", error=None):
        self.payload = payload
        self.text = text
        self.error = error
        self.prompts = []

    async def generate_json(self, prompt, *, system=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.payload

    async def generate_text(self, prompt, *, system=None, as_json=False):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.text


def _lobby_with_favorites(gateway):
    lobbies = LobbyService(gateway)
    host = lobbies.create_game("Alice")
    guest = lobbies.join_game(host.lobby_code, "Bob")
    gateway.insert_favorites(host.player_id, ["Heat", "Alien", "Up"]).unwrap()
    gateway.insert_favorites(guest.player_id, ["Big"]).unwrap()
    return host, guest


def test_pick_favorites_takes_two_per_player(gateway):
    host, guest = _lobby_with_favorites(gateway)
    players = gateway.players_by_lobby(host.lobby_id).unwrap()
    favorites = gateway.favorites_by_lobby(host.lobby_id).unwrap()

    picks = pick_favorites(players, favorites)

    assert [(pick.player.name, pick.movie_title) for pick in picks] == [
        ("Alice", "Heat"),
        ("Alice", "Alien"),
        ("Bob", "Big"),
    ]


def test_fallback_questions_are_well_formed(gateway):
    host, _guest = _lobby_with_favorites(gateway)
    players = gateway.players_by_lobby(host.lobby_id).unwrap()
    favorites = gateway.favorites_by_lobby(host.lobby_id).unwrap()
    picks = pick_favorites(players, favorites)

    questions = fallback_questions(picks, favorites, 10)

    assert len(questions) == min(10, len(picks) + len(GENERAL_QUESTIONS))
    for question in questions:
        assert len(question["options"]) == 4
        assert len(set(question["options"])) == 4
        assert question["correct_answer"] in question["options"]

    first = questions[0]
    assert first["question"] == "Which of these movies did Alice list as a favorite?"
    assert first["correct_answer"] == "Heat"
    # Decoys never include the player's own favorites.
    assert "Alien" not in first["options"]
    assert "Up" not in first["options"]


def test_fallback_questions_respect_limit():
    assert len(fallback_questions([], [], 3)) == 3


def test_generate_questions_without_llm_is_deterministic_and_idempotent(gateway):
    host, _guest = _lobby_with_favorites(gateway)
    service = GenerationService(gateway)

    first = asyncio.run(service.generate_questions(host.lobby_id))
    second = asyncio.run(service.generate_questions(host.lobby_id))

    assert first
    assert [row.id for row in first] == [row.id for row in second]
    assert [row.position for row in first] == list(range(len(first)))


def test_generate_questions_uses_llm_payload(gateway):
    host, _guest = _lobby_with_favorites(gateway)
    gemini = FakeGemini(
        payload=[
            {
                "question": "Who directed Heat?",
                "options": ["Michael Mann", "Ridley Scott", "James Cameron", "Tony Scott"],
                "correct_answer": "Michael Mann",
                "difficulty": "hard",
                "movie_title": "Heat",
            },
            {"question": "Broken", "options": ["a", "b"], "correct_answer": "a"},
        ]
    )

    rows = asyncio.run(GenerationService(gateway, gemini).generate_questions(host.lobby_id))

    assert len(rows) == 1
    assert rows[0].points == 300
    assert rows[0].movie_title == "Heat"
    assert "Heat" in gemini.prompts[0]


def test_generate_questions_falls_back_on_llm_error(gateway):
    host, _guest = _lobby_with_favorites(gateway)
    gemini = FakeGemini(error=GeminiServiceTimeoutError("timeout"))

    rows = asyncio.run(GenerationService(gateway, gemini).generate_questions(host.lobby_id))

    assert rows[0].correct_answer == "Heat"
    assert all(row.correct_answer in row.options for row in rows)


def test_fallback_roast_depends_on_mistake_count():
    first = fallback_roast("Bob", "Heat", "Big", 0, [])
    fifth = fallback_roast("Bob", "Heat", "Big", 4, [])

    assert "Bob" in first
    assert '"Heat"' in first
    assert fifth.startswith("That's 5 wrong answers now, Bob.")
    assert fallback_roast("Bob", "Heat", "Big", 8, []) == first


def test_generate_roast_counts_earlier_mistakes(gateway):
    host, guest = _lobby_with_favorites(gateway)
    service = GenerationService(gateway)
    questions = asyncio.run(service.generate_questions(host.lobby_id))
    for question in questions[:4]:
        gateway.insert_answer(guest.player_id, question.id, "nope", False, None, 0).unwrap()

    roast = asyncio.run(
        service.generate_roast(
            RoastContext(
                player_id=guest.player_id,
                question_id=questions[4].id,
                player_name="Bob",
                question=questions[4].question,
                wrong_answer="nope",
                correct_answer=questions[4].correct_answer,
            )
        )
    )

    assert roast.source == "fallback"
    assert roast.content.startswith("That's 5 wrong answers now, Bob.")
    assert gateway.roasts_by_player(guest.player_id).unwrap()[0].id == roast.id


def test_generate_roast_uses_llm_text(gateway):
    _host, guest = _lobby_with_favorites(gateway)
    gemini = FakeGemini(text='"Even the popcorn knew that one."')

    roast = asyncio.run(
        GenerationService(gateway, gemini).generate_roast(
            RoastContext(player_id=guest.player_id, wrong_answer="Big", correct_answer="Heat")
        )
    )

    assert roast.source == "llm"
    assert roast.content == "Even the popcorn knew that one."


def test_final_burn_targets_lowest_score_and_is_idempotent(gateway):
    host, guest = _lobby_with_favorites(gateway)
    service = GenerationService(gateway, FakeGemini(error=GeminiServiceError("down")))
    questions = asyncio.run(service.generate_questions(host.lobby_id))
    gateway.update_player_stats(host.player_id, score_delta=300, streak=1, correct_delta=1).unwrap()
    gateway.insert_answer(guest.player_id, questions[0].id, "Big", False, None, 0).unwrap()

    burn = asyncio.run(service.generate_final_burn(host.lobby_id))
    again = asyncio.run(service.generate_final_burn(host.lobby_id))

    assert burn.player_id == guest.player_id
    assert burn.source == "fallback"
    assert "Bob" in burn.content
    assert burn.shame_list == ["Heat"]
    assert again.id == burn.id
    assert gateway.lobby_by_id(host.lobby_id).unwrap().ended_at is not None
    assert [row.movie_title for row in gateway.shame_movies_by_lobby(host.lobby_id).unwrap()] == ["Heat"]
