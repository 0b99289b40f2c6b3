from datetime import datetime, timezone

from movienight.change_feed import ChangeFeed
from movienight.rows import PlayerChange


def _player_payload(player_id: str, lobby_id: str, change_type: str = "insert", **overrides) -> dict:
    row = {
        "id": player_id,
        "lobby_id": lobby_id,
        "name": f"Player {player_id}",
        "is_host": False,
        "score": 0,
        "streak": 0,
        "correct_answers": 0,
        "incorrect_answers": 0,
        "created_at": datetime(2025, 3, 2, tzinfo=timezone.utc),
    }
    row.update(overrides)
    if change_type == "delete":
        return {"table": "players", "type": "delete", "new": None, "old": row}
    return {"table": "players", "type": change_type, "new": row, "old": None}


def test_publish_delivers_typed_events_matching_filter():
    feed = ChangeFeed()
    received = []
    feed.subscribe("players:lobby-1", "players", {"lobby_id": "lobby-1"}, received.append)

    assert feed.publish(_player_payload("p1", "lobby-1")) == 1
    assert feed.publish(_player_payload("p2", "lobby-2")) == 0

    assert len(received) == 1
    event = received[0]
    assert isinstance(event, PlayerChange)
    assert event.type == "insert"
    assert event.row_id == "p1"
    assert event.new.created_at.tzinfo is not None


def test_delete_events_match_on_old_row():
    feed = ChangeFeed()
    received = []
    feed.subscribe("players:lobby-1", "players", {"lobby_id": "lobby-1"}, received.append)

    feed.publish(_player_payload("p1", "lobby-1", change_type="delete"))

    assert [event.row_id for event in received] == ["p1"]
    assert received[0].new is None


def test_resubscribing_same_channel_replaces_handle():
    feed = ChangeFeed()
    first, second = [], []
    old_handle = feed.subscribe("players:lobby-1", "players", {"lobby_id": "lobby-1"}, first.append)
    feed.subscribe("players:lobby-1", "players", {"lobby_id": "lobby-1"}, second.append)

    feed.publish(_player_payload("p1", "lobby-1"))

    assert old_handle.active is False
    assert first == []
    assert len(second) == 1
    assert feed.subscriber_count("players") == 1


def test_subscription_context_manager_releases_handle():
    feed = ChangeFeed()
    received = []
    with feed.subscription("players:lobby-1", "players", {"lobby_id": "lobby-1"}, received.append) as handle:
        assert feed.subscriber_count() == 1
    assert handle.active is False
    assert feed.subscriber_count() == 0

    assert feed.publish(_player_payload("p1", "lobby-1")) == 0
    assert received == []


def test_failing_callback_does_not_block_other_subscribers():
    feed = ChangeFeed()
    received = []

    def broken(_event):
        raise RuntimeError("boom")

    feed.subscribe("a", "players", {"lobby_id": "lobby-1"}, broken)
    feed.subscribe("b", "players", {"lobby_id": "lobby-1"}, received.append)

    assert feed.publish(_player_payload("p1", "lobby-1")) == 1
    assert len(received) == 1


def test_undecodable_payload_is_dropped():
    feed = ChangeFeed()
    received = []
    feed.subscribe("a", "players", {"lobby_id": "lobby-1"}, received.append)

    payload = _player_payload("p1", "lobby-1")
    del payload["new"]["name"]

    assert feed.publish(payload) == 0
    assert received == []
