"""Tests for the Redis persistence store."""
import pytest
import redis

from backend import redis_backend
from errors import PersistenceError


def test_create_message_assigns_id_and_timestamp(room):
    record = redis_backend.create_message({
        "content": "hi",
        "senderType": "user",
        "senderId": None,
        "chatRoomId": room["id"],
    })

    assert record["id"]
    assert record["createdAt"]
    assert record["content"] == "hi"
    assert record["senderType"] == "user"
    assert record["senderId"] is None
    assert record["chatRoomId"] == room["id"]


def test_create_message_keeps_sender_id_verbatim(room):
    record = redis_backend.create_message({"content": "hi", "senderType": "user", "senderId": "", "chatRoomId": room["id"]})

    assert record["senderId"] == ""
    assert redis_backend.find_recent_messages(room["id"], 1)[0]["senderId"] == ""


def test_create_message_unknown_room_raises():
    with pytest.raises(PersistenceError):
        redis_backend.create_message({"content": "hi", "senderType": "user", "chatRoomId": "missing"})


def test_create_message_wraps_redis_errors(room, monkeypatch):
    def broken(*args, **kwargs):
        raise redis.ConnectionError("connection refused")

    monkeypatch.setattr(redis_backend.redis_client, "rpush", broken)
    with pytest.raises(PersistenceError):
        redis_backend.create_message({"content": "hi", "senderType": "user", "chatRoomId": room["id"]})


def test_character_message_carries_character_summary(room, character):
    record = redis_backend.create_message({
        "content": "Hello there",
        "senderType": "character",
        "senderId": character["id"],
        "chatRoomId": room["id"],
    })
    assert record["character"] == {"id": character["id"], "name": "Ada"}


def test_find_recent_messages_returns_last_n_oldest_first(room):
    for i in range(15):
        redis_backend.create_message({"content": f"m{i}", "senderType": "user", "chatRoomId": room["id"]})

    recent = redis_backend.find_recent_messages(room["id"], 10)

    assert [m["content"] for m in recent] == [f"m{i}" for i in range(5, 15)]
    assert redis_backend.find_recent_messages(room["id"], 0) == []
    assert redis_backend.find_recent_messages("empty-room", 10) == []


def test_clear_and_delete_room(room):
    redis_backend.create_message({"content": "a", "senderType": "user", "chatRoomId": room["id"]})
    redis_backend.create_message({"content": "b", "senderType": "user", "chatRoomId": room["id"]})

    assert redis_backend.clear_messages(room["id"]) == 2
    assert redis_backend.count_messages(room["id"]) == 0

    assert redis_backend.delete_chat_room(room["id"]) is True
    assert redis_backend.get_chat_room(room["id"]) is None
    assert redis_backend.list_chat_rooms() == []


def test_room_values_keep_their_types():
    room = redis_backend.create_chat_room("123", theme="sci-fi")
    stored = redis_backend.get_chat_room(room["id"])
    assert stored["name"] == "123"
    assert stored["isActive"] is True
    assert stored["theme"] == "sci-fi"


def test_character_crud_and_theme_filter():
    a = redis_backend.create_character({"name": "A", "systemPrompt": "a", "theme": "space"})
    b = redis_backend.create_character({"name": "B", "systemPrompt": "b"})

    assert [c["id"] for c in redis_backend.list_characters()] == [b["id"], a["id"]]
    assert [c["id"] for c in redis_backend.list_characters(theme="space")] == [a["id"]]

    updated = redis_backend.update_character(a["id"], {"name": "A2", "isActive": False})
    assert updated["name"] == "A2"
    assert updated["isActive"] is False
    assert [c["id"] for c in redis_backend.list_characters()] == [b["id"]]

    assert redis_backend.update_character("missing", {"name": "x"}) is None
    assert redis_backend.delete_character(b["id"]) is True
    assert redis_backend.find_character_by_id(b["id"]) is None


def test_stats(room, character):
    redis_backend.create_message({"content": "a", "senderType": "user", "chatRoomId": room["id"]})
    assert redis_backend.stats() == {"characters": 1, "chatRooms": 1, "messages": 1}
