import json
import uuid
from datetime import datetime, timezone
from typing import Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
from errors import PersistenceError
from redis_keys import (
    REDIS_ROOM_KEY,
    REDIS_ROOMS_INDEX,
    REDIS_ROOM_MESSAGES_KEY,
    REDIS_ROOM_CHANNEL,
    REDIS_CHARACTER_KEY,
    REDIS_CHARACTERS_INDEX,
    REDIS_SEQUENCE_KEY,
)
from logging_config import get_logger

logger = get_logger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_hash(data: dict) -> dict:
    # Values are JSON-encoded so types survive the round trip; None values are skipped
    return {k: json.dumps(v) for k, v in data.items() if v is not None}


def _from_hash(data: dict) -> dict:
    result = {}
    for k, v in data.items():
        try:
            result[k] = json.loads(v)
        except (json.JSONDecodeError, TypeError):
            result[k] = v
    return result


class RedisBackend:
    """Persistence store for chat rooms, characters and message history."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, pubsub_client: Optional[redis.Redis] = None):
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
        self.redis_client = redis_client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )
        # Separate connection for pub/sub (required by Redis)
        self.pubsub_client = pubsub_client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )

    def use_client(self, redis_client: redis.Redis, pubsub_client: Optional[redis.Redis] = None):
        """Swap the underlying connections (used by tests and alternate deployments)."""
        self.redis_client = redis_client
        self.pubsub_client = pubsub_client or redis_client

    def ping(self) -> bool:
        return bool(self.redis_client.ping())

    def _next_sequence(self) -> int:
        return self.redis_client.incr(REDIS_SEQUENCE_KEY)

    # Chat rooms

    def create_chat_room(self, name: str, theme: Optional[str] = None) -> dict:
        room_id = uuid.uuid4().hex
        room = {
            "id": room_id,
            "name": name,
            "theme": theme,
            "isActive": True,
            "createdAt": utc_now_iso(),
        }
        logger.info(f"Creating chat room {room_id} ({name})")
        key = REDIS_ROOM_KEY.format(slug=room_id)
        self.redis_client.hset(key, mapping=_to_hash(room))
        self.redis_client.zadd(REDIS_ROOMS_INDEX, {room_id: self._next_sequence()})
        logger.debug(f"Chat room {room_id} created with key: {key}")
        return room

    def get_chat_room(self, room_id: str) -> Optional[dict]:
        logger.debug(f"Fetching chat room {room_id}")
        room_data = self.redis_client.hgetall(REDIS_ROOM_KEY.format(slug=room_id))
        if not room_data:
            logger.debug(f"Chat room {room_id} not found in Redis")
            return None
        room = _from_hash(room_data)
        room.setdefault("theme", None)
        return room

    def chat_room_exists(self, room_id: str) -> bool:
        return bool(self.redis_client.exists(REDIS_ROOM_KEY.format(slug=room_id)))

    def list_chat_rooms(self) -> list:
        room_ids = self.redis_client.zrevrange(REDIS_ROOMS_INDEX, 0, -1)
        rooms = []
        for room_id in room_ids:
            room = self.get_chat_room(room_id)
            if room and room.get("isActive", True):
                rooms.append(room)
        return rooms

    def delete_chat_room(self, room_id: str) -> bool:
        logger.info(f"Deleting chat room {room_id}")
        deleted = self.redis_client.delete(REDIS_ROOM_KEY.format(slug=room_id))
        messages_deleted = self.redis_client.delete(REDIS_ROOM_MESSAGES_KEY.format(slug=room_id))
        self.redis_client.zrem(REDIS_ROOMS_INDEX, room_id)
        logger.debug(f"Chat room {room_id} deleted: meta_key={deleted}, messages_key={messages_deleted}")
        return bool(deleted)

    # Messages

    def create_message(self, data: dict) -> dict:
        """Persist a chat message and return the stored record with server-assigned id and createdAt."""
        room_id = data["chatRoomId"]
        try:
            if not self.chat_room_exists(room_id):
                raise PersistenceError(f"Chat room {room_id} does not exist")

            message = {
                "id": uuid.uuid4().hex,
                "content": data["content"],
                "senderType": data["senderType"],
                "senderId": data.get("senderId"),
                "chatRoomId": room_id,
                "createdAt": utc_now_iso(),
                "character": None,
            }
            if message["senderType"] == "character" and message["senderId"]:
                character = self.find_character_by_id(message["senderId"])
                if character:
                    message["character"] = {"id": character["id"], "name": character["name"]}

            self.redis_client.rpush(REDIS_ROOM_MESSAGES_KEY.format(slug=room_id), json.dumps(message))
        except redis.RedisError as e:
            logger.error(f"Failed to persist message for room {room_id}: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e

        logger.debug(f"Message {message['id']} persisted in room {room_id}")
        return message

    def find_recent_messages(self, room_id: str, limit: int = 10) -> list:
        """Return the last ``limit`` messages of a room, oldest first."""
        if limit <= 0:
            return []
        raw = self.redis_client.lrange(REDIS_ROOM_MESSAGES_KEY.format(slug=room_id), -limit, -1)
        return [json.loads(item) for item in raw]

    def count_messages(self, room_id: str) -> int:
        return self.redis_client.llen(REDIS_ROOM_MESSAGES_KEY.format(slug=room_id))

    def clear_messages(self, room_id: str) -> int:
        count = self.count_messages(room_id)
        self.redis_client.delete(REDIS_ROOM_MESSAGES_KEY.format(slug=room_id))
        logger.info(f"Cleared {count} messages from room {room_id}")
        return count

    # Characters

    def create_character(self, data: dict) -> dict:
        character_id = uuid.uuid4().hex
        now = utc_now_iso()
        character = {
            "id": character_id,
            "name": data["name"],
            "systemPrompt": data["systemPrompt"],
            "participationLevel": data.get("participationLevel", 0.7),
            "interestThreshold": data.get("interestThreshold", 0.3),
            "category": data.get("category") or "custom",
            "theme": data.get("theme"),
            "modelConfig": data.get("modelConfig"),
            "isActive": True,
            "createdAt": now,
            "updatedAt": now,
        }
        logger.info(f"Creating character {character_id} ({character['name']})")
        self.redis_client.hset(REDIS_CHARACTER_KEY.format(character_id=character_id), mapping=_to_hash(character))
        self.redis_client.zadd(REDIS_CHARACTERS_INDEX, {character_id: self._next_sequence()})
        return character

    def find_character_by_id(self, character_id: str) -> Optional[dict]:
        data = self.redis_client.hgetall(REDIS_CHARACTER_KEY.format(character_id=character_id))
        if not data:
            logger.debug(f"Character {character_id} not found in Redis")
            return None
        character = _from_hash(data)
        character.setdefault("theme", None)
        character.setdefault("modelConfig", None)
        return character

    def list_characters(self, theme: Optional[str] = None) -> list:
        characters = []
        for character_id in self.redis_client.zrevrange(REDIS_CHARACTERS_INDEX, 0, -1):
            character = self.find_character_by_id(character_id)
            if not character or not character.get("isActive", True):
                continue
            if theme and character.get("theme") != theme:
                continue
            characters.append(character)
        return characters

    def update_character(self, character_id: str, updates: dict) -> Optional[dict]:
        key = REDIS_CHARACTER_KEY.format(character_id=character_id)
        if not self.redis_client.exists(key):
            return None
        updates = dict(updates, updatedAt=utc_now_iso())
        self.redis_client.hset(key, mapping=_to_hash(updates))
        logger.info(f"Updated character {character_id}: {sorted(updates)}")
        return self.find_character_by_id(character_id)

    def delete_character(self, character_id: str) -> bool:
        logger.info(f"Deleting character {character_id}")
        deleted = self.redis_client.delete(REDIS_CHARACTER_KEY.format(character_id=character_id))
        self.redis_client.zrem(REDIS_CHARACTERS_INDEX, character_id)
        return bool(deleted)

    def stats(self) -> dict:
        room_ids = self.redis_client.zrange(REDIS_ROOMS_INDEX, 0, -1)
        return {
            "characters": self.redis_client.zcard(REDIS_CHARACTERS_INDEX),
            "chatRooms": len(room_ids),
            "messages": sum(self.count_messages(room_id) for room_id in room_ids),
        }

    # Pub/Sub

    def get_room_channel_name(self, room_id: str) -> str:
        """Get the Redis pub/sub channel name for a room."""
        return REDIS_ROOM_CHANNEL.format(slug=room_id)

    def publish_message(self, room_id: str, envelope: dict):
        """Publish an event envelope to the room's Redis pub/sub channel."""
        channel = self.get_room_channel_name(room_id)
        subscribers = self.redis_client.publish(channel, json.dumps(envelope))
        logger.debug(f"Published {envelope.get('event')} to room {room_id} channel {channel}, {subscribers} subscribers")
        return True

    def subscribe_to_room(self, room_id: str):
        """Create a pubsub subscriber for a room channel."""
        channel = self.get_room_channel_name(room_id)
        logger.debug(f"Subscribing to Redis channel {channel} for room {room_id}")
        pubsub = self.pubsub_client.pubsub()
        pubsub.subscribe(channel)
        return pubsub


redis_backend = RedisBackend()
