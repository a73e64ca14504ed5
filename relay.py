import asyncio
import json
import uuid
from typing import Any, Dict, Set

import pydantic
import redis
from fastapi import WebSocket

from backend import RedisBackend, redis_backend, utc_now_iso
from chat_service import ChatService, chat_service
from constants import LLM_TIMEOUT_SECONDS, RECENT_MESSAGES_LIMIT, REDIS_PUBSUB_ENABLED, WELCOME_MESSAGE
from errors import NotFoundError, PersistenceError, ProviderError, ValidationError
from schemas.chat import AIResponseRequestPayload, ChatMessage, ChatMessagePayload, EventEnvelope, JoinRoomPayload
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionRegistry:
    """Per-process room membership: room -> {connection_id: websocket} and the reverse index."""

    def __init__(self):
        self.room_connections: Dict[str, Dict[str, WebSocket]] = {}
        self.connection_rooms: Dict[str, Set[str]] = {}

    def register(self, connection_id: str):
        self.connection_rooms.setdefault(connection_id, set())

    def join(self, room_id: str, connection_id: str, websocket: WebSocket) -> bool:
        members = self.room_connections.setdefault(room_id, {})
        is_new = connection_id not in members
        members[connection_id] = websocket
        self.connection_rooms.setdefault(connection_id, set()).add(room_id)
        return is_new

    def leave(self, room_id: str, connection_id: str) -> bool:
        members = self.room_connections.get(room_id)
        removed = bool(members) and members.pop(connection_id, None) is not None
        if members is not None and not members:
            del self.room_connections[room_id]
        rooms = self.connection_rooms.get(connection_id)
        if rooms:
            rooms.discard(room_id)
        return removed

    def remove(self, connection_id: str) -> Set[str]:
        """Drop a connection from every room; returns the rooms it was in."""
        rooms = self.connection_rooms.pop(connection_id, set())
        for room_id in rooms:
            members = self.room_connections.get(room_id)
            if members is None:
                continue
            members.pop(connection_id, None)
            if not members:
                del self.room_connections[room_id]
        return rooms

    def evict_room(self, room_id: str) -> Dict[str, WebSocket]:
        """Drop every connection from a room; returns the evicted members."""
        members = self.room_connections.pop(room_id, {})
        for connection_id in members:
            rooms = self.connection_rooms.get(connection_id)
            if rooms:
                rooms.discard(room_id)
        return members

    def members(self, room_id: str) -> Dict[str, WebSocket]:
        return dict(self.room_connections.get(room_id, {}))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self.connection_rooms.get(connection_id, set()))

    def has_members(self, room_id: str) -> bool:
        return bool(self.room_connections.get(room_id))


class ChatRelay:
    """Persists chat events and rebroadcasts them to the members of a room.

    Each inbound frame of a connection is handled to completion before the next one
    is read, so events of a single connection are processed in order. Frames from
    different connections interleave at every await.

    With ``use_pubsub`` set, broadcasts go through the room's Redis channel and a
    per-room listener task delivers them to this process's local connections, so
    several app instances can serve the same room. Otherwise delivery is local only.
    """

    def __init__(
        self,
        backend: RedisBackend,
        chat_service: ChatService,
        use_pubsub: bool = REDIS_PUBSUB_ENABLED,
        recent_limit: int = RECENT_MESSAGES_LIMIT,
        ai_timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self.backend = backend
        self.chat_service = chat_service
        self.use_pubsub = use_pubsub
        self.recent_limit = recent_limit
        self.ai_timeout = ai_timeout
        self.registry = ConnectionRegistry()
        # Format: {room_id: task}
        self.room_pubsub_tasks: Dict[str, asyncio.Task] = {}
        self.handlers = {
            "join-room": self.handle_join_room,
            "leave-room": self.handle_leave_room,
            "chat-message": self.handle_chat_message,
            "request-ai-response": self.handle_request_ai_response,
        }

    # Outbound

    async def send_event(self, websocket: WebSocket, event: str, data: Any) -> bool:
        try:
            await websocket.send_text(json.dumps({"event": event, "data": data}))
            return True
        except Exception as e:
            logger.warning(f"Could not send {event} event: {e}")
            return False

    async def emit_error(self, websocket: WebSocket, message: str, code: str):
        await self.send_event(websocket, "error", {"message": message, "code": code})

    async def broadcast(self, room_id: str, event: str, data: Any):
        envelope = {"event": event, "data": data}
        if self.use_pubsub:
            try:
                self.backend.publish_message(room_id, envelope)
                return
            except redis.RedisError as e:
                # Other instances miss this one; local members still get it
                logger.error(f"Publish to room {room_id} failed, delivering locally: {e}", exc_info=True)
        await self.deliver_local(room_id, envelope)

    async def deliver_local(self, room_id: str, envelope: dict) -> int:
        members = self.registry.members(room_id)
        if not members:
            logger.debug(f"No local connections in room {room_id}, dropping {envelope.get('event')}")
            return 0
        text = json.dumps(envelope)
        results = await asyncio.gather(*(ws.send_text(text) for ws in members.values()), return_exceptions=True)
        delivered = 0
        for conn_id, result in zip(members, results):
            if isinstance(result, Exception):
                # Connection might be closed, drop it from the room
                logger.warning(f"Error sending to connection {conn_id} in room {room_id}: {result}")
                self.registry.leave(room_id, conn_id)
            else:
                delivered += 1
        logger.debug(f"Delivered {envelope.get('event')} to {delivered}/{len(members)} connections in room {room_id}")
        return delivered

    # Redis pub/sub fan-out

    async def listen_to_redis_channel(self, room_id: str):
        """Background task relaying a room's Redis channel to local connections."""
        logger.info(f"Starting Redis pub/sub listener for room: {room_id}")
        pubsub = None
        try:
            pubsub = self.backend.subscribe_to_room(room_id)
            loop = asyncio.get_running_loop()

            def get_message():
                return pubsub.get_message(timeout=1.0, ignore_subscribe_messages=True)

            while self.registry.has_members(room_id):
                try:
                    message = await loop.run_in_executor(None, get_message)
                except redis.RedisError as e:
                    logger.error(f"Error in pubsub.get_message() for room {room_id}: {e}", exc_info=True)
                    await asyncio.sleep(1.0)
                    continue
                if message is None or message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                except json.JSONDecodeError as e:
                    logger.error(f"Error parsing message from Redis for room {room_id}: {e}")
                    continue
                await self.deliver_local(room_id, envelope)
            logger.info(f"No more connections in room {room_id}, stopping listener")
        except asyncio.CancelledError:
            logger.info(f"Redis listener task cancelled for room: {room_id}")
        finally:
            if pubsub:
                try:
                    pubsub.close()
                except redis.RedisError as e:
                    logger.error(f"Error closing pub/sub for room {room_id}: {e}")
            if self.room_pubsub_tasks.get(room_id) is asyncio.current_task():
                del self.room_pubsub_tasks[room_id]

    async def ensure_listener(self, room_id: str):
        task = self.room_pubsub_tasks.get(room_id)
        if task is None or task.done():
            self.room_pubsub_tasks[room_id] = asyncio.create_task(self.listen_to_redis_channel(room_id))
            # Give the listener a moment to subscribe before anything is published
            await asyncio.sleep(0.1)

    async def stop_listener(self, room_id: str):
        task = self.room_pubsub_tasks.pop(room_id, None)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.debug(f"Cancelled pub/sub task for room {room_id}")

    # Connection lifecycle

    async def connect(self, websocket: WebSocket) -> str:
        connection_id = str(uuid.uuid4())
        self.registry.register(connection_id)
        logger.info(f"Client connected: {connection_id}")
        await self.send_event(websocket, "message", {
            "text": WELCOME_MESSAGE,
            "senderId": "system",
            "connectionId": connection_id,
            "timestamp": utc_now_iso(),
        })
        return connection_id

    async def disconnect(self, connection_id: str):
        rooms = self.registry.remove(connection_id)
        logger.info(f"Client disconnected: {connection_id} (left {len(rooms)} rooms)")
        for room_id in rooms:
            if self.use_pubsub and not self.registry.has_members(room_id):
                await self.stop_listener(room_id)

    async def dispatch(self, connection_id: str, websocket: WebSocket, raw: str):
        try:
            envelope = EventEnvelope.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.warning(f"Invalid frame from connection {connection_id}")
            await self.emit_error(websocket, "Invalid payload", "VALIDATION_ERROR")
            return

        handler = self.handlers.get(envelope.event)
        if handler is None:
            logger.warning(f"Unknown event {envelope.event!r} from connection {connection_id}")
            await self.emit_error(websocket, f"Unknown event: {envelope.event}", "VALIDATION_ERROR")
            return

        try:
            await handler(connection_id, websocket, envelope.data)
        except ValidationError as e:
            logger.warning(f"Rejected {envelope.event} from connection {connection_id}: {e}")
            await self.emit_error(websocket, f"Invalid payload: {e}", "VALIDATION_ERROR")
        except Exception as e:
            logger.error(f"Unhandled error in {envelope.event} for connection {connection_id}: {e}", exc_info=True)
            await self.emit_error(websocket, "Internal server error", "INTERNAL_ERROR")

    # Event handlers

    async def handle_join_room(self, connection_id: str, websocket: WebSocket, data: Any):
        payload = _validate(JoinRoomPayload, {"chatRoomId": data} if isinstance(data, str) else data)
        room_id = payload.chatRoomId
        try:
            exists = self.backend.chat_room_exists(room_id)
        except redis.RedisError as e:
            logger.error(f"Error checking chat room {room_id}: {e}", exc_info=True)
            await self.emit_error(websocket, "Failed to join room", "PERSISTENCE_ERROR")
            return
        if not exists:
            logger.warning(f"Join rejected: chat room {room_id} not found (connection {connection_id})")
            await self.emit_error(websocket, "Chat room not found", "NOT_FOUND")
            return

        self.registry.join(room_id, connection_id, websocket)
        if self.use_pubsub:
            await self.ensure_listener(room_id)
        logger.info(f"Client {connection_id} joined room {room_id}")
        await self.send_event(websocket, "joined-room", {"chatRoomId": room_id, "message": "Joined chat room"})

    async def handle_leave_room(self, connection_id: str, websocket: WebSocket, data: Any):
        payload = _validate(JoinRoomPayload, {"chatRoomId": data} if isinstance(data, str) else data)
        room_id = payload.chatRoomId
        self.registry.leave(room_id, connection_id)
        if self.use_pubsub and not self.registry.has_members(room_id):
            await self.stop_listener(room_id)
        logger.info(f"Client {connection_id} left room {room_id}")
        await self.send_event(websocket, "left-room", {"chatRoomId": room_id, "message": "Left chat room"})

    async def handle_chat_message(self, connection_id: str, websocket: WebSocket, data: Any):
        payload = _validate(ChatMessagePayload, data)
        try:
            record = self.backend.create_message(payload.model_dump())
        except (PersistenceError, redis.RedisError) as e:
            logger.error(f"Error handling chat message from {connection_id}: {e}", exc_info=True)
            await self.emit_error(websocket, "Failed to send message", "PERSISTENCE_ERROR")
            return
        await self.broadcast(payload.chatRoomId, "new-message", _public(record))
        logger.info(f"Message {record['id']} broadcasted to room {payload.chatRoomId}")

    async def handle_request_ai_response(self, connection_id: str, websocket: WebSocket, data: Any):
        payload = _validate(AIResponseRequestPayload, data)
        room_id = payload.chatRoomId
        try:
            character = self.backend.find_character_by_id(payload.characterId)
            if not character:
                raise NotFoundError(f"Character {payload.characterId} not found")
            recent_messages = self.backend.find_recent_messages(room_id, self.recent_limit)
        except NotFoundError as e:
            logger.warning(f"AI response rejected for {connection_id}: {e}")
            await self.emit_error(websocket, "Character not found", "NOT_FOUND")
            return
        except redis.RedisError as e:
            logger.error(f"Error loading context for AI response in room {room_id}: {e}", exc_info=True)
            await self.emit_error(websocket, "Failed to generate AI response", "PERSISTENCE_ERROR")
            return

        try:
            reply = await asyncio.wait_for(
                self.chat_service.generate_response(character, payload.message, recent_messages),
                timeout=self.ai_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"AI response for character {character['id']} timed out after {self.ai_timeout}s")
            await self.emit_error(websocket, "Failed to generate AI response", "PROVIDER_TIMEOUT")
            return
        except ProviderError as e:
            logger.error(f"AI provider failed for character {character['id']} ({e.kind}): {e}")
            await self.emit_error(websocket, "Failed to generate AI response", f"PROVIDER_{e.kind.upper()}")
            return
        except redis.RedisError as e:
            # Model config lookup happens inside generation
            logger.error(f"Error resolving model config for character {character['id']}: {e}", exc_info=True)
            await self.emit_error(websocket, "Failed to generate AI response", "PERSISTENCE_ERROR")
            return

        try:
            record = self.backend.create_message({
                "content": reply,
                "senderType": "character",
                "senderId": character["id"],
                "chatRoomId": room_id,
            })
        except (PersistenceError, redis.RedisError) as e:
            logger.error(f"Error persisting AI response in room {room_id}: {e}", exc_info=True)
            await self.emit_error(websocket, "Failed to generate AI response", "PERSISTENCE_ERROR")
            return
        await self.broadcast(room_id, "new-message", _public(record))
        logger.info(f"AI response {record['id']} from {character['name']} broadcasted to room {room_id}")

    async def close_room(self, room_id: str):
        """Tell a room's members it was closed and drop them from it."""
        members = self.registry.evict_room(room_id)
        if self.use_pubsub:
            await self.stop_listener(room_id)
        notice = {"event": "message", "data": {
            "text": "Chat room has been closed",
            "senderId": "system",
            "chatRoomId": room_id,
            "timestamp": utc_now_iso(),
        }}
        if self.use_pubsub:
            # Members connected to other instances
            try:
                self.backend.publish_message(room_id, notice)
            except redis.RedisError as e:
                logger.error(f"Error publishing close notice for room {room_id}: {e}", exc_info=True)
        text = json.dumps(notice)
        await asyncio.gather(*(ws.send_text(text) for ws in members.values()), return_exceptions=True)
        logger.info(f"Chat room {room_id} closed, {len(members)} local connections evicted")


def _validate(model, data):
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
        raise ValidationError(f"missing or invalid field(s): {fields}") from e


def _public(record: dict) -> dict:
    return ChatMessage.model_validate(record).model_dump()


chat_relay = ChatRelay(redis_backend, chat_service)
