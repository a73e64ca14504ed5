from fastapi import APIRouter, HTTPException, Query, Request
import redis

from backend import redis_backend
from relay import chat_relay
from schemas.rooms import CreateChatRoomRequest, ChatRoomResponse, ChatRoomListResponse, ChatHistoryResponse
from logging_config import get_logger

logger = get_logger(__name__)

chatrooms_router = APIRouter(prefix="/chatrooms", tags=["chatrooms"])


def _room_or_404(room_id: str) -> dict:
    room = redis_backend.get_chat_room(room_id)
    if not room:
        logger.warning(f"Chat room {room_id} not found")
        raise HTTPException(status_code=404, detail="Chat room not found")
    return room


@chatrooms_router.post("/", status_code=201, response_model=ChatRoomResponse)
async def create_chat_room(chat_room: CreateChatRoomRequest, request: Request):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Chat room creation request from {client_host}, name: {chat_room.name}, theme: {chat_room.theme}")
    name = chat_room.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Chat room name is required")
    try:
        room = redis_backend.create_chat_room(name, chat_room.theme or None)
    except redis.RedisError as e:
        logger.error(f"Error creating chat room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create chat room")
    return ChatRoomResponse(**room, messageCount=0)


@chatrooms_router.get("/", response_model=ChatRoomListResponse)
async def list_chat_rooms():
    try:
        rooms = [
            ChatRoomResponse(**room, messageCount=redis_backend.count_messages(room["id"]))
            for room in redis_backend.list_chat_rooms()
        ]
    except redis.RedisError as e:
        logger.error(f"Error fetching chat rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch chat rooms")
    logger.debug(f"Listing {len(rooms)} chat rooms")
    return ChatRoomListResponse(chatRooms=rooms)


@chatrooms_router.get("/{room_id}", response_model=ChatRoomResponse)
async def get_chat_room(room_id: str):
    room = _room_or_404(room_id)
    return ChatRoomResponse(**room, messageCount=redis_backend.count_messages(room_id))


@chatrooms_router.get("/{room_id}/messages", response_model=ChatHistoryResponse)
async def get_chat_history(room_id: str, limit: int = Query(50, ge=1, le=500)):
    _room_or_404(room_id)
    messages = redis_backend.find_recent_messages(room_id, limit)
    return ChatHistoryResponse(chatRoomId=room_id, messages=messages)


@chatrooms_router.post("/{room_id}/clear")
async def clear_chat_history(room_id: str):
    _room_or_404(room_id)
    try:
        cleared = redis_backend.clear_messages(room_id)
    except redis.RedisError as e:
        logger.error(f"Error clearing chat room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to clear chat history")
    return {"message": "Chat history cleared", "cleared": cleared}


@chatrooms_router.delete("/{room_id}")
async def delete_chat_room(room_id: str):
    _room_or_404(room_id)
    redis_backend.delete_chat_room(room_id)
    # Let connected members know; any further message to the room fails persistence
    await chat_relay.close_room(room_id)
    logger.info(f"Chat room {room_id} closed")
    return {"message": "Chat room closed successfully"}
