from pydantic import BaseModel
from typing import Optional

from schemas.chat import ChatMessage


class CreateChatRoomRequest(BaseModel):
    name: str
    theme: Optional[str] = None

class ChatRoomResponse(BaseModel):
    id: str
    name: str
    theme: Optional[str] = None
    isActive: bool = True
    createdAt: str
    messageCount: int = 0

class ChatRoomListResponse(BaseModel):
    chatRooms: list[ChatRoomResponse]

class ChatHistoryResponse(BaseModel):
    chatRoomId: str
    messages: list[ChatMessage]
