from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

SenderType = Literal["user", "character", "system"]


class EventEnvelope(BaseModel):
    event: str = Field(min_length=1)
    data: Any = None

class JoinRoomPayload(BaseModel):
    chatRoomId: str = Field(min_length=1)

class ChatMessagePayload(BaseModel):
    content: str = Field(min_length=1)
    senderType: SenderType
    senderId: Optional[str] = None
    chatRoomId: str = Field(min_length=1)

class AIResponseRequestPayload(BaseModel):
    message: str = Field(min_length=1)
    chatRoomId: str = Field(min_length=1)
    characterId: str = Field(min_length=1)

class ChatMessage(BaseModel):
    id: str
    content: str
    senderType: SenderType
    senderId: Optional[str] = None
    chatRoomId: str
    createdAt: str
    character: Optional[dict] = None
