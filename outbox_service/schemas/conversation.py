import uuid
from typing import List, Optional

from pydantic import BaseModel, Field


class ConversationCreateRequest(BaseModel):
    """Schema for opening a conversation."""
    created_by: str = Field(..., min_length=1, max_length=64)
    participant_ids: List[str] = Field(..., min_length=1, description="Other participants; the creator is added automatically.")
    title: Optional[str] = Field(None, max_length=255)


class ConversationResponse(BaseModel):
    id: uuid.UUID
    title: Optional[str] = None
    participant_ids: List[str]
    version: int


class MessageSendRequest(BaseModel):
    sender_id: str = Field(..., min_length=1, max_length=64)
    content: str = Field(..., min_length=1, max_length=10000)


class MessageAcceptedResponse(BaseModel):
    """Response schema for a stored message (202 Accepted, delivery is asynchronous)."""
    message_id: uuid.UUID
    conversation_id: uuid.UUID
    message: str


class MarkReadRequest(BaseModel):
    reader_id: str = Field(..., min_length=1, max_length=64)
    message_ids: List[uuid.UUID]


class MarkReadResponse(BaseModel):
    updated: int
