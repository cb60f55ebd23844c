"""
Chat Schemas

Request/response models for conversations, messages, reactions,
read receipts and typing indicators.
"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import datetime
from finops_api.models.user import UserRole


class ParticipantResponse(BaseModel):
    id: str
    name: Optional[str]
    email: str
    picture: Optional[str] = None
    role: UserRole

    class Config:
        from_attributes = True


class ReactionResponse(BaseModel):
    id: str
    message_id: str
    user_id: str
    emoji: str
    created_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    image_url: Optional[str]
    created_at: datetime
    reactions: List[ReactionResponse] = []
    read_by: List[str] = []


class MessageCreate(BaseModel):
    content: str = Field("", max_length=5000)
    image_url: Optional[str] = Field(None, max_length=1024)

    @model_validator(mode="after")
    def check_not_empty(self):
        if not self.content.strip() and not self.image_url:
            raise ValueError("Message content is required unless an image is attached")
        return self


class ConversationSummary(BaseModel):
    id: str
    key: str
    other_user: ParticipantResponse
    last_message: Optional[MessageResponse]
    unread_count: int
    updated_at: datetime


class ConversationListResponse(BaseModel):
    conversations: List[ConversationSummary]


class ConversationDetail(BaseModel):
    """id is None until the first message creates the conversation."""
    id: Optional[str]
    key: str
    other_user: ParticipantResponse
    messages: List[MessageResponse]


class MessageListResponse(BaseModel):
    messages: List[MessageResponse]


class ReadReceiptResponse(BaseModel):
    marked: int


class TypingRequest(BaseModel):
    is_typing: bool


class TypingResponse(BaseModel):
    typing: List[str]


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class ReactionToggleResponse(BaseModel):
    action: str  # added, removed
    reaction: ReactionResponse
