from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageBase(BaseModel):
    message_text: str
    is_read: bool = False


class Message(MessageBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    read_at: Optional[datetime] = None
    created_at: datetime


class MessagePage(BaseModel):
    messages: List[Message] = Field(default_factory=list)
    page: int
    limit: int
    total: int
    total_pages: int


class Conversation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    counsellor_id: str
    college_id: Optional[str] = None
    last_message_at: datetime
    created_at: datetime
    updated_at: Optional[datetime] = None


class ConversationSummary(Conversation):
    """Conversation row for list views: the other participant plus a preview."""

    other_user_id: str
    other_user_name: Optional[str] = None
    other_user_avatar: Optional[str] = None
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    last_message_sender: Optional[str] = None
    last_message_is_read: Optional[bool] = None
    unread_count: int = 0


class ConversationStart(BaseModel):
    counsellor_id: str


class UnreadCount(BaseModel):
    total_unread: int


# --- Socket.IO payloads (direct messaging namespace) ---


class ConversationEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    conversation_id: str

    @field_validator("conversation_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        if isinstance(value, int):
            return str(value)
        return value


class SendMessageEvent(ConversationEvent):
    receiver_id: Optional[str] = None
    message_text: Optional[str] = None


class OnlineStatusQuery(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
