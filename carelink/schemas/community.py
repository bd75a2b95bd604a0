from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Community(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    college_id: str
    title: str
    description: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime


class CommunityMessage(BaseModel):
    """Community message as shown to room members.

    Exactly one of ``username`` / ``anonymous_username`` is set, depending on
    the sender's role. ``sender_id`` is withheld for students.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    community_id: str
    message_text: str
    sender_id: Optional[str] = None
    sender_role: str
    username: Optional[str] = None
    anonymous_username: Optional[str] = None
    created_at: datetime


# --- Socket.IO payloads (community namespace, camelCase on the wire) ---


class CommunityEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    community_id: str = Field(alias="communityId")


class CommunitySendMessage(CommunityEvent):
    message_text: Optional[str] = Field(default=None, alias="messageText")


class CommunityHistoryQuery(CommunityEvent):
    limit: Optional[int] = None
    before_message_id: Optional[str] = Field(default=None, alias="beforeMessageId")
