from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from carelink.models.user import UserRole


class ProfileBase(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    role: UserRole
    college_id: Optional[str] = None
    is_active: bool = True


class Profile(ProfileBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    anonymous_username: Optional[str] = None
    avatar_url: Optional[str] = None


class Sender(BaseModel):
    """Sender card attached to direct-message notifications."""

    id: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
