from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from carelink.db.session import Base

if TYPE_CHECKING:  # pragma: no cover
    from .community import Community


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, PyEnum):
    student = "student"
    counsellor = "counsellor"
    admin = "admin"
    superadmin = "superadmin"

    @staticmethod
    def _missing_(value):
        if isinstance(value, str):
            value = value.lower()
            if value == "counselor":
                return UserRole.counsellor
            for member in UserRole:
                if member.value == value:
                    return member
        return None


class College(Base):
    """Tenant boundary."""

    __tablename__ = "colleges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())

    profiles: Mapped[List["Profile"]] = relationship("Profile", back_populates="college")
    communities: Mapped[List["Community"]] = relationship("Community", back_populates="college")


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[Optional[str]] = mapped_column(String(150), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        nullable=False,
    )
    college_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("colleges.id", ondelete="SET NULL")
    )
    # Persistent community handle, only meaningful for students
    anonymous_username: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())

    college: Mapped[Optional["College"]] = relationship("College", back_populates="profiles")
