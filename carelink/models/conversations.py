from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carelink.db.session import Base
from carelink.models.user import Profile, new_id


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("student_id", "counsellor_id", name="uq_conversations_pair"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    student_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    counsellor_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    college_id: Mapped[Optional[str]] = mapped_column(ForeignKey("colleges.id", ondelete="CASCADE"))
    last_message_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    student: Mapped["Profile"] = relationship("Profile", foreign_keys=[student_id])
    counsellor: Mapped["Profile"] = relationship("Profile", foreign_keys=[counsellor_id])
    messages: Mapped[List["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )

    def other_participant(self, user_id: str) -> str:
        return self.counsellor_id if user_id == self.student_id else self.student_id
