from __future__ import annotations

from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from carelink.models.community import Community, CommunityMember, CommunityMessage
from carelink.models.user import UserRole


class CommunityService:
    @staticmethod
    def get_community(db: Session, community_id: str) -> Optional[Community]:
        return db.get(Community, community_id)

    @staticmethod
    def is_member(db: Session, user_id: str, community_id: str) -> bool:
        stmt = select(CommunityMember.id).where(
            CommunityMember.user_id == user_id,
            CommunityMember.community_id == community_id,
        )
        return db.scalars(stmt).first() is not None

    @staticmethod
    def add_message(
        db: Session,
        *,
        community_id: str,
        sender_id: str,
        sender_role: UserRole,
        message_text: str,
    ) -> CommunityMessage:
        message = CommunityMessage(
            community_id=community_id,
            sender_id=sender_id,
            sender_role=sender_role,
            message_text=message_text,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def list_messages(
        db: Session,
        community_id: str,
        *,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> List[CommunityMessage]:
        """Page of messages older than ``before_id``, returned oldest first.

        The cursor is the (created_at, id) position of ``before_id`` so that
        messages sharing its timestamp are not skipped.
        """
        stmt = (
            select(CommunityMessage)
            .where(CommunityMessage.community_id == community_id)
            .order_by(CommunityMessage.created_at.desc(), CommunityMessage.id.desc())
            .limit(limit)
        )
        if before_id:
            ref = db.get(CommunityMessage, before_id)
            if ref is not None and ref.community_id == community_id:
                stmt = stmt.where(
                    or_(
                        CommunityMessage.created_at < ref.created_at,
                        and_(CommunityMessage.created_at == ref.created_at, CommunityMessage.id < ref.id),
                    )
                )
        messages = list(db.scalars(stmt))
        messages.reverse()
        return messages
