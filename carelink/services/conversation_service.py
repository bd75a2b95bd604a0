from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carelink.models.conversations import Conversation
from carelink.models.messages import Message
from carelink.models.user import Profile


class ConversationService:
    @staticmethod
    def find_conversation(db: Session, participant_a: str, participant_b: str) -> Optional[Conversation]:
        stmt = select(Conversation).where(
            or_(
                (Conversation.student_id == participant_a) & (Conversation.counsellor_id == participant_b),
                (Conversation.student_id == participant_b) & (Conversation.counsellor_id == participant_a),
            )
        )
        return db.scalars(stmt).first()

    @staticmethod
    def get_or_create_by_pair(
        db: Session,
        *,
        student_id: str,
        counsellor_id: str,
        college_id: Optional[str],
    ) -> Conversation:
        existing = ConversationService.find_conversation(db, student_id, counsellor_id)
        if existing:
            return existing
        now = datetime.utcnow()
        conv = Conversation(
            student_id=student_id,
            counsellor_id=counsellor_id,
            college_id=college_id,
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(conv)
        try:
            db.commit()
        except IntegrityError:
            # Lost the race against a concurrent create for the same pair
            db.rollback()
            winner = ConversationService.find_conversation(db, student_id, counsellor_id)
            if winner is None:
                raise
            return winner
        db.refresh(conv)
        return conv

    @staticmethod
    def get_conversation(db: Session, conversation_id: str, requester_id: str) -> Optional[Conversation]:
        # Absent and forbidden look the same to the caller
        stmt = select(Conversation).where(
            Conversation.id == conversation_id,
            or_(Conversation.student_id == requester_id, Conversation.counsellor_id == requester_id),
        )
        return db.scalars(stmt).first()

    @staticmethod
    def list_conversations_for(db: Session, user_id: str, college_id: Optional[str]) -> List[Dict[str, Any]]:
        stmt = (
            select(Conversation)
            .where(or_(Conversation.student_id == user_id, Conversation.counsellor_id == user_id))
            .order_by(Conversation.last_message_at.desc(), Conversation.created_at.desc())
        )
        if college_id is not None:
            stmt = stmt.where(Conversation.college_id == college_id)
        conversations = list(db.scalars(stmt))

        summaries = []
        for conv in conversations:
            other_id = conv.other_participant(user_id)
            other = db.get(Profile, other_id)
            last = db.scalars(
                select(Message)
                .where(Message.conversation_id == conv.id)
                .order_by(Message.created_at.desc())
                .limit(1)
            ).first()
            summaries.append(
                {
                    "id": conv.id,
                    "student_id": conv.student_id,
                    "counsellor_id": conv.counsellor_id,
                    "college_id": conv.college_id,
                    "last_message_at": conv.last_message_at,
                    "created_at": conv.created_at,
                    "updated_at": conv.updated_at,
                    "other_user_id": other_id,
                    "other_user_name": other.name if other else "Unknown",
                    "other_user_avatar": other.avatar_url if other else None,
                    "last_message": last.message_text if last else None,
                    "last_message_time": last.created_at if last else conv.last_message_at,
                    "last_message_sender": last.sender_id if last else None,
                    "last_message_is_read": bool(last.is_read) if last else None,
                    "unread_count": ConversationService.unread_count(db, user_id, conversation_id=conv.id),
                }
            )
        return summaries

    @staticmethod
    def add_message(
        db: Session,
        conversation: Conversation,
        *,
        sender_id: str,
        receiver_id: str,
        message_text: str,
    ) -> Message:
        now = datetime.utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            message_text=message_text,
            is_read=False,
            created_at=now,
        )
        db.add(message)
        conversation.last_message_at = now
        db.add(conversation)
        db.commit()
        db.refresh(message)
        return message

    @staticmethod
    def list_messages(
        db: Session,
        conversation_id: str,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Message], int, int]:
        total = db.scalar(
            select(func.count()).select_from(Message).where(Message.conversation_id == conversation_id)
        ) or 0
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        messages = list(db.scalars(stmt))
        messages.reverse()  # oldest first for rendering
        return messages, total, math.ceil(total / limit) if limit else 0

    @staticmethod
    def mark_conversation_read(db: Session, conversation_id: str, reader_id: str) -> List[Message]:
        """Mark everything currently unread for ``reader_id`` as read.

        The read boundary is the snapshot of ids taken here; messages inserted
        after it stay unread.
        """
        ids = list(
            db.scalars(
                select(Message.id).where(
                    Message.conversation_id == conversation_id,
                    Message.receiver_id == reader_id,
                    Message.is_read.is_(False),
                )
            )
        )
        if not ids:
            return []
        db.execute(
            update(Message)
            .where(Message.id.in_(ids), Message.is_read.is_(False))
            .values(is_read=True, read_at=datetime.utcnow())
        )
        db.commit()
        return list(db.scalars(select(Message).where(Message.id.in_(ids)).order_by(Message.created_at.asc())))

    @staticmethod
    def unread_count(db: Session, user_id: str, *, conversation_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(Message).where(
            Message.receiver_id == user_id,
            Message.is_read.is_(False),
        )
        if conversation_id is not None:
            stmt = stmt.where(Message.conversation_id == conversation_id)
        return int(db.scalar(stmt) or 0)

    @staticmethod
    def delete_conversation(db: Session, conversation: Conversation) -> None:
        db.delete(conversation)
        db.commit()
