"""
Persistence collaborator for the realtime layer.

``ChatStore`` is the narrow async contract the socket handlers depend on.
``SqlChatStore`` implements it on top of the SQLAlchemy services, running each
call in a worker thread with its own short-lived session. Nothing is cached
between calls: every count and membership check hits the database.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from carelink.models.community import CommunityMessage as CommunityMessageModel
from carelink.models.user import UserRole
from carelink.realtime.errors import AuthorizationDenied, CollaboratorFailure, NotFound, RealtimeError
from carelink.schemas.community import Community, CommunityMessage
from carelink.schemas.conversation import Conversation, ConversationSummary, Message, MessagePage
from carelink.schemas.user import Profile
from carelink.services.community_service import CommunityService
from carelink.services.conversation_service import ConversationService
from carelink.services.profile_service import ProfileService

logger = logging.getLogger(__name__)


def present_community_message(message: CommunityMessage, display_name: str) -> CommunityMessage:
    """Attach the display identity to a stored community message.

    Students only ever appear under ``anonymous_username``; their real id and
    name are stripped.
    """
    if message.sender_role == UserRole.student.value:
        return message.model_copy(
            update={"sender_id": None, "username": None, "anonymous_username": display_name}
        )
    return message.model_copy(update={"username": display_name, "anonymous_username": None})


def _community_message(row: CommunityMessageModel) -> CommunityMessage:
    return CommunityMessage(
        id=row.id,
        community_id=row.community_id,
        message_text=row.message_text,
        sender_id=row.sender_id,
        sender_role=UserRole(row.sender_role).value,
        created_at=row.created_at,
    )


class ChatStore(abc.ABC):
    """Everything durable the realtime core reads or writes."""

    # --- identity ---

    @abc.abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    @abc.abstractmethod
    async def resolve_display_name(self, user_id: str, role: UserRole | str) -> str: ...

    # --- direct messaging ---

    @abc.abstractmethod
    async def find_conversation(self, participant_a: str, participant_b: str) -> Optional[Conversation]: ...

    @abc.abstractmethod
    async def get_or_create_conversation(
        self, student_id: str, counsellor_id: str, college_id: Optional[str]
    ) -> Conversation: ...

    @abc.abstractmethod
    async def get_conversation(self, conversation_id: str, requester_id: str) -> Optional[Conversation]: ...

    @abc.abstractmethod
    async def list_conversations_for(self, user_id: str, college_id: Optional[str]) -> List[ConversationSummary]: ...

    @abc.abstractmethod
    async def insert_message(
        self, conversation_id: str, sender_id: str, receiver_id: str, message_text: str
    ) -> Message: ...

    @abc.abstractmethod
    async def list_messages(self, conversation_id: str, page: int = 1, limit: int = 50) -> MessagePage: ...

    @abc.abstractmethod
    async def mark_read(self, conversation_id: str, reader_id: str) -> List[Message]: ...

    @abc.abstractmethod
    async def unread_count(self, user_id: str, conversation_id: Optional[str] = None) -> int: ...

    @abc.abstractmethod
    async def delete_conversation(self, conversation_id: str, requester_id: str) -> bool: ...

    # --- communities ---

    @abc.abstractmethod
    async def get_community(self, community_id: str) -> Optional[Community]: ...

    @staticmethod
    def is_tenant_match(community: Optional[Community], tenant_id: Optional[str]) -> bool:
        return community is not None and tenant_id is not None and community.college_id == tenant_id

    @abc.abstractmethod
    async def is_member(self, user_id: str, community_id: str) -> bool: ...

    @abc.abstractmethod
    async def insert_community_message(
        self, community_id: str, sender_id: str, sender_role: UserRole | str, message_text: str
    ) -> CommunityMessage: ...

    @abc.abstractmethod
    async def list_community_messages(
        self, community_id: str, limit: int = 50, before_id: Optional[str] = None
    ) -> List[CommunityMessage]: ...


class SqlChatStore(ChatStore):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def _run(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def work() -> Any:
            db: Session = self._session_factory()
            try:
                return fn(db, *args, **kwargs)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        try:
            return await asyncio.to_thread(work)
        except RealtimeError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("[store] %s failed", label)
            raise CollaboratorFailure() from exc

    # --- identity ---

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        def op(db: Session) -> Optional[Profile]:
            row = ProfileService.get_profile(db, user_id)
            return Profile.model_validate(row) if row else None

        return await self._run("get_profile", op)

    async def resolve_display_name(self, user_id: str, role: UserRole | str) -> str:
        return await self._run("resolve_display_name", ProfileService.resolve_display_name, user_id, role)

    # --- direct messaging ---

    async def find_conversation(self, participant_a: str, participant_b: str) -> Optional[Conversation]:
        def op(db: Session) -> Optional[Conversation]:
            row = ConversationService.find_conversation(db, participant_a, participant_b)
            return Conversation.model_validate(row) if row else None

        return await self._run("find_conversation", op)

    async def get_or_create_conversation(
        self, student_id: str, counsellor_id: str, college_id: Optional[str]
    ) -> Conversation:
        def op(db: Session) -> Conversation:
            row = ConversationService.get_or_create_by_pair(
                db, student_id=student_id, counsellor_id=counsellor_id, college_id=college_id
            )
            return Conversation.model_validate(row)

        return await self._run("get_or_create_conversation", op)

    async def get_conversation(self, conversation_id: str, requester_id: str) -> Optional[Conversation]:
        def op(db: Session) -> Optional[Conversation]:
            row = ConversationService.get_conversation(db, conversation_id, requester_id)
            return Conversation.model_validate(row) if row else None

        return await self._run("get_conversation", op)

    async def list_conversations_for(self, user_id: str, college_id: Optional[str]) -> List[ConversationSummary]:
        def op(db: Session) -> List[ConversationSummary]:
            rows = ConversationService.list_conversations_for(db, user_id, college_id)
            return [ConversationSummary(**row) for row in rows]

        return await self._run("list_conversations_for", op)

    async def insert_message(
        self, conversation_id: str, sender_id: str, receiver_id: str, message_text: str
    ) -> Message:
        def op(db: Session) -> Message:
            conv = ConversationService.get_conversation(db, conversation_id, sender_id)
            if conv is None:
                raise NotFound("Conversation not found or access denied")
            if receiver_id != conv.other_participant(sender_id):
                raise AuthorizationDenied("Receiver is not part of this conversation")
            row = ConversationService.add_message(
                db, conv, sender_id=sender_id, receiver_id=receiver_id, message_text=message_text
            )
            return Message.model_validate(row)

        return await self._run("insert_message", op)

    async def list_messages(self, conversation_id: str, page: int = 1, limit: int = 50) -> MessagePage:
        def op(db: Session) -> MessagePage:
            rows, total, total_pages = ConversationService.list_messages(
                db, conversation_id, page=page, limit=limit
            )
            return MessagePage(
                messages=[Message.model_validate(r) for r in rows],
                page=page,
                limit=limit,
                total=total,
                total_pages=total_pages,
            )

        return await self._run("list_messages", op)

    async def mark_read(self, conversation_id: str, reader_id: str) -> List[Message]:
        def op(db: Session) -> List[Message]:
            rows = ConversationService.mark_conversation_read(db, conversation_id, reader_id)
            return [Message.model_validate(r) for r in rows]

        return await self._run("mark_read", op)

    async def unread_count(self, user_id: str, conversation_id: Optional[str] = None) -> int:
        return await self._run(
            "unread_count", ConversationService.unread_count, user_id, conversation_id=conversation_id
        )

    async def delete_conversation(self, conversation_id: str, requester_id: str) -> bool:
        def op(db: Session) -> bool:
            conv = ConversationService.get_conversation(db, conversation_id, requester_id)
            if conv is None:
                return False
            ConversationService.delete_conversation(db, conv)
            return True

        return await self._run("delete_conversation", op)

    # --- communities ---

    async def get_community(self, community_id: str) -> Optional[Community]:
        def op(db: Session) -> Optional[Community]:
            row = CommunityService.get_community(db, community_id)
            return Community.model_validate(row) if row else None

        return await self._run("get_community", op)

    async def is_member(self, user_id: str, community_id: str) -> bool:
        return await self._run("is_member", CommunityService.is_member, user_id, community_id)

    async def insert_community_message(
        self, community_id: str, sender_id: str, sender_role: UserRole | str, message_text: str
    ) -> CommunityMessage:
        def op(db: Session) -> CommunityMessage:
            row = CommunityService.add_message(
                db,
                community_id=community_id,
                sender_id=sender_id,
                sender_role=UserRole(sender_role),
                message_text=message_text,
            )
            return _community_message(row)

        return await self._run("insert_community_message", op)

    async def list_community_messages(
        self, community_id: str, limit: int = 50, before_id: Optional[str] = None
    ) -> List[CommunityMessage]:
        def op(db: Session) -> List[CommunityMessage]:
            rows = CommunityService.list_messages(db, community_id, limit=limit, before_id=before_id)
            return [
                present_community_message(
                    _community_message(row),
                    ProfileService.resolve_display_name(db, row.sender_id, row.sender_role),
                )
                for row in rows
            ]

        return await self._run("list_community_messages", op)
