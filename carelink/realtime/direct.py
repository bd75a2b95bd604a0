"""Direct student/counsellor messaging on the default namespace."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from carelink.core.config import settings
from carelink.realtime.base import NamespaceHandlers, guarded, parse_payload
from carelink.realtime.errors import AuthorizationDenied, CollaboratorFailure, NotFound, ValidationFailed
from carelink.realtime.rooms import CONVERSATION_PREFIX, room_for_conversation, room_for_user
from carelink.realtime.session import Identity
from carelink.schemas.conversation import (
    Conversation,
    ConversationEvent,
    Message,
    OnlineStatusQuery,
    SendMessageEvent,
)
from carelink.schemas.user import Sender

logger = logging.getLogger(__name__)


def other_participant(conversation: Conversation, user_id: str) -> str:
    if conversation.student_id == user_id:
        return conversation.counsellor_id
    return conversation.student_id


class DirectMessageHandlers(NamespaceHandlers):
    namespace = "/"
    events = {
        "connect": "on_connect",
        "disconnect": "on_disconnect",
        "join_conversation": "on_join_conversation",
        "leave_conversation": "on_leave_conversation",
        "send_message": "on_send_message",
        "mark_as_read": "on_mark_as_read",
        "typing": "on_typing",
        "stop_typing": "on_stop_typing",
        "check_online_status": "on_check_online_status",
        "get_unread_count": "on_get_unread_count",
    }

    # --- lifecycle ---

    async def after_connect(self, sid: str, identity: Identity, came_online: bool) -> None:
        if came_online:
            await self.emit("user_online_status", {"user_id": identity.id, "online": True})

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        identity = await self.optional_identity(sid)
        if identity is None:
            return

        rooms = self.rooms.joined_rooms(sid, CONVERSATION_PREFIX)
        went_offline = self.presence.disconnect(identity.id, sid)
        remaining = self.presence.handles(identity.id)
        # Typing set from this tab goes once no other tab of the user is in the room
        cleared = [
            r for r in rooms
            if not any(self.rooms.has_joined_room(h, r) for h in remaining) and self.typing.stop(r, identity.id)
        ]
        if went_offline:
            cleared.extend(self.typing.clear_user(identity.id))

        for room in cleared:
            await self.emit(
                "user_stopped_typing",
                {"conversation_id": room[len(CONVERSATION_PREFIX):], "user_id": identity.id},
                room=room,
                skip_sid=sid,
            )
        if not went_offline:
            logger.info("[socket] %s closed, %s still connected elsewhere", sid, identity.id)
            return
        logger.info("[socket] %s went offline (cleared typing in %d rooms)", identity.id, len(cleared))
        await self.emit("user_online_status", {"user_id": identity.id, "online": False})

    # --- rooms ---

    @guarded("Failed to join conversation")
    async def on_join_conversation(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(ConversationEvent, data, "Conversation ID is required")
        conversation = await self.rooms.join_conversation(sid, identity, event.conversation_id)
        if conversation is None:
            return

        await self.emit("joined_conversation", {"conversation_id": conversation.id}, to=sid)
        await self._acknowledge_read(identity, conversation)

        other_id = other_participant(conversation, identity.id)
        await self.emit(
            "user_online_status",
            {"conversation_id": conversation.id, "user_id": other_id, "online": self.presence.is_online(other_id)},
            to=sid,
        )

    @guarded("Failed to leave conversation")
    async def on_leave_conversation(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(ConversationEvent, data, "Conversation ID is required")
        room = room_for_conversation(event.conversation_id)
        await self.rooms.leave_conversation(sid, identity, event.conversation_id)
        # The room hears about every departure, typing or not
        await self.emit(
            "user_stopped_typing",
            {"conversation_id": event.conversation_id, "user_id": identity.id},
            room=room,
            skip_sid=self.own_handles(identity),
        )
        await self.emit("left_conversation", {"conversation_id": event.conversation_id}, to=sid)

    # --- messages ---

    @guarded("Failed to send message")
    async def on_send_message(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(SendMessageEvent, data, "Conversation ID is required")
        room = room_for_conversation(event.conversation_id)

        try:
            text = (event.message_text or "").strip()
            if not text:
                raise ValidationFailed("Message text is required")
            if len(text) > settings.DIRECT_MESSAGE_MAX_LENGTH:
                raise ValidationFailed(
                    f"Message is too long (max {settings.DIRECT_MESSAGE_MAX_LENGTH} characters)"
                )

            conversation = await self.store.get_conversation(event.conversation_id, identity.id)
            if conversation is None:
                raise NotFound("Conversation not found or access denied")
            receiver_id = other_participant(conversation, identity.id)
            if event.receiver_id and event.receiver_id != receiver_id:
                raise AuthorizationDenied("Receiver is not part of this conversation")

            message = await self.store.insert_message(conversation.id, identity.id, receiver_id, text)
        finally:
            # The sender stopped typing whether or not the send went through
            if self.typing.stop(room, identity.id):
                await self.emit(
                    "user_stopped_typing",
                    {"conversation_id": event.conversation_id, "user_id": identity.id},
                    room=room,
                    skip_sid=self.own_handles(identity),
                )

        payload = message.model_dump(mode="json")
        await self.emit("new_message", {"conversation_id": conversation.id, "message": payload}, room=room)
        logger.info("[socket] message %s in %s from %s", message.id, conversation.id, identity.id)
        await self._notify_receiver(identity, message, payload)

    async def _notify_receiver(self, identity: Identity, message: Message, payload: Dict[str, Any]) -> None:
        # The message is already stored and broadcast; failures here only cost the badge update
        receiver_room = room_for_user(message.receiver_id)
        try:
            sender = await self._sender_card(identity.id)
            await self.emit(
                "new_message_notification",
                {"conversation_id": message.conversation_id, "message": payload, "sender": sender},
                room=receiver_room,
            )
            unread = await self.store.unread_count(message.receiver_id, message.conversation_id)
        except CollaboratorFailure:
            logger.warning("[socket] receiver notification skipped for message %s", message.id)
            return

        await self.emit(
            "unread_count_updated",
            {
                "conversation_id": message.conversation_id,
                "unread_count": unread,
                "last_message": message.message_text,
                "last_message_at": payload["created_at"],
                "last_message_sender": message.sender_id,
            },
            room=receiver_room,
        )

    async def _sender_card(self, user_id: str) -> Optional[Dict[str, Any]]:
        profile = await self.store.get_profile(user_id)
        if profile is None:
            return None
        return Sender(id=profile.id, name=profile.name, avatar_url=profile.avatar_url).model_dump()

    @guarded("Failed to mark messages as read")
    async def on_mark_as_read(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(ConversationEvent, data, "Conversation ID is required")
        conversation = await self.store.get_conversation(event.conversation_id, identity.id)
        if conversation is None:
            raise NotFound("Conversation not found or access denied")
        await self._acknowledge_read(identity, conversation)

    async def _acknowledge_read(self, identity: Identity, conversation: Conversation) -> None:
        """Mark the reader's unread messages read and tell both sides."""
        read = await self.store.mark_read(conversation.id, identity.id)
        await self.emit(
            "messages_read",
            {
                "conversation_id": conversation.id,
                "reader_id": identity.id,
                "read_count": len(read),
                "message_ids": [m.id for m in read],
            },
            room=room_for_user(other_participant(conversation, identity.id)),
        )
        if not read:
            return

        total = await self.store.unread_count(identity.id)
        remaining = await self.store.unread_count(identity.id, conversation.id)
        await self.emit(
            "unread_count_updated",
            {"count": total, "conversation_id": conversation.id, "unread_count": remaining},
            room=room_for_user(identity.id),
        )

    # --- typing ---

    async def _typing_room(self, sid: str, data: Any):
        identity = await self.identity(sid)
        event = parse_payload(ConversationEvent, data, "Conversation ID is required")
        room = room_for_conversation(event.conversation_id)
        if not self.rooms.has_joined_room(sid, room):
            raise AuthorizationDenied("Join the conversation first")
        return identity, event.conversation_id, room

    @guarded("Failed to update typing status")
    async def on_typing(self, sid: str, data: Any = None) -> None:
        identity, conversation_id, room = await self._typing_room(sid, data)
        if self.typing.start(room, identity.id):
            await self.emit(
                "user_typing",
                {"conversation_id": conversation_id, "user_id": identity.id},
                room=room,
                skip_sid=self.own_handles(identity),
            )

    @guarded("Failed to update typing status")
    async def on_stop_typing(self, sid: str, data: Any = None) -> None:
        identity, conversation_id, room = await self._typing_room(sid, data)
        if self.typing.stop(room, identity.id):
            await self.emit(
                "user_stopped_typing",
                {"conversation_id": conversation_id, "user_id": identity.id},
                room=room,
                skip_sid=self.own_handles(identity),
            )

    # --- status ---

    @guarded("Failed to check online status")
    async def on_check_online_status(self, sid: str, data: Any = None) -> None:
        await self.identity(sid)
        query = parse_payload(OnlineStatusQuery, data, "User ID is required")
        await self.emit(
            "user_online_status",
            {"user_id": query.user_id, "online": self.presence.is_online(query.user_id)},
            to=sid,
        )

    @guarded("Failed to get unread count")
    async def on_get_unread_count(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        count = await self.store.unread_count(identity.id)
        await self.emit("unread_count_updated", {"count": count}, to=sid)
