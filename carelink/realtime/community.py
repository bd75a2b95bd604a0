"""Community rooms on the ``/community`` namespace.

Students are never shown by id or name here: presence events carry
``"anonymous"`` and messages carry the student's anonymous handle.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from carelink.core.config import settings
from carelink.realtime.base import NamespaceHandlers, guarded, parse_payload
from carelink.realtime.errors import AuthorizationDenied, CollaboratorFailure, ValidationFailed
from carelink.realtime.rooms import COMMUNITY_PREFIX, room_for_community
from carelink.realtime.session import Identity
from carelink.schemas.community import CommunityEvent, CommunityHistoryQuery, CommunityMessage, CommunitySendMessage
from carelink.services.chat_store import ChatStore, present_community_message

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def message_payload(message: CommunityMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "communityId": message.community_id,
        "message_text": message.message_text,
        "sender_id": message.sender_id,
        "sender_role": message.sender_role,
        "username": message.username,
        "anonymous_username": message.anonymous_username,
        "created_at": message.created_at.isoformat(),
    }


class CommunityHandlers(NamespaceHandlers):
    namespace = "/community"
    events = {
        "connect": "on_connect",
        "disconnect": "on_disconnect",
        "join-community": "on_join_community",
        "leave-community": "on_leave_community",
        "send-message": "on_send_message",
        "typing": "on_typing",
        "stop_typing": "on_stop_typing",
        "get-messages": "on_get_messages",
    }

    def _presence_event(self, identity: Identity) -> Dict[str, Any]:
        return {"userId": identity.public_id, "role": identity.role.value, "timestamp": _timestamp()}

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        identity = await self.optional_identity(sid)
        if identity is None:
            return

        rooms = self.rooms.joined_rooms(sid, COMMUNITY_PREFIX)
        went_offline = self.presence.disconnect(identity.id, sid)
        remaining = self.presence.handles(identity.id)
        departed = [r for r in rooms if not any(self.rooms.has_joined_room(h, r) for h in remaining)]
        cleared = [r for r in departed if self.typing.stop(r, identity.id)]
        if went_offline:
            cleared.extend(self.typing.clear_user(identity.id))

        for room in departed:
            await self.emit("user-disconnected", self._presence_event(identity), room=room, skip_sid=sid)
        await self._announce_stopped_typing(identity, cleared)
        logger.info("[community] %s disconnected from %d rooms", sid, len(rooms))

    # --- rooms ---

    @guarded("Failed to join community")
    async def on_join_community(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(CommunityEvent, data, "Community ID is required")
        community = await self.rooms.join_community(sid, identity, event.community_id)
        if community is None:
            return

        room = room_for_community(community.id)
        await self.emit("joined-community", {"communityId": community.id, "title": community.title}, to=sid)
        await self.emit("user-joined", self._presence_event(identity), room=room, skip_sid=sid)
        logger.info("[community] %s (%s) joined %s", identity.id, identity.role.value, community.id)

    @guarded("Failed to leave community")
    async def on_leave_community(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(CommunityEvent, data, "Community ID is required")
        room = room_for_community(event.community_id)
        if not self.rooms.has_joined_room(sid, room):
            raise AuthorizationDenied("You have not joined this community")

        if await self.rooms.leave_community(sid, identity, event.community_id):
            await self._typing_event("user_stopped_typing", identity, room)
        await self.emit("left-community", {"communityId": event.community_id}, to=sid)
        await self.emit("user-left", self._presence_event(identity), room=room)

    # --- messages ---

    @guarded("Failed to send message")
    async def on_send_message(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        event = parse_payload(CommunitySendMessage, data, "Community ID is required")
        room = room_for_community(event.community_id)
        if not self.rooms.has_joined_room(sid, room):
            raise AuthorizationDenied("Join the community before sending messages")

        try:
            text = (event.message_text or "").strip()
            if not text:
                raise ValidationFailed("Message text is required")
            if len(text) > settings.COMMUNITY_MESSAGE_MAX_LENGTH:
                raise ValidationFailed(
                    f"Message is too long (max {settings.COMMUNITY_MESSAGE_MAX_LENGTH} characters)"
                )
            if not identity.is_admin and not await self.store.is_member(identity.id, event.community_id):
                raise AuthorizationDenied("You are not a member of this community")

            # Resolved before the insert: once stored, the message must go out
            display_name = await self.store.resolve_display_name(identity.id, identity.role)
            stored = await self.store.insert_community_message(
                event.community_id, identity.id, identity.role, text
            )
        finally:
            if self.typing.stop(room, identity.id):
                await self._announce_stopped_typing(identity, [room])

        message = present_community_message(stored, display_name)
        await self.emit("new-message", message_payload(message), room=room)
        logger.info("[community] message %s in %s", message.id, event.community_id)

    @guarded("Failed to load messages")
    async def on_get_messages(self, sid: str, data: Any = None) -> None:
        identity = await self.identity(sid)
        query = parse_payload(CommunityHistoryQuery, data, "Community ID is required")

        if identity.is_admin:
            community = await self.store.get_community(query.community_id)
            if not ChatStore.is_tenant_match(community, identity.tenant_id):
                raise AuthorizationDenied("Community not found or access denied")
        else:
            if not self.rooms.has_joined_room(sid, room_for_community(query.community_id)):
                raise AuthorizationDenied("Join the community first")
            if not await self.store.is_member(identity.id, query.community_id):
                raise AuthorizationDenied("You are not a member of this community")

        limit = query.limit or settings.COMMUNITY_HISTORY_DEFAULT_LIMIT
        limit = max(1, min(limit, settings.COMMUNITY_HISTORY_MAX_LIMIT))
        messages = await self.store.list_community_messages(
            query.community_id, limit=limit, before_id=query.before_message_id
        )
        await self.emit(
            "messages-history",
            {
                "communityId": query.community_id,
                "messages": [message_payload(m) for m in messages],
                "hasMore": len(messages) == limit,
            },
            to=sid,
        )

    # --- typing ---

    async def _typing_event(self, event: str, identity: Identity, room: str) -> None:
        display_name = await self.store.resolve_display_name(identity.id, identity.role)
        await self.emit(
            event,
            {
                "communityId": room[len(COMMUNITY_PREFIX):],
                "userId": identity.public_id,
                "role": identity.role.value,
                "username": display_name,
            },
            room=room,
            skip_sid=self.own_handles(identity),
        )

    async def _announce_stopped_typing(self, identity: Identity, rooms: List[str]) -> None:
        # Cleanup only; a lookup failure must not mask the caller's outcome
        try:
            for room in rooms:
                await self._typing_event("user_stopped_typing", identity, room)
        except CollaboratorFailure:
            logger.warning("[community] typing cleanup broadcast skipped for %s", identity.id)

    async def _typing_room(self, sid: str, data: Any):
        identity = await self.identity(sid)
        event = parse_payload(CommunityEvent, data, "Community ID is required")
        room = room_for_community(event.community_id)
        if not self.rooms.has_joined_room(sid, room):
            raise AuthorizationDenied("Join the community first")
        return identity, room

    @guarded("Failed to update typing status")
    async def on_typing(self, sid: str, data: Any = None) -> None:
        identity, room = await self._typing_room(sid, data)
        if self.typing.start(room, identity.id):
            await self._typing_event("user_typing", identity, room)

    @guarded("Failed to update typing status")
    async def on_stop_typing(self, sid: str, data: Any = None) -> None:
        identity, room = await self._typing_room(sid, data)
        if self.typing.stop(room, identity.id):
            await self._typing_event("user_stopped_typing", identity, room)
