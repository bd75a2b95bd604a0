"""Room naming and gated joins.

Rooms reflect who is actively viewing, not who participates: a conversation
always belongs to its two participants whether or not either is connected.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from carelink.realtime.errors import AuthorizationDenied, NotFound
from carelink.realtime.presence import PresenceRegistry
from carelink.realtime.session import Identity
from carelink.realtime.typing_state import TypingRegistry
from carelink.schemas.community import Community
from carelink.schemas.conversation import Conversation
from carelink.services.chat_store import ChatStore

logger = logging.getLogger(__name__)

CONVERSATION_PREFIX = "conversation:"
COMMUNITY_PREFIX = "community:"


def room_for_user(user_id: str) -> str:
    return f"user:{user_id}"


def room_for_conversation(conversation_id: str) -> str:
    return f"{CONVERSATION_PREFIX}{conversation_id}"


def room_for_community(community_id: str) -> str:
    return f"{COMMUNITY_PREFIX}{community_id}"


class RoomManager:
    """Performs joins and leaves on one namespace of the Socket.IO server.

    ``server`` is anything with the ``AsyncServer`` room API
    (``enter_room``, ``leave_room``, ``rooms``).
    """

    def __init__(
        self,
        server: Any,
        store: ChatStore,
        presence: PresenceRegistry,
        typing: TypingRegistry,
        namespace: str = "/",
    ) -> None:
        self.server = server
        self.store = store
        self.presence = presence
        self.typing = typing
        self.namespace = namespace

    def has_joined_room(self, sid: str, room: str) -> bool:
        return room in (self.server.rooms(sid, namespace=self.namespace) or [])

    def joined_rooms(self, sid: str, prefix: str) -> list:
        return [r for r in (self.server.rooms(sid, namespace=self.namespace) or []) if r.startswith(prefix)]

    async def _enter(self, sid: str, identity: Identity, room: str) -> bool:
        # The connection may have gone away while we were waiting on the store
        if not self.presence.has_handle(identity.id, sid):
            logger.info("[socket] %s left before joining %s", sid, room)
            return False
        await self.server.enter_room(sid, room, namespace=self.namespace)
        return True

    # --- conversations ---

    async def join_conversation(self, sid: str, identity: Identity, conversation_id: str) -> Optional[Conversation]:
        conversation = await self.store.get_conversation(conversation_id, identity.id)
        if conversation is None:
            raise NotFound("Conversation not found or access denied")
        if not await self._enter(sid, identity, room_for_conversation(conversation_id)):
            return None
        return conversation

    async def leave_conversation(self, sid: str, identity: Identity, conversation_id: str) -> bool:
        """Leave the room; True when the user's typing flag was cleared."""
        room = room_for_conversation(conversation_id)
        await self.server.leave_room(sid, room, namespace=self.namespace)
        return self.typing.stop(room, identity.id)

    # --- communities ---

    async def check_community_access(self, identity: Identity, community_id: str) -> Community:
        """Tenant check for everyone, membership check for non-admins.

        Absent and cross-tenant communities raise the same error so the
        caller learns nothing about other tenants.
        """
        community = await self.store.get_community(community_id)
        if not ChatStore.is_tenant_match(community, identity.tenant_id):
            if community is not None:
                logger.warning(
                    "[community] cross-tenant access user=%s community=%s", identity.id, community_id
                )
            raise AuthorizationDenied("Community not found or access denied")
        if not identity.is_admin and not await self.store.is_member(identity.id, community_id):
            raise AuthorizationDenied("You are not a member of this community")
        return community

    async def join_community(self, sid: str, identity: Identity, community_id: str) -> Optional[Community]:
        community = await self.check_community_access(identity, community_id)
        if not await self._enter(sid, identity, room_for_community(community_id)):
            return None
        return community

    async def leave_community(self, sid: str, identity: Identity, community_id: str) -> bool:
        room = room_for_community(community_id)
        await self.server.leave_room(sid, room, namespace=self.namespace)
        return self.typing.stop(room, identity.id)
