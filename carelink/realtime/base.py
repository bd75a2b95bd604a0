"""Shared plumbing for the namespace handler classes."""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from socketio.exceptions import ConnectionRefusedError

from carelink.realtime.errors import AuthenticationRejected, CollaboratorFailure, RealtimeError, ValidationFailed
from carelink.realtime.presence import PresenceRegistry
from carelink.realtime.rooms import RoomManager, room_for_user
from carelink.realtime.session import Identity, SessionBridge
from carelink.realtime.typing_state import TypingRegistry
from carelink.services.chat_store import ChatStore

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(model: Type[ModelT], data: Any, message: Optional[str] = None) -> ModelT:
    if not isinstance(data, dict):
        raise ValidationFailed(message)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailed(message) from exc


def guarded(failure_message: str):
    """Turn errors raised by an event handler into an ``error`` event.

    The event goes to the initiating connection only. Store failures and
    unexpected errors are reported with ``failure_message``.
    """

    def decorator(fn):
        @functools.wraps(fn)
        async def wrapper(self, sid: str, data: Any = None):
            try:
                return await fn(self, sid, data)
            except CollaboratorFailure:
                await self.emit_error(sid, failure_message)
            except RealtimeError as exc:
                logger.info("[socket] %s rejected for %s: %s", fn.__name__, sid, exc.message)
                await self.emit_error(sid, exc.message)
            except Exception:
                logger.exception("[socket] %s failed for %s", fn.__name__, sid)
                await self.emit_error(sid, failure_message)

        return wrapper

    return decorator


class NamespaceHandlers:
    namespace = "/"
    # event name -> handler method name
    events: Dict[str, str] = {}

    def __init__(
        self,
        server: Any,
        store: ChatStore,
        bridge: SessionBridge,
        presence: Optional[PresenceRegistry] = None,
        typing: Optional[TypingRegistry] = None,
    ) -> None:
        self.server = server
        self.store = store
        self.bridge = bridge
        self.presence = presence or PresenceRegistry()
        self.typing = typing or TypingRegistry()
        self.rooms = RoomManager(server, store, self.presence, self.typing, namespace=self.namespace)

    def register(self) -> None:
        for event, attr in self.events.items():
            self.server.on(event, getattr(self, attr), namespace=self.namespace)

    async def emit(self, event: str, payload: Any, **kwargs: Any) -> None:
        await self.server.emit(event, payload, namespace=self.namespace, **kwargs)

    async def emit_error(self, sid: str, message: str) -> None:
        await self.emit("error", {"message": message}, to=sid)

    async def identity(self, sid: str) -> Identity:
        session = await self.server.get_session(sid, namespace=self.namespace)
        if not session or "user_id" not in session:
            raise AuthenticationRejected()
        return Identity.from_session(session)

    async def optional_identity(self, sid: str) -> Optional[Identity]:
        try:
            return await self.identity(sid)
        except (KeyError, AuthenticationRejected):
            return None

    def own_handles(self, identity: Identity) -> list:
        return list(self.presence.handles(identity.id))

    async def on_connect(self, sid: str, environ: Dict[str, Any], auth: Any = None) -> None:
        try:
            identity = await self.bridge.authenticate(environ, auth)
        except AuthenticationRejected as exc:
            logger.info("[socket] %s refused on %s: %s", sid, self.namespace, exc.message)
            raise ConnectionRefusedError(exc.message) from exc

        await self.server.save_session(sid, identity.to_session(), namespace=self.namespace)
        await self.server.enter_room(sid, room_for_user(identity.id), namespace=self.namespace)
        came_online = self.presence.connect(identity.id, sid)
        logger.info("[socket] %s connected on %s as %s (%s)", sid, self.namespace, identity.id, identity.role.value)
        await self.after_connect(sid, identity, came_online)

    async def after_connect(self, sid: str, identity: Identity, came_online: bool) -> None:
        pass
