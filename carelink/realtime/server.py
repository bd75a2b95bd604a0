"""The process-wide Socket.IO server and its handler wiring."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

import socketio

from carelink.core.config import settings
from carelink.realtime.community import CommunityHandlers
from carelink.realtime.direct import DirectMessageHandlers
from carelink.realtime.session import SessionBridge
from carelink.services.chat_store import ChatStore
from carelink.services.jwt import decode_token

logger = logging.getLogger(__name__)


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.CORS_ORIGINS,
    ping_interval=settings.SOCKET_PING_INTERVAL,
    ping_timeout=settings.SOCKET_PING_TIMEOUT,
    logger=False,
    engineio_logger=False,
)


@dataclass
class Realtime:
    direct: DirectMessageHandlers
    community: CommunityHandlers


def attach_handlers(
    server: Any,
    store: ChatStore,
    decoder: Optional[Callable[[str], dict]] = None,
) -> Realtime:
    """Register both namespaces on ``server``.

    Each namespace gets its own presence and typing registries.
    """
    bridge = SessionBridge(store, decoder or decode_token)
    realtime = Realtime(
        direct=DirectMessageHandlers(server, store, bridge),
        community=CommunityHandlers(server, store, bridge),
    )
    realtime.direct.register()
    realtime.community.register()
    logger.info("[socket] handlers registered on %s and %s", realtime.direct.namespace, realtime.community.namespace)
    return realtime
