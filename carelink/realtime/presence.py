"""Process-local presence tracking.

A user is online while at least one connection handle (socket sid) is
registered for them. The registry is owned by the socket server process and is
rebuilt empty on restart.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Set


class PresenceRegistry:
    def __init__(self) -> None:
        self._handles: Dict[str, Set[str]] = {}

    def connect(self, user_id: str, handle: str) -> bool:
        """Register ``handle``; True when the user just came online."""
        came_online = user_id not in self._handles
        self._handles.setdefault(user_id, set()).add(handle)
        return came_online

    def disconnect(self, user_id: str, handle: str) -> bool:
        """Drop ``handle``; True only when its removal took the user offline."""
        handles = self._handles.get(user_id)
        if not handles or handle not in handles:
            return False
        handles.discard(handle)
        if handles:
            return False
        del self._handles[user_id]
        return True

    def is_online(self, user_id: str) -> bool:
        return bool(self._handles.get(user_id))

    def has_handle(self, user_id: str, handle: str) -> bool:
        return handle in self._handles.get(user_id, ())

    def handles(self, user_id: str) -> FrozenSet[str]:
        return frozenset(self._handles.get(user_id, ()))
