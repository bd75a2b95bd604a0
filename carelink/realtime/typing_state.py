"""Process-local "is typing" flags, keyed by room name."""

from __future__ import annotations

from typing import Dict, List, Set


class TypingRegistry:
    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = {}

    def start(self, room: str, user_id: str) -> bool:
        users = self._rooms.setdefault(room, set())
        if user_id in users:
            return False
        users.add(user_id)
        return True

    def stop(self, room: str, user_id: str) -> bool:
        users = self._rooms.get(room)
        if not users or user_id not in users:
            return False
        users.discard(user_id)
        if not users:
            del self._rooms[room]
        return True

    def list_typing(self, room: str) -> Set[str]:
        return set(self._rooms.get(room, ()))

    def clear_user(self, user_id: str) -> List[str]:
        """Remove ``user_id`` from every room; returns the rooms it was cleared from."""
        cleared = [room for room, users in self._rooms.items() if user_id in users]
        for room in cleared:
            self.stop(room, user_id)
        return cleared
