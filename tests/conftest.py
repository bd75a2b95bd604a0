"""
Shared fixtures: an in-memory SQLite store, a seeded pair of colleges and a
recording stand-in for the Socket.IO server.
"""

import os

# Must be set before carelink.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from carelink.db.database import _create_engine
from carelink.db.session import Base
from carelink.models import community, conversations, messages, user  # noqa: F401
from carelink.models.community import Community, CommunityMember
from carelink.models.conversations import Conversation
from carelink.models.messages import Message
from carelink.models.user import College, Profile, UserRole
from carelink.realtime.server import attach_handlers
from carelink.services.chat_store import SqlChatStore
from carelink.services.jwt import create_access_token


def run(coro):
    return asyncio.run(coro)


@dataclass
class Emitted:
    event: str
    data: Any
    to: Optional[str]
    skip_sid: Any
    namespace: str


@dataclass
class FakeServer:
    """Records what the handlers do to the Socket.IO server."""

    emitted: List[Emitted] = field(default_factory=list)
    sessions: Dict[tuple, dict] = field(default_factory=dict)
    memberships: Dict[tuple, set] = field(default_factory=lambda: defaultdict(set))
    handlers: Dict[tuple, Any] = field(default_factory=dict)

    def on(self, event, handler, namespace="/"):
        self.handlers[(namespace, event)] = handler

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace="/"):
        self.emitted.append(Emitted(event, data, to or room, skip_sid, namespace))

    async def enter_room(self, sid, room, namespace="/"):
        self.memberships[(namespace, sid)].add(room)

    async def leave_room(self, sid, room, namespace="/"):
        self.memberships[(namespace, sid)].discard(room)

    def rooms(self, sid, namespace="/"):
        return sorted(self.memberships.get((namespace, sid), ()))

    async def save_session(self, sid, session, namespace="/"):
        self.sessions[(namespace, sid)] = dict(session)

    async def get_session(self, sid, namespace="/"):
        return self.sessions[(namespace, sid)]

    def drop(self, sid, namespace="/"):
        self.sessions.pop((namespace, sid), None)
        self.memberships.pop((namespace, sid), None)

    def events(self, name, to=None):
        return [e for e in self.emitted if e.event == name and (to is None or e.to == to)]

    def clear(self):
        self.emitted.clear()


@pytest.fixture
def session_factory():
    engine = _create_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def world(session_factory):
    """Two colleges with students, a counsellor, admins and communities."""
    db = session_factory()
    try:
        t1 = College(id="college-1", name="North Campus")
        t2 = College(id="college-2", name="South Campus")
        db.add_all([t1, t2])
        db.flush()

        people = [
            Profile(id="student-1", email="john@north.edu", name="John Reyes", role=UserRole.student,
                    college_id=t1.id, anonymous_username="anon_john_01"),
            Profile(id="student-2", email="mae@north.edu", name="Mae Cruz", role=UserRole.student,
                    college_id=t1.id, anonymous_username="anon_mae_02"),
            Profile(id="counsellor-1", email="dr.lim@north.edu", name="Dr. Lim", role=UserRole.counsellor,
                    college_id=t1.id, avatar_url="https://cdn.example/lim.png"),
            Profile(id="admin-1", email="admin@north.edu", name="North Admin", role=UserRole.admin,
                    college_id=t1.id),
            Profile(id="admin-2", email="admin@south.edu", name="South Admin", role=UserRole.admin,
                    college_id=t2.id),
            Profile(id="inactive-1", email="gone@north.edu", name="Gone", role=UserRole.student,
                    college_id=t1.id, is_active=False),
        ]
        db.add_all(people)
        db.flush()

        db.add_all([
            Community(id="community-1", college_id=t1.id, title="Exam Stress", description="North only"),
            Community(id="community-2", college_id=t2.id, title="South Secret Circle", description="South only"),
        ])
        db.flush()
        db.add_all([
            CommunityMember(community_id="community-1", user_id="student-1"),
            CommunityMember(community_id="community-1", user_id="counsellor-1"),
        ])
        db.commit()
    finally:
        db.close()
    return SimpleNamespace(session_factory=session_factory, store=SqlChatStore(session_factory))


@pytest.fixture
def store(world):
    return world.store


@pytest.fixture
def conversation_id(world):
    db = world.session_factory()
    try:
        conv = Conversation(id="conv-1", student_id="student-1", counsellor_id="counsellor-1", college_id="college-1")
        db.add(conv)
        db.commit()
        return conv.id
    finally:
        db.close()


def add_messages(session_factory, conversation_id, sender_id, receiver_id, count, start=None):
    start = start or datetime(2026, 1, 1, 9, 0, 0)
    db = session_factory()
    try:
        rows = [
            Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                message_text=f"message {i}",
                created_at=start + timedelta(minutes=i),
            )
            for i in range(count)
        ]
        db.add_all(rows)
        db.commit()
        return [r.id for r in rows]
    finally:
        db.close()


def token_for(user_id, **kwargs):
    return create_access_token(subject=user_id, **kwargs)


def handshake(user_id, token=None, **extra):
    auth = {"token": token or token_for(user_id), "userId": user_id}
    auth.update(extra)
    return {}, auth


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def realtime(server, store):
    return attach_handlers(server, store)


@pytest.fixture
def direct(realtime):
    return realtime.direct


@pytest.fixture
def communities(realtime):
    return realtime.community


async def connect(handlers, sid, user_id):
    environ, auth = handshake(user_id)
    await handlers.on_connect(sid, environ, auth)


async def disconnect(handlers, server, sid):
    await handlers.on_disconnect(sid, "client disconnect")
    server.drop(sid, handlers.namespace)
