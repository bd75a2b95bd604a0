"""
Tests for the direct-message namespace handlers.

Handlers run against a recording fake server and a real SqlChatStore on
SQLite.
"""

import pytest
from socketio.exceptions import ConnectionRefusedError

from carelink.realtime.direct import DirectMessageHandlers
from carelink.realtime.errors import CollaboratorFailure
from carelink.realtime.session import SessionBridge
from carelink.services.chat_store import SqlChatStore

from conftest import add_messages, connect, disconnect, run

ROOM = "conversation:conv-1"


class TestConnect:

    def test_connect_attaches_identity_and_personal_room(self, server, direct):
        run(connect(direct, "sid-s", "student-1"))

        session = server.sessions[("/", "sid-s")]
        assert session["user_id"] == "student-1"
        assert session["role"] == "student"
        assert session["tenant_id"] == "college-1"
        assert "user:student-1" in server.rooms("sid-s")
        assert [e.data for e in server.events("user_online_status")] == [{"user_id": "student-1", "online": True}]

    def test_missing_credential_is_refused(self, server, direct):
        with pytest.raises(ConnectionRefusedError):
            run(direct.on_connect("sid-x", {}, {"userId": "student-1"}))
        assert ("/", "sid-x") not in server.sessions
        assert not direct.presence.is_online("student-1")

    def test_handlers_are_registered(self, server, direct):
        assert server.handlers[("/", "send_message")] == direct.on_send_message
        assert ("/community", "join-community") in server.handlers


class TestJoinConversation:

    def test_join_marks_read_and_notifies_other_participant(self, world, server, direct, conversation_id):
        add_messages(world.session_factory, conversation_id, "counsellor-1", "student-1", 3)

        async def scenario():
            await connect(direct, "sid-c", "counsellor-1")
            await connect(direct, "sid-s", "student-1")
            server.clear()
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})

        run(scenario())

        assert ROOM in server.rooms("sid-s")
        assert server.events("joined_conversation", to="sid-s")[0].data == {"conversation_id": conversation_id}

        (receipt,) = server.events("messages_read")
        assert receipt.to == "user:counsellor-1"
        assert receipt.data["reader_id"] == "student-1"
        assert receipt.data["read_count"] == 3

        (badge,) = server.events("unread_count_updated")
        assert badge.to == "user:student-1"
        assert badge.data["unread_count"] == 0
        assert badge.data["count"] == 0

        (status,) = server.events("user_online_status", to="sid-s")
        assert status.data == {"conversation_id": conversation_id, "user_id": "counsellor-1", "online": True}

    def test_nothing_unread_skips_badge_update(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            server.clear()
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        assert server.events("messages_read")[0].data["read_count"] == 0
        assert server.events("unread_count_updated") == []

    def test_non_participant_gets_error_and_no_room(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-x", "student-2")
            server.clear()
            await direct.on_join_conversation("sid-x", {"conversation_id": conversation_id})

        run(scenario())
        assert ROOM not in server.rooms("sid-x")
        (error,) = server.events("error")
        assert error.to == "sid-x"
        assert error.data == {"message": "Conversation not found or access denied"}
        assert server.events("messages_read") == []

    def test_missing_conversation_id(self, server, direct):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-s", {})

        run(scenario())
        assert server.events("error")[0].data == {"message": "Conversation ID is required"}

    def test_connection_closed_mid_join_does_not_enter_room(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            # Disconnect processed while the join was waiting on the store
            direct.presence.disconnect("student-1", "sid-s")
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        assert ROOM not in server.rooms("sid-s")
        assert server.events("joined_conversation") == []


class TestSendMessage:

    def _join(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-c", "counsellor-1")
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})
            await direct.on_typing("sid-s", {"conversation_id": conversation_id})
            server.clear()

        run(scenario())

    def test_send_broadcasts_and_notifies_receiver(self, server, direct, conversation_id):
        self._join(server, direct, conversation_id)

        run(direct.on_send_message("sid-s", {"conversation_id": conversation_id, "message_text": "  hello doc  "}))

        (broadcast,) = server.events("new_message")
        assert broadcast.to == ROOM
        assert broadcast.data["message"]["message_text"] == "hello doc"
        assert broadcast.data["message"]["receiver_id"] == "counsellor-1"

        (notification,) = server.events("new_message_notification")
        assert notification.to == "user:counsellor-1"
        assert notification.data["sender"]["name"] == "John Reyes"

        (badge,) = server.events("unread_count_updated")
        assert badge.to == "user:counsellor-1"
        assert badge.data["unread_count"] == 1
        assert badge.data["last_message"] == "hello doc"
        assert badge.data["last_message_sender"] == "student-1"

    def test_send_clears_typing(self, server, direct, conversation_id):
        self._join(server, direct, conversation_id)
        assert direct.typing.list_typing(ROOM) == {"student-1"}

        run(direct.on_send_message("sid-s", {"conversation_id": conversation_id, "message_text": "hi"}))

        assert direct.typing.list_typing(ROOM) == set()
        (stopped,) = server.events("user_stopped_typing")
        assert stopped.to == ROOM
        assert "sid-s" in stopped.skip_sid

    def test_empty_text_is_rejected_and_typing_cleared(self, server, direct, conversation_id):
        self._join(server, direct, conversation_id)

        run(direct.on_send_message("sid-s", {"conversation_id": conversation_id, "message_text": "   "}))

        assert server.events("error")[0].data == {"message": "Message text is required"}
        assert server.events("new_message") == []
        assert direct.typing.list_typing(ROOM) == set()

    def test_mismatched_receiver_is_rejected(self, server, direct, conversation_id):
        self._join(server, direct, conversation_id)

        run(direct.on_send_message(
            "sid-s", {"conversation_id": conversation_id, "receiver_id": "admin-1", "message_text": "psst"}
        ))

        assert server.events("error")[0].data == {"message": "Receiver is not part of this conversation"}
        assert server.events("new_message") == []

    def test_store_failure_is_generic_and_clears_typing(self, world, server, conversation_id):
        class FailingStore(SqlChatStore):
            async def insert_message(self, *args, **kwargs):
                raise CollaboratorFailure()

        store = FailingStore(world.session_factory)
        handlers = DirectMessageHandlers(server, store, SessionBridge(store))
        self._join(server, handlers, conversation_id)

        run(handlers.on_send_message("sid-s", {"conversation_id": conversation_id, "message_text": "hi"}))

        (error,) = server.events("error")
        assert error.to == "sid-s"
        assert error.data == {"message": "Failed to send message"}
        assert handlers.typing.list_typing(ROOM) == set()


class TestTypingAndReads:

    def test_typing_requires_join(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            await direct.on_typing("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        assert server.events("error")[0].data == {"message": "Join the conversation first"}
        assert direct.typing.list_typing(ROOM) == set()

    def test_typing_is_sent_to_the_other_side_once(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})
            server.clear()
            await direct.on_typing("sid-s", {"conversation_id": conversation_id})
            await direct.on_typing("sid-s", {"conversation_id": conversation_id})
            await direct.on_stop_typing("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        (typing,) = server.events("user_typing")
        assert typing.data == {"conversation_id": conversation_id, "user_id": "student-1"}
        assert typing.skip_sid == ["sid-s"]
        assert len(server.events("user_stopped_typing")) == 1

    def test_leave_clears_typing(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})
            await direct.on_typing("sid-s", {"conversation_id": conversation_id})
            await direct.on_leave_conversation("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        assert ROOM not in server.rooms("sid-s")
        assert direct.typing.list_typing(ROOM) == set()
        assert server.events("left_conversation", to="sid-s")
        assert server.events("user_stopped_typing", to=ROOM)

    def test_leave_without_typing_still_notifies_room(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-c", "counsellor-1")
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-c", {"conversation_id": conversation_id})
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})
            server.clear()
            await direct.on_leave_conversation("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        (notice,) = server.events("user_stopped_typing")
        assert notice.to == ROOM
        assert notice.data == {"conversation_id": conversation_id, "user_id": "student-1"}
        assert server.events("left_conversation", to="sid-s")[0].data == {"conversation_id": conversation_id}

    def test_mark_as_read_uses_the_join_contract(self, world, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})
            add_messages(world.session_factory, conversation_id, "counsellor-1", "student-1", 2)
            server.clear()
            await direct.on_mark_as_read("sid-s", {"conversation_id": conversation_id})

        run(scenario())
        (receipt,) = server.events("messages_read")
        assert receipt.to == "user:counsellor-1"
        assert receipt.data["read_count"] == 2
        assert server.events("unread_count_updated")[0].data["unread_count"] == 0

    def test_mark_as_read_by_outsider(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-x", "student-2")
            await direct.on_mark_as_read("sid-x", {"conversation_id": conversation_id})

        run(scenario())
        assert server.events("error")[0].to == "sid-x"
        assert server.events("messages_read") == []

    def test_status_queries(self, world, server, direct, conversation_id):
        add_messages(world.session_factory, conversation_id, "counsellor-1", "student-1", 4)

        async def scenario():
            await connect(direct, "sid-s", "student-1")
            server.clear()
            await direct.on_check_online_status("sid-s", {"user_id": "counsellor-1"})
            await direct.on_get_unread_count("sid-s")

        run(scenario())
        assert server.events("user_online_status")[0].data == {"user_id": "counsellor-1", "online": False}
        assert server.events("unread_count_updated")[0].data == {"count": 4}


class TestDisconnect:

    def test_disconnect_clears_typing(self, server, direct, conversation_id):
        """A student typing and then dropping off leaves no stuck indicator."""
        async def scenario():
            await connect(direct, "sid-s", "student-1")
            await direct.on_join_conversation("sid-s", {"conversation_id": conversation_id})
            await direct.on_typing("sid-s", {"conversation_id": conversation_id})
            server.clear()
            await disconnect(direct, server, "sid-s")

        run(scenario())
        assert direct.typing.list_typing(ROOM) == set()
        assert server.events("user_stopped_typing")[0].to == ROOM
        assert server.events("user_online_status")[0].data == {"user_id": "student-1", "online": False}

    def test_second_tab_keeps_user_online(self, server, direct):
        async def scenario():
            await connect(direct, "sid-a", "student-1")
            await connect(direct, "sid-b", "student-1")
            await disconnect(direct, server, "sid-a")

        run(scenario())
        assert direct.presence.is_online("student-1")
        online = [e.data["online"] for e in server.events("user_online_status")]
        assert online == [True]

        run(disconnect(direct, server, "sid-b"))
        online = [e.data["online"] for e in server.events("user_online_status")]
        assert online == [True, False]
        assert not direct.presence.is_online("student-1")

    def test_closing_the_typing_tab_clears_its_indicator(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-a", "student-1")
            await connect(direct, "sid-b", "student-1")
            await direct.on_join_conversation("sid-a", {"conversation_id": conversation_id})
            await direct.on_typing("sid-a", {"conversation_id": conversation_id})
            server.clear()
            await disconnect(direct, server, "sid-a")

        run(scenario())
        assert direct.presence.is_online("student-1")
        assert direct.typing.list_typing(ROOM) == set()
        (stopped,) = server.events("user_stopped_typing")
        assert stopped.to == ROOM
        assert server.events("user_online_status") == []

    def test_typing_survives_while_another_tab_is_in_the_room(self, server, direct, conversation_id):
        async def scenario():
            await connect(direct, "sid-a", "student-1")
            await connect(direct, "sid-b", "student-1")
            await direct.on_join_conversation("sid-a", {"conversation_id": conversation_id})
            await direct.on_join_conversation("sid-b", {"conversation_id": conversation_id})
            await direct.on_typing("sid-a", {"conversation_id": conversation_id})
            server.clear()
            await disconnect(direct, server, "sid-a")

        run(scenario())
        assert direct.typing.list_typing(ROOM) == {"student-1"}
        assert server.events("user_stopped_typing") == []
