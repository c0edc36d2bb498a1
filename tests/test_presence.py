import pytest

from siro.chat.models import MessageStatus
from siro.realtime.events import NewMessage
from siro.realtime.presence import SESSION_REPLACED, SessionState
from siro.users.models import PresenceStatus


class TestBind:
    @pytest.mark.asyncio
    async def test_bind_marks_user_online(self, presence, directory, alice, connect):
        session, _ = await connect(alice.id)

        assert presence.route_of(alice.id) == session.handle
        assert session.state == SessionState.BOUND

        user = await directory.get(alice.id)
        assert user.status == PresenceStatus.ONLINE
        assert user.session_id == session.handle
        assert presence.online_users() == [alice.id]

    @pytest.mark.asyncio
    async def test_last_bind_wins(self, presence, directory, alice, connect):
        first, first_transport = await connect(alice.id)
        second, _ = await connect(alice.id)

        assert presence.route_of(alice.id) == second.handle
        assert first.state == SessionState.CLOSED
        assert first_transport.closed_with == SESSION_REPLACED
        assert first_transport.events("session_replaced")
        assert (await directory.get(alice.id)).session_id == second.handle

    @pytest.mark.asyncio
    async def test_session_binds_once(self, presence, alice, bob, connect):
        session, _ = await connect(alice.id)

        with pytest.raises(RuntimeError):
            await presence.bind(bob.id, session)


class TestUnbind:
    @pytest.mark.asyncio
    async def test_stale_unbind_keeps_newer_route(self, presence, directory, alice, connect):
        first, _ = await connect(alice.id)
        second, _ = await connect(alice.id)

        assert await presence.unbind(first) is False

        assert presence.route_of(alice.id) == second.handle
        assert (await directory.get(alice.id)).status == PresenceStatus.ONLINE

    @pytest.mark.asyncio
    async def test_unbind_marks_user_offline(self, presence, directory, alice, connect):
        session, _ = await connect(alice.id)

        assert await presence.unbind(session) is True

        assert not presence.is_online(alice.id)
        assert (await directory.get(alice.id)).status == PresenceStatus.OFFLINE

    @pytest.mark.asyncio
    async def test_unbind_of_unbound_session(self, presence, transport):
        assert await presence.unbind(transport.session()) is False


class TestEmit:
    @pytest.mark.asyncio
    async def test_emit_to_offline_user_is_dropped(self, presence, bob):
        event = NewMessage.model_construct(conversation_id="c", message=None)

        assert await presence.emit(bob.id, event) is False

    @pytest.mark.asyncio
    async def test_dead_transport_drops_event(self, presence, conversations, alice, bob, connect):
        conversation, _ = await conversations.find_or_create(alice.id, bob.id)
        message, _ = await conversations.append_message(conversation.id, alice.id, bob.id, "hi", "c-1")
        _, transport = await connect(bob.id)
        transport.broken = True

        delivered = await presence.emit(bob.id, NewMessage(conversation_id=conversation.id, message=message))

        assert delivered is False


class TestCatchUp:
    @pytest.mark.asyncio
    async def test_reconnect_delivers_pending_and_notifies_sender(
        self, presence, conversations, alice, bob, connect
    ):
        conversation, _ = await conversations.find_or_create(alice.id, bob.id)
        message, _ = await conversations.append_message(conversation.id, alice.id, bob.id, "hi", "c-1")
        _, alice_transport = await connect(alice.id)

        _, bob_transport = await connect(bob.id)

        [receipt] = alice_transport.events("message_delivered")
        assert receipt["data"] == {"conversation_id": conversation.id, "message_id": message.id}

        # history is fetched, not replayed
        assert bob_transport.events("new_message") == []

        stored = (await conversations.messages(conversation.id, bob.id))[0]
        assert stored.status == MessageStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_catch_up_with_sender_offline(self, conversations, alice, bob, connect):
        conversation, _ = await conversations.find_or_create(alice.id, bob.id)
        await conversations.append_message(conversation.id, alice.id, bob.id, "hi", "c-1")

        await connect(bob.id)

        stored = (await conversations.messages(conversation.id, bob.id))[0]
        assert stored.status == MessageStatus.DELIVERED
