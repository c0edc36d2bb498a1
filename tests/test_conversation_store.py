import asyncio

import pytest

from siro.chat.models import MessageKind, MessageStatus


@pytest.fixture
async def conversation(conversations, alice, bob):
    conversation, _ = await conversations.find_or_create(alice.id, bob.id)
    return conversation


class TestFindOrCreate:
    @pytest.mark.asyncio
    async def test_same_conversation_in_either_order(self, conversations, alice, bob):
        first, created = await conversations.find_or_create(alice.id, bob.id)
        second, created_again = await conversations.find_or_create(bob.id, alice.id)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.participants == sorted([alice.id, bob.id])

    @pytest.mark.asyncio
    async def test_concurrent_calls_create_one_conversation(self, conversations, store, alice, bob):
        results = await asyncio.gather(
            *(conversations.find_or_create(alice.id, bob.id) for _ in range(5)),
            *(conversations.find_or_create(bob.id, alice.id) for _ in range(5)),
        )

        assert len({conversation.id for conversation, _ in results}) == 1
        assert sum(created for _, created in results) == 1
        assert len(await store.find("conversations")) == 1

    @pytest.mark.asyncio
    async def test_rejects_self_conversation(self, conversations, alice):
        with pytest.raises(ValueError):
            await conversations.find_or_create(alice.id, alice.id)


class TestMessages:
    @pytest.mark.asyncio
    async def test_append_is_idempotent_on_client_id(self, conversations, conversation, alice, bob):
        message, created = await conversations.append_message(
            conversation.id, alice.id, bob.id, "hello", client_id="c-1"
        )
        again, created_again = await conversations.append_message(
            conversation.id, alice.id, bob.id, "hello", client_id="c-1"
        )

        assert created is True
        assert created_again is False
        assert again.id == message.id
        assert len(await conversations.messages(conversation.id, alice.id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_retransmissions_store_once(self, conversations, conversation, alice, bob):
        results = await asyncio.gather(
            *(
                conversations.append_message(conversation.id, alice.id, bob.id, "hi", client_id="c-9")
                for _ in range(4)
            )
        )

        assert len({message.id for message, _ in results}) == 1
        assert len(await conversations.messages(conversation.id, bob.id)) == 1

    @pytest.mark.asyncio
    async def test_append_requires_the_two_participants(self, conversations, conversation, alice, carol):
        assert await conversations.append_message(conversation.id, alice.id, carol.id, "x", "c-2") is None
        assert await conversations.append_message("missing", alice.id, carol.id, "x", "c-3") is None

    @pytest.mark.asyncio
    async def test_messages_keep_append_order(self, conversations, conversation, alice, bob):
        for n in range(3):
            await conversations.append_message(conversation.id, alice.id, bob.id, f"m{n}", f"c-{n}")
        await conversations.append_message(
            conversation.id, bob.id, alice.id, "doc", "c-b", kind=MessageKind.DOCUMENT, file="1_2.pdf"
        )

        messages = await conversations.messages(conversation.id, bob.id)

        assert [m.text for m in messages] == ["m0", "m1", "m2", "doc"]
        assert messages[-1].kind == MessageKind.DOCUMENT

    @pytest.mark.asyncio
    async def test_messages_hidden_from_non_participants(self, conversations, conversation, carol):
        assert await conversations.messages(conversation.id, carol.id) is None


class TestStatus:
    @pytest.mark.asyncio
    async def test_only_recipient_marks_delivered(self, conversations, conversation, alice, bob):
        message, _ = await conversations.append_message(conversation.id, alice.id, bob.id, "hi", "c-1")

        assert await conversations.mark_delivered(conversation.id, message.id, alice.id) is None

        delivered = await conversations.mark_delivered(conversation.id, message.id, bob.id)
        assert delivered.status == MessageStatus.DELIVERED

        # duplicate ack
        assert await conversations.mark_delivered(conversation.id, message.id, bob.id) is None

    @pytest.mark.asyncio
    async def test_status_never_moves_backwards(self, conversations, conversation, alice, bob):
        message, _ = await conversations.append_message(conversation.id, alice.id, bob.id, "hi", "c-1")

        read = await conversations.mark_all_read(conversation.id, bob.id)
        assert [m.id for m in read] == [message.id]

        # late delivery ack after read
        assert await conversations.mark_delivered(conversation.id, message.id, bob.id) is None
        assert await conversations.deliver_pending(bob.id) == []

        stored = (await conversations.messages(conversation.id, bob.id))[0]
        assert stored.status == MessageStatus.READ

    @pytest.mark.asyncio
    async def test_mark_all_read_only_touches_incoming(self, conversations, conversation, alice, bob):
        await conversations.append_message(conversation.id, alice.id, bob.id, "to bob", "c-1")
        await conversations.append_message(conversation.id, bob.id, alice.id, "to alice", "c-2")

        read = await conversations.mark_all_read(conversation.id, bob.id)

        assert [m.text for m in read] == ["to bob"]
        assert await conversations.mark_all_read(conversation.id, bob.id) == []

    @pytest.mark.asyncio
    async def test_summaries_count_unread(self, conversations, conversation, alice, bob):
        await conversations.append_message(conversation.id, alice.id, bob.id, "one", "c-1")
        await conversations.append_message(conversation.id, alice.id, bob.id, "two", "c-2")

        [summary] = await conversations.summaries_for(bob.id)

        assert summary.unread_count == 2
        assert summary.last_message.text == "two"
        assert {p.username for p in summary.participants} == {"alice", "bob"}
        assert (await conversations.summaries_for(alice.id))[0].unread_count == 0
