"""
Conversation store.

One document per unordered pair of users. The document owns its ordered
message list; every message mutation is a single atomic update of that
document, which is what serialises appends and status changes per
conversation.
"""

import logging
from typing import List, Optional, Tuple

from siro.core.documents import DocumentStore, CONVERSATIONS
from siro.core.exceptions import DuplicateKeyError, StoreError
from siro.users.directory import UserDirectory
from siro.utils.ids import ordered_pair, pair_key

from .models import (
    Conversation,
    ConversationSummary,
    Message,
    MessageKind,
    MessageStatus,
)


logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self, store: DocumentStore, directory: UserDirectory):
        self._store = store
        self._directory = directory

    async def _by_pair(self, key: str) -> Optional[Conversation]:
        docs = await self._store.find(CONVERSATIONS, where={"pair_key": key})
        return Conversation.model_validate(docs[0]) if docs else None

    async def find_or_create(self, user_a: str, user_b: str) -> Tuple[Conversation, bool]:
        """
        Return the conversation for the pair, creating it on first use.

        The lookup and the insert are separate store calls, so two callers can
        both miss. The unique ``pair_key`` turns the loser's insert into a
        DuplicateKeyError, and the loser re-reads the winner's document.
        """
        if user_a == user_b:
            raise ValueError("a conversation needs two distinct participants")

        key = pair_key(user_a, user_b)

        existing = await self._by_pair(key)
        if existing:
            return existing, False

        conversation = Conversation(participants=list(ordered_pair(user_a, user_b)), pair_key=key)
        try:
            await self._store.insert(CONVERSATIONS, conversation.model_dump(mode="json"))
        except DuplicateKeyError:
            winner = await self._by_pair(key)
            if winner is None:
                raise StoreError(f"conversation {key} conflicted but cannot be read back")
            logger.info(f"conversation_create_conflict pair={key} conversation_id={winner.id}")
            return winner, False

        logger.info(f"conversation_created pair={key} conversation_id={conversation.id}")
        return conversation, True

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        doc = await self._store.get(CONVERSATIONS, conversation_id)
        return Conversation.model_validate(doc) if doc else None

    async def messages(self, conversation_id: str, user_id: str) -> Optional[List[Message]]:
        """Message history, oldest first. None unless ``user_id`` takes part."""
        conversation = await self.get(conversation_id)
        if not conversation or not conversation.has_participant(user_id):
            return None
        return conversation.messages

    async def list_for(self, user_id: str) -> List[Conversation]:
        docs = await self._store.find(CONVERSATIONS, contains={"participants": user_id})
        conversations = [Conversation.model_validate(doc) for doc in docs]
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    async def summaries_for(self, user_id: str) -> List[ConversationSummary]:
        summaries = []
        for conversation in await self.list_for(user_id):
            participants = await self._directory.get_many(conversation.participants)
            unread = [
                m
                for m in conversation.messages
                if m.recipient_id == user_id and m.status != MessageStatus.READ
            ]
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    participants=[u.summary() for u in participants],
                    last_message=conversation.messages[-1] if conversation.messages else None,
                    unread_count=len(unread),
                    updated_at=conversation.updated_at,
                )
            )
        return summaries

    async def append_message(
        self,
        conversation_id: str,
        sender_id: str,
        recipient_id: str,
        text: str,
        client_id: str,
        kind: MessageKind = MessageKind.TEXT,
        file: Optional[str] = None,
    ) -> Optional[Tuple[Message, bool]]:
        """
        Append a message with status ``sent``.

        Idempotent on ``client_id``: a retransmission returns the stored
        message and ``created=False``. Returns None when the conversation does
        not exist or sender/recipient are not its two participants.
        """
        outcome = {}

        def mutate(doc: dict):
            outcome.clear()

            if sender_id == recipient_id or sorted([sender_id, recipient_id]) != sorted(doc["participants"]):
                return None

            for existing in doc["messages"]:
                if existing["client_id"] == client_id:
                    outcome["message"] = Message.model_validate(existing)
                    outcome["created"] = False
                    return None

            message = Message(
                client_id=client_id,
                conversation_id=conversation_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                text=text,
                kind=kind,
                file=file,
            )
            message_doc = message.model_dump(mode="json")
            doc["messages"].append(message_doc)
            doc["updated_at"] = message_doc["created_at"]

            outcome["message"] = message
            outcome["created"] = True
            return doc

        doc = await self._store.update(CONVERSATIONS, conversation_id, mutate)
        if doc is None or "message" not in outcome:
            return None

        if outcome["created"]:
            logger.info(
                f"message_appended conversation_id={conversation_id} "
                f"message_id={outcome['message'].id} client_id={client_id}"
            )
        else:
            logger.info(f"message_duplicate conversation_id={conversation_id} client_id={client_id}")

        return outcome["message"], outcome["created"]

    async def mark_delivered(
        self, conversation_id: str, message_id: str, user_id: str
    ) -> Optional[Message]:
        """
        sent -> delivered, only for the recipient of a message still in
        ``sent``. Duplicate and late acks are expected and are no-ops.
        """
        transitioned = []

        def mutate(doc: dict):
            transitioned.clear()
            for message in doc["messages"]:
                if message["id"] != message_id:
                    continue
                if message["recipient_id"] != user_id or message["status"] != MessageStatus.SENT.value:
                    return None
                message["status"] = MessageStatus.DELIVERED.value
                transitioned.append(Message.model_validate(message))
                return doc
            return None

        await self._store.update(CONVERSATIONS, conversation_id, mutate)
        return transitioned[0] if transitioned else None

    async def mark_all_read(self, conversation_id: str, user_id: str) -> List[Message]:
        """Every message addressed to ``user_id`` not yet read becomes read."""
        return await self._advance_incoming(conversation_id, user_id, MessageStatus.READ)

    async def deliver_pending(self, user_id: str) -> List[Message]:
        """Connect-time catch-up: everything still ``sent`` to the user becomes delivered."""
        delivered = []
        for conversation in await self.list_for(user_id):
            pending = any(
                m.recipient_id == user_id and m.status == MessageStatus.SENT
                for m in conversation.messages
            )
            if pending:
                delivered.extend(
                    await self._advance_incoming(conversation.id, user_id, MessageStatus.DELIVERED)
                )
        return delivered

    async def _advance_incoming(
        self, conversation_id: str, user_id: str, target: MessageStatus
    ) -> List[Message]:
        transitioned = []

        def mutate(doc: dict):
            transitioned.clear()
            if user_id not in doc["participants"]:
                return None
            for message in doc["messages"]:
                if message["recipient_id"] != user_id:
                    continue
                if MessageStatus(message["status"]).can_advance_to(target):
                    message["status"] = target.value
                    transitioned.append(Message.model_validate(message))
            return doc if transitioned else None

        await self._store.update(CONVERSATIONS, conversation_id, mutate)
        if transitioned:
            logger.info(
                f"messages_{target.value} conversation_id={conversation_id} "
                f"user_id={user_id} count={len(transitioned)}"
            )
        return transitioned
