"""
Friend request ledger.

Pending requests live in their own collection, separate from the friendship
relation (the ``friends`` list on each user).

Accepting touches three documents (both users and the conversation) and then
consumes the request. There is no transaction across them, so the accept is a
sequence of idempotent steps and the request record remembers the last one
that completed. Running ``accept`` again, or ``resume_incomplete`` after a
crash, picks up where it stopped.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from siro.chat.models import Conversation
from siro.chat.store import ConversationStore
from siro.core.documents import DocumentStore, FRIEND_REQUESTS
from siro.core.exceptions import DuplicateKeyError
from siro.users.directory import UserDirectory
from siro.utils.ids import pair_key

from .models import AcceptStep, FriendRequest, RequestStatus


logger = logging.getLogger(__name__)


@dataclass
class AcceptOutcome:
    request: FriendRequest
    conversation: Conversation


class FriendRequestLedger:
    def __init__(
        self,
        store: DocumentStore,
        directory: UserDirectory,
        conversations: ConversationStore,
    ):
        self._store = store
        self._directory = directory
        self._conversations = conversations

    async def get(self, request_id: str) -> Optional[FriendRequest]:
        doc = await self._store.get(FRIEND_REQUESTS, request_id)
        return FriendRequest.model_validate(doc) if doc else None

    async def between(self, user_a: str, user_b: str) -> Optional[FriendRequest]:
        docs = await self._store.find(FRIEND_REQUESTS, where={"pair_key": pair_key(user_a, user_b)})
        return FriendRequest.model_validate(docs[0]) if docs else None

    async def request(self, sender_id: str, recipient_id: str) -> Optional[FriendRequest]:
        """
        Record a request from ``sender_id`` to ``recipient_id``.

        Returns None, without raising, when the request makes no sense: same
        user, unknown user, already friends, or a request already open for the
        pair in either direction.
        """
        if sender_id == recipient_id:
            return None

        sender = await self._directory.get(sender_id)
        recipient = await self._directory.get(recipient_id)
        if not sender or not recipient:
            logger.info(f"friend_request_ignored reason=unknown_user sender={sender_id} recipient={recipient_id}")
            return None

        if sender.is_friend(recipient_id) or recipient.is_friend(sender_id):
            logger.info(f"friend_request_ignored reason=already_friends sender={sender_id} recipient={recipient_id}")
            return None

        if await self.between(sender_id, recipient_id):
            logger.info(f"friend_request_ignored reason=pending sender={sender_id} recipient={recipient_id}")
            return None

        friend_request = FriendRequest(
            sender_id=sender_id,
            recipient_id=recipient_id,
            pair_key=pair_key(sender_id, recipient_id),
        )
        try:
            await self._store.insert(FRIEND_REQUESTS, friend_request.model_dump(mode="json"))
        except DuplicateKeyError:
            # another request for the pair landed between lookup and insert
            logger.info(f"friend_request_ignored reason=conflict sender={sender_id} recipient={recipient_id}")
            return None

        logger.info(
            f"friend_request_created request_id={friend_request.id} "
            f"sender={sender_id} recipient={recipient_id}"
        )
        return friend_request

    async def accept(self, request_id: str, accepting_user_id: str) -> Optional[AcceptOutcome]:
        """
        Turn a pending request into a friendship and a conversation.

        Only the recipient may accept. Returns None when the request is gone,
        the caller is not its recipient, or a concurrent accept finished first.
        """
        friend_request = await self.get(request_id)
        if not friend_request:
            return None

        if friend_request.recipient_id != accepting_user_id:
            logger.warning(
                f"friend_request_accept_denied request_id={request_id} user_id={accepting_user_id}"
            )
            return None

        return await self._complete(friend_request)

    async def resume_incomplete(self) -> List[AcceptOutcome]:
        """Finish accepts interrupted part way (e.g. by a crash)."""
        docs = await self._store.find(FRIEND_REQUESTS, where={"status": RequestStatus.ACCEPTING.value})
        outcomes = []
        for doc in docs:
            friend_request = FriendRequest.model_validate(doc)
            logger.info(f"friend_request_accept_resumed request_id={friend_request.id} step={friend_request.step}")
            outcome = await self._complete(friend_request)
            if outcome:
                outcomes.append(outcome)
        return outcomes

    async def _record(self, request_id: str, **fields) -> Optional[FriendRequest]:
        def mutate(doc: dict):
            doc.update(fields)
            return doc

        doc = await self._store.update(FRIEND_REQUESTS, request_id, mutate)
        return FriendRequest.model_validate(doc) if doc else None

    async def _complete(self, friend_request: FriendRequest) -> Optional[AcceptOutcome]:
        request_id = friend_request.id
        sender_id = friend_request.sender_id
        recipient_id = friend_request.recipient_id

        if friend_request.status == RequestStatus.PENDING:
            friend_request = await self._record(request_id, status=RequestStatus.ACCEPTING.value)
            if not friend_request:
                return None

        if not friend_request.reached(AcceptStep.FRIENDS_LINKED):
            await self._directory.add_friend(sender_id, recipient_id)
            await self._directory.add_friend(recipient_id, sender_id)
            friend_request = await self._record(request_id, step=AcceptStep.FRIENDS_LINKED.value)
            if not friend_request:
                return None

        conversation, _ = await self._conversations.find_or_create(sender_id, recipient_id)
        if not friend_request.reached(AcceptStep.CONVERSATION_READY):
            friend_request = await self._record(
                request_id,
                step=AcceptStep.CONVERSATION_READY.value,
                conversation_id=conversation.id,
            )
            if not friend_request:
                return None

        if not await self._store.delete(FRIEND_REQUESTS, request_id):
            # a concurrent accept consumed it and reports the outcome
            return None

        logger.info(
            f"friend_request_accepted request_id={request_id} "
            f"sender={sender_id} recipient={recipient_id} conversation_id={conversation.id}"
        )
        return AcceptOutcome(request=friend_request, conversation=conversation)

    async def incoming(self, user_id: str) -> List[FriendRequest]:
        docs = await self._store.find(FRIEND_REQUESTS, where={"recipient_id": user_id})
        return self._newest_first(docs)

    async def outgoing(self, user_id: str) -> List[FriendRequest]:
        docs = await self._store.find(FRIEND_REQUESTS, where={"sender_id": user_id})
        return self._newest_first(docs)

    @staticmethod
    def _newest_first(docs: List[dict]) -> List[FriendRequest]:
        requests = [FriendRequest.model_validate(doc) for doc in docs]
        return sorted(requests, key=lambda r: r.created_at, reverse=True)
