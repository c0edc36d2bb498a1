"""
Realtime event router.

Single entry point for everything a bound session sends. Each handler follows
the same shape:

    validate / authorise -> at most one logical store mutation
    -> resolve routes -> at most one outbound event per affected live user

and returns ``Accepted``, ``Rejected`` or ``Failed``. Rejections (bad input,
not allowed, stale ids) change nothing. Store failures are logged and the
event is dropped; the core never retries, clients retry with the same
``client_id``.
"""

import logging
import os
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import ValidationError

from siro.chat.models import Message, MessageKind
from siro.chat.store import ConversationStore
from siro.core.exceptions import StoreError
from siro.friendship.ledger import FriendRequestLedger
from siro.users.directory import UserDirectory

from .events import (
    COMMAND_TYPES,
    Accepted,
    AcceptRequestCommand,
    Ack,
    ConversationStarted,
    DispatchResult,
    EndCommand,
    Envelope,
    Failed,
    FileMessageCommand,
    FriendRequestCommand,
    GetDirectConversationsCommand,
    GetMessagesCommand,
    MessageDelivered,
    MessageDeliveredCommand,
    MessagesRead,
    MessagesReadCommand,
    NewFriendRequest,
    NewMessage,
    Rejected,
    RequestAccepted,
    RequestSent,
    StartConversationCommand,
    TextMessageCommand,
    parse_command,
)
from .presence import PresenceCore, Session


logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".mp4", ".mov", ".webm", ".mp3", ".ogg"}

Handler = Callable[[Session, Any], Awaitable[DispatchResult]]


def stub_file_name(original_name: str) -> str:
    """Unique storage name for an attachment. Nothing is uploaded."""
    _, extension = os.path.splitext(original_name)
    return f"{int(time.time() * 1000)}_{random.randint(0, 999)}{extension.lower()}"


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", "invalid event")


class EventRouter:
    def __init__(
        self,
        presence: PresenceCore,
        directory: UserDirectory,
        ledger: FriendRequestLedger,
        conversations: ConversationStore,
    ):
        self._presence = presence
        self._directory = directory
        self._ledger = ledger
        self._conversations = conversations

        self._handlers: Dict[Type, Handler] = {
            FriendRequestCommand: self._on_friend_request,
            AcceptRequestCommand: self._on_accept_request,
            GetDirectConversationsCommand: self._on_get_direct_conversations,
            StartConversationCommand: self._on_start_conversation,
            GetMessagesCommand: self._on_get_messages,
            TextMessageCommand: self._on_text_message,
            FileMessageCommand: self._on_file_message,
            MessageDeliveredCommand: self._on_message_delivered,
            MessagesReadCommand: self._on_messages_read,
            EndCommand: self._on_end,
        }

        missing = [command.__name__ for command in COMMAND_TYPES if command not in self._handlers]
        if missing:
            raise TypeError(f"no handler for {', '.join(missing)}")

    async def receive(self, session: Session, payload: Any) -> DispatchResult:
        """Parse one client frame, dispatch it and answer its ack if it asked for one."""
        try:
            envelope = Envelope.model_validate(payload)
        except ValidationError:
            logger.warning(f"event_malformed session={session.handle}")
            return Rejected("malformed frame")

        try:
            command = parse_command(envelope)
        except ValidationError as error:
            result = Rejected(_describe(error))
            logger.info(
                f"event_invalid event={envelope.event} user_id={session.user_id} reason={result.reason}"
            )
        else:
            result = await self.dispatch(session, command)

        if envelope.ack is not None:
            await session.send(self._ack(envelope.ack, result))

        return result

    async def dispatch(self, session: Session, command) -> DispatchResult:
        if not session.is_bound:
            logger.warning(
                f"event_rejected event={command.event} session={session.handle} reason=not_bound"
            )
            return Rejected("session is not bound")

        handler = self._handlers[type(command)]
        try:
            result = await handler(session, command)
        except StoreError:
            logger.exception(f"event_failed event={command.event} user_id={session.user_id}")
            return Failed("store unavailable")

        if isinstance(result, Rejected):
            logger.info(
                f"event_rejected event={command.event} user_id={session.user_id} reason={result.reason}"
            )
        return result

    @staticmethod
    def _ack(ack_id, result: DispatchResult) -> Ack:
        if isinstance(result, Accepted):
            return Ack(ack=ack_id, ok=True, data=result.reply)
        return Ack(ack=ack_id, ok=False, error=result.reason)

    # ------------------------------------------------------------------
    # friend requests
    # ------------------------------------------------------------------

    async def _on_friend_request(self, session: Session, command: FriendRequestCommand) -> DispatchResult:
        sender_id = session.user_id

        friend_request = await self._ledger.request(sender_id, command.to)
        if not friend_request:
            return Rejected("friend request not allowed")

        sender = await self._directory.get(sender_id)
        recipient = await self._directory.get(command.to)

        await self._presence.emit(
            command.to,
            NewFriendRequest(request_id=friend_request.id, sender=sender.summary()),
        )
        await self._presence.emit(
            sender_id,
            RequestSent(request_id=friend_request.id, recipient=recipient.summary()),
        )
        return Accepted({"request_id": friend_request.id})

    async def _on_accept_request(self, session: Session, command: AcceptRequestCommand) -> DispatchResult:
        outcome = await self._ledger.accept(command.request_id, session.user_id)
        if not outcome:
            return Rejected("friend request not found")

        event = RequestAccepted(request_id=outcome.request.id, conversation=outcome.conversation)
        await self._presence.emit(outcome.request.sender_id, event)
        await self._presence.emit(outcome.request.recipient_id, event)

        return Accepted(
            {"request_id": outcome.request.id, "conversation_id": outcome.conversation.id}
        )

    # ------------------------------------------------------------------
    # conversations
    # ------------------------------------------------------------------

    async def _on_get_direct_conversations(
        self, session: Session, command: GetDirectConversationsCommand
    ) -> DispatchResult:
        summaries = await self._conversations.summaries_for(session.user_id)
        return Accepted([summary.model_dump(mode="json") for summary in summaries])

    async def _on_start_conversation(
        self, session: Session, command: StartConversationCommand
    ) -> DispatchResult:
        user_id = session.user_id
        if command.to == user_id:
            return Rejected("cannot start a conversation with yourself")

        user = await self._directory.get(user_id)
        if not user or not user.is_friend(command.to):
            return Rejected("you can only message users you are friends with")

        conversation, created = await self._conversations.find_or_create(user_id, command.to)
        await self._presence.emit(user_id, ConversationStarted(conversation=conversation))
        return Accepted({"conversation_id": conversation.id, "is_new": created})

    async def _on_get_messages(self, session: Session, command: GetMessagesCommand) -> DispatchResult:
        messages = await self._conversations.messages(command.conversation_id, session.user_id)
        if messages is None:
            return Rejected("conversation not found")
        return Accepted([message.model_dump(mode="json") for message in messages])

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------

    async def _on_text_message(self, session: Session, command: TextMessageCommand) -> DispatchResult:
        return await self._send_message(
            session,
            sender_id=command.sender,
            recipient_id=command.to,
            conversation_id=command.conversation_id,
            client_id=command.client_id,
            text=command.message,
            kind=command.type,
        )

    async def _on_file_message(self, session: Session, command: FileMessageCommand) -> DispatchResult:
        _, extension = os.path.splitext(command.file.name)
        kind = MessageKind.MEDIA if extension.lower() in MEDIA_EXTENSIONS else MessageKind.DOCUMENT

        return await self._send_message(
            session,
            sender_id=command.sender,
            recipient_id=command.to,
            conversation_id=command.conversation_id,
            client_id=command.client_id,
            text=command.message,
            kind=kind,
            file=stub_file_name(command.file.name),
        )

    async def _send_message(
        self,
        session: Session,
        sender_id: str,
        recipient_id: str,
        conversation_id: str,
        client_id: str,
        text: str,
        kind: MessageKind,
        file: Optional[str] = None,
    ) -> DispatchResult:
        if sender_id != session.user_id:
            return Rejected("sender does not match the connected user")

        appended = await self._conversations.append_message(
            conversation_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            text=text,
            client_id=client_id,
            kind=kind,
            file=file,
        )
        if appended is None:
            return Rejected("conversation not found")

        message, created = appended
        event = NewMessage(conversation_id=conversation_id, message=message)

        await self._presence.emit(sender_id, event)
        if created:
            # a retransmission only re-confirms to the sender
            await self._presence.emit(recipient_id, event)

        return Accepted(self._message_reply(message))

    @staticmethod
    def _message_reply(message: Message) -> dict:
        return message.model_dump(mode="json")

    async def _on_message_delivered(
        self, session: Session, command: MessageDeliveredCommand
    ) -> DispatchResult:
        message = await self._conversations.mark_delivered(
            command.conversation_id, command.message_id, session.user_id
        )
        if not message:
            return Rejected("message is not awaiting delivery")

        await self._presence.emit(
            message.sender_id,
            MessageDelivered(conversation_id=command.conversation_id, message_id=message.id),
        )
        return Accepted({"message_id": message.id})

    async def _on_messages_read(self, session: Session, command: MessagesReadCommand) -> DispatchResult:
        user_id = session.user_id

        conversation = await self._conversations.get(command.conversation_id)
        if not conversation or not conversation.has_participant(user_id):
            return Rejected("conversation not found")

        read = await self._conversations.mark_all_read(command.conversation_id, user_id)
        if read:
            await self._presence.emit(
                conversation.other_participant(user_id),
                MessagesRead(conversation_id=command.conversation_id),
            )
        return Accepted({"count": len(read)})

    # ------------------------------------------------------------------
    # session
    # ------------------------------------------------------------------

    async def _on_end(self, session: Session, command: EndCommand) -> DispatchResult:
        await self._presence.unbind(session)
        await session.close(1000)
        logger.info(f"session_ended user_id={session.user_id} session={session.handle}")
        return Accepted()
