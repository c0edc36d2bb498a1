"""
Websocket wire protocol.

Frames in both directions are JSON objects ``{"event": name, "data": {...}}``.
A client frame may also carry ``"ack": <id>``; the server then answers with an
``ack`` frame holding the same id.

Inbound frames parse into one of the ``*Command`` models below, discriminated
on ``event``. Outbound frames are ``OutboundEvent`` subclasses.
"""

from dataclasses import dataclass
from typing import Annotated, Any, ClassVar, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from siro.chat.models import Conversation, Message, MessageKind
from siro.users.models import UserSummary


class Envelope(BaseModel):
    event: str
    data: dict = Field(default_factory=dict)
    ack: Optional[Union[int, str]] = None


# --------------------------------------------------------------------------
# client -> server
# --------------------------------------------------------------------------


class Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class FriendRequestCommand(Command):
    event: Literal["friend_request"]
    to: str = Field(min_length=1)


class AcceptRequestCommand(Command):
    event: Literal["accept_request"]
    request_id: str = Field(min_length=1)


class GetDirectConversationsCommand(Command):
    event: Literal["get_direct_conversations"]


class StartConversationCommand(Command):
    event: Literal["start_conversation"]
    to: str = Field(min_length=1)


class GetMessagesCommand(Command):
    event: Literal["get_messages"]
    conversation_id: str = Field(min_length=1)


class TextMessageCommand(Command):
    event: Literal["text_message"]
    to: str = Field(min_length=1)
    sender: str = Field(alias="from", min_length=1)
    message: str = Field(min_length=1)
    conversation_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    type: MessageKind = MessageKind.TEXT

    @field_validator("type")
    @classmethod
    def validate_type(cls, kind: MessageKind) -> MessageKind:
        if kind not in (MessageKind.TEXT, MessageKind.LINK):
            raise ValueError("media and documents are sent with file_message")
        return kind


class FileInfo(BaseModel):
    name: str = Field(min_length=1)


class FileMessageCommand(Command):
    event: Literal["file_message"]
    to: str = Field(min_length=1)
    sender: str = Field(alias="from", min_length=1)
    conversation_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    file: FileInfo
    message: str = ""


class MessageDeliveredCommand(Command):
    event: Literal["message_delivered"]
    conversation_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1)


class MessagesReadCommand(Command):
    event: Literal["messages_read"]
    conversation_id: str = Field(min_length=1)


class EndCommand(Command):
    event: Literal["end"]


InboundCommand = Annotated[
    Union[
        FriendRequestCommand,
        AcceptRequestCommand,
        GetDirectConversationsCommand,
        StartConversationCommand,
        GetMessagesCommand,
        TextMessageCommand,
        FileMessageCommand,
        MessageDeliveredCommand,
        MessagesReadCommand,
        EndCommand,
    ],
    Field(discriminator="event"),
]

COMMAND_TYPES = get_args(get_args(InboundCommand)[0])

inbound_command = TypeAdapter(InboundCommand)


def parse_command(envelope: Envelope):
    """Raises pydantic.ValidationError for unknown events or bad payloads."""
    return inbound_command.validate_python({**envelope.data, "event": envelope.event})


# --------------------------------------------------------------------------
# server -> client
# --------------------------------------------------------------------------


class OutboundEvent(BaseModel):
    event: ClassVar[str]

    def to_wire(self) -> dict:
        return {"event": self.event, "data": self.model_dump(mode="json")}


class NewFriendRequest(OutboundEvent):
    event: ClassVar[str] = "new_friend_request"
    request_id: str
    sender: UserSummary
    message: str = "New friend request received"


class RequestSent(OutboundEvent):
    event: ClassVar[str] = "request_sent"
    request_id: str
    recipient: UserSummary
    message: str = "Friend request sent"


class RequestAccepted(OutboundEvent):
    event: ClassVar[str] = "request_accepted"
    request_id: str
    conversation: Conversation
    message: str = "Friend request accepted"


class ConversationStarted(OutboundEvent):
    event: ClassVar[str] = "conversation_started"
    conversation: Conversation


class NewMessage(OutboundEvent):
    event: ClassVar[str] = "new_message"
    conversation_id: str
    message: Message


class MessageDelivered(OutboundEvent):
    event: ClassVar[str] = "message_delivered"
    conversation_id: str
    message_id: str


class MessagesRead(OutboundEvent):
    event: ClassVar[str] = "messages_read"
    conversation_id: str


class SessionReplaced(OutboundEvent):
    event: ClassVar[str] = "session_replaced"
    message: str = "Signed in from another connection"


class Ack(OutboundEvent):
    event: ClassVar[str] = "ack"
    ack: Union[int, str]
    ok: bool
    data: Any = None
    error: Optional[str] = None


# --------------------------------------------------------------------------
# dispatch results
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class Accepted:
    reply: Any = None


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class Failed:
    reason: str


DispatchResult = Union[Accepted, Rejected, Failed]
