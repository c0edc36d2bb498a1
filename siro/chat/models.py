from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from siro.core.documents import documents_table_sql
from siro.users.models import UserSummary
from siro.utils.ids import new_id, utcnow


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, target: "MessageStatus") -> bool:
        # strictly forward, never back
        return target.rank > self.rank


_STATUS_ORDER = [MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ]


class MessageKind(str, Enum):
    TEXT = "text"
    MEDIA = "media"
    DOCUMENT = "document"
    LINK = "link"


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    client_id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    text: str = ""
    kind: MessageKind = MessageKind.TEXT
    file: Optional[str] = None
    status: MessageStatus = MessageStatus.SENT
    created_at: datetime = Field(default_factory=utcnow)


class Conversation(BaseModel):
    id: str = Field(default_factory=new_id)
    participants: List[str]
    pair_key: str
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    # last activity
    updated_at: datetime = Field(default_factory=utcnow)

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def other_participant(self, user_id: str) -> Optional[str]:
        if user_id not in self.participants:
            return None
        return next(uid for uid in self.participants if uid != user_id)


class ConversationSummary(BaseModel):
    id: str
    participants: List[UserSummary]
    last_message: Optional[Message] = None
    unread_count: int = 0
    updated_at: datetime


conversations_sql = documents_table_sql.format(collection="conversations") + """
-- list_for(user_id) filters on data->participants
create index conversations_participants_idx on conversations using gin ((data->'participants'));
"""
